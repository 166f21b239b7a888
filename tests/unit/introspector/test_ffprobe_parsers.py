"""Unit tests for ffprobe output parsing."""

import pytest
from conftest import make_ffprobe_data

from vpp.introspector import parse_ffprobe_output, parse_frame_rate
from vpp.introspector.parsers import parse_float, parse_int


class TestScalarParsers:
    @pytest.mark.parametrize(
        "raw,expected",
        [("30/1", 30.0), ("30000/1001", 30000 / 1001), ("25", 25.0), ("0/0", None),
         ("1/0", None), ("abc", None), (None, None)],
    )
    def test_parse_frame_rate(self, raw, expected):
        assert parse_frame_rate(raw) == expected

    def test_parse_float(self):
        assert parse_float("3600.500") == 3600.5
        assert parse_float("N/A") is None
        assert parse_float(None) is None

    def test_parse_int(self):
        assert parse_int("1440") == 1440
        assert parse_int(" 12 ") == 12
        assert parse_int("N/A") is None
        assert parse_int(True) is None


class TestParseFfprobeOutput:
    """Tests for parse_ffprobe_output()."""

    def test_streams_and_type_indexes(self):
        """type_index counts streams of the same type, as ffmpeg specifiers do."""
        data = make_ffprobe_data(
            video={"color_transfer": "smpte2084", "color_primaries": "bt2020"},
            audio=[{"language": "eng", "channels": 6}, {"language": "ces", "title": "Dub"}],
            subtitles=[{"language": "cze"}],
        )
        probe = parse_ffprobe_output("/upload/1", data)

        assert probe.duration == 120.0
        assert probe.format_name == "matroska"
        assert [s.codec_type for s in probe.streams] == [
            "video", "audio", "audio", "subtitle",
        ]
        audio = probe.audio_streams
        assert [(a.index, a.type_index) for a in audio] == [(1, 0), (2, 1)]
        assert audio[0].channels == 6
        assert audio[1].title == "Dub"
        assert probe.subtitle_streams[0].type_index == 0
        video = probe.primary_video
        assert (video.width, video.height, video.frame_rate) == (1920, 1080, 30.0)
        assert video.color_transfer == "smpte2084"

    def test_attached_picture(self):
        data = make_ffprobe_data(
            video={"codec_name": "mjpeg", "attached_pic": True}, audio=[{}]
        )
        probe = parse_ffprobe_output("/upload/1", data)
        assert probe.video_streams[0].attached_pic

    def test_primary_video_skips_cover_art(self):
        data = make_ffprobe_data(video={"codec_name": "mjpeg", "attached_pic": True})
        data["streams"].append(
            {"index": 1, "codec_type": "video", "codec_name": "hevc", "width": 3840}
        )
        probe = parse_ffprobe_output("/upload/1", data)
        assert probe.primary_video.codec_name == "hevc"

    def test_duration_falls_back_to_streams(self):
        data = make_ffprobe_data(audio=[{"duration": "61.5"}], duration=None)
        assert parse_ffprobe_output("/f", data).duration == 61.5

    def test_chapters(self):
        """Chapters with broken times are skipped."""
        data = make_ffprobe_data(
            video={},
            audio=[{}],
            chapters=[
                {"start_time": "0.000", "end_time": "60.000", "tags": {"title": "Intro"}},
                {"start_time": "60.000", "end_time": "60.000"},
                {"start_time": "60.000", "end_time": "120.000"},
            ],
        )
        chapters = parse_ffprobe_output("/f", data).chapters
        assert [(c.start, c.end, c.title) for c in chapters] == [
            (0.0, 60.0, "Intro"),
            (60.0, 120.0, None),
        ]
