"""Tests for audio-only transcoding."""

import pytest
from conftest import FakeRunner

from vpp.audio import AudioTranscoder, audio_output_name, build_audio_command, select_bitrate
from vpp.config.models import AudioConfig
from vpp.errors import EncodeError
from vpp.introspector.models import StreamInfo


def _stream(type_index, codec="mp3"):
    return StreamInfo(
        index=type_index, type_index=type_index, codec_type="audio", codec_name=codec
    )


class TestHelpers:
    def test_output_names(self):
        config = AudioConfig()
        assert audio_output_name(0, config) == "audio.ogg"
        assert audio_output_name(1, config) == "audio_2.ogg"
        assert audio_output_name(2, config) == "audio_3.ogg"

    @pytest.mark.parametrize(
        "codec,expected", [("flac", "300k"), ("pcm_s16le", "300k"), ("mp3", "256k"), (None, "256k")]
    )
    def test_select_bitrate(self, codec, expected):
        assert select_bitrate(codec, AudioConfig()) == expected

    def test_command(self, temp_dir):
        cmd = build_audio_command(
            "ffmpeg", temp_dir / "in.flac", _stream(1, "flac"), AudioConfig(), temp_dir / "a.ogg"
        )

        assert cmd[cmd.index("-map") + 1] == "0:a:1"
        assert cmd[cmd.index("-b:a") + 1] == "300k"
        assert cmd[cmd.index("-c:a") + 1] == "libopus"
        assert cmd[-2:] == ["ogg", temp_dir / "a.ogg"]


class TestAudioTranscoder:
    """Tests for AudioTranscoder.transcode."""

    def test_every_stream_transcoded(self, temp_dir, limits):
        runner = FakeRunner()

        produced = AudioTranscoder("ffmpeg", runner, AudioConfig(), limits).transcode(
            temp_dir / "in.mka", [_stream(0), _stream(1)], temp_dir
        )

        assert produced == [temp_dir / "audio.ogg", temp_dir / "audio_2.ogg"]
        assert all(p.exists() for p in produced)

    def test_first_stream_failure_raises(self, temp_dir, limits):
        runner = FakeRunner(fail_when=lambda args: "0:a:0" in args)

        with pytest.raises(EncodeError, match="Conversion failed"):
            AudioTranscoder("ffmpeg", runner, AudioConfig(), limits).transcode(
                temp_dir / "in.mka", [_stream(0), _stream(1)], temp_dir
            )

    def test_later_stream_failure_logged(self, temp_dir, limits):
        runner = FakeRunner(fail_when=lambda args: "0:a:1" in args)

        produced = AudioTranscoder("ffmpeg", runner, AudioConfig(), limits).transcode(
            temp_dir / "in.mka", [_stream(0), _stream(1)], temp_dir
        )

        assert produced == [temp_dir / "audio.ogg"]
        assert not (temp_dir / "audio_2.ogg").exists()

    def test_no_streams(self, temp_dir, limits):
        with pytest.raises(EncodeError, match="no audio stream"):
            AudioTranscoder("ffmpeg", FakeRunner(), AudioConfig(), limits).transcode(
                temp_dir / "in.mka", [], temp_dir
            )

    def test_existing_output_kept(self, temp_dir, limits):
        (temp_dir / "audio.ogg").write_bytes(b"ogg")
        runner = FakeRunner()

        AudioTranscoder("ffmpeg", runner, AudioConfig(), limits).transcode(
            temp_dir / "in.mka", [_stream(0)], temp_dir
        )

        assert runner.calls == []
        assert (temp_dir / "audio.ogg").read_bytes() == b"ogg"
