"""Tests for the subtitle track registry."""

from pathlib import Path

import pytest

from vpp.subtitles.tracks import (
    LIST_FILE,
    SubtitleTrack,
    TrackOrigin,
    TrackRegistry,
    track_filename,
    write_track_list,
)


def _track(language, origin=TrackOrigin.EMBEDDED, name=None):
    return SubtitleTrack(language, origin, Path(f"/w/subtitles/{name or language}.vtt"))


class TestTrackFilename:
    @pytest.mark.parametrize(
        "language,origin,expected",
        [
            ("en", TrackOrigin.EMBEDDED, "en.vtt"),
            ("cs", TrackOrigin.TRANSLATED, "cs.vtt"),
            ("en", TrackOrigin.TRANSCRIBED, "AI_en.vtt"),
            (None, TrackOrigin.TRANSCRIBED, "AI_transcription.vtt"),
        ],
    )
    def test_names(self, language, origin, expected):
        assert track_filename(language, origin, "AI_transcription") == expected

    def test_embedded_requires_language(self):
        with pytest.raises(ValueError):
            track_filename(None, TrackOrigin.EMBEDDED, "AI_transcription")


class TestTrackRegistry:
    """Tests for TrackRegistry."""

    def test_first_registration_wins(self):
        registry = TrackRegistry()
        embedded = _track("en")

        assert registry.register(embedded)
        assert not registry.register(_track("en", TrackOrigin.TRANSLATED))
        assert registry.get("en") is embedded
        assert len(registry) == 1

    def test_order_is_registration_order(self):
        registry = TrackRegistry()
        for lang in ("de", "en", "cs"):
            registry.register(_track(lang))

        assert registry.languages == ["de", "en", "cs"]
        assert registry.first().language == "de"

    def test_generic_track_does_not_cover_languages(self):
        registry = TrackRegistry()
        registry.register(
            _track(None, TrackOrigin.TRANSCRIBED, name="AI_transcription")
        )

        assert "AI_transcription" in registry
        assert not registry.covers("AI_transcription")
        assert registry.languages == []

    def test_transcribed_track_covers_its_language(self):
        registry = TrackRegistry()
        registry.register(_track("en", TrackOrigin.TRANSCRIBED, name="AI_en"))

        assert registry.covers("en")
        assert registry.by_language()["en"].name == "AI_en"


class TestWriteTrackList:
    def test_lists_names_in_order(self, temp_dir):
        registry = TrackRegistry()
        registry.register(SubtitleTrack("en", TrackOrigin.TRANSCRIBED, temp_dir / "AI_en.vtt"))
        registry.register(SubtitleTrack("cs", TrackOrigin.TRANSLATED, temp_dir / "cs.vtt"))

        path = write_track_list(temp_dir, registry)

        assert path == temp_dir / LIST_FILE
        assert path.read_text(encoding="utf-8") == "AI_en\ncs"

    def test_nothing_written_without_tracks(self, temp_dir):
        assert write_track_list(temp_dir, TrackRegistry()) is None
        assert not (temp_dir / LIST_FILE).exists()
