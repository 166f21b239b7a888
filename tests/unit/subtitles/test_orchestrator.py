"""Tests for the subtitle coverage state machine."""

import threading
import time

import pytest
from conftest import make_ffprobe_data

from vpp.config.models import TranslationConfig, WhisperConfig
from vpp.errors import JobCancelledError, TranscriptionError, TranslationError
from vpp.introspector.parsers import parse_ffprobe_output
from vpp.subtitles.orchestrator import (
    MAX_TRANSLATION_ATTEMPTS,
    CoverageState,
    SubtitleCoverageOrchestrator,
    TranslationUnit,
    UnitStatus,
)
from vpp.subtitles.tracks import TrackOrigin
from vpp.subtitles.vtt import Cue, parse_vtt
from vpp.transcription.transcriber import Transcript

SOURCE_VTT = (
    "WEBVTT\n\n"
    "00:00:01.000 --> 00:00:02.000\nHello\n\n"
    "00:00:03.000 --> 00:00:04.000\nWorld\n"
)


class FakeExtractor:
    def __init__(self):
        self.requests = []

    def extract(self, source, requests):
        self.requests.extend(requests)
        for _, path in requests:
            path.write_text(SOURCE_VTT, encoding="utf-8")
        return [path for _, path in requests]


class FakeTranscriber:
    def __init__(self, transcript=None, error=None):
        self.transcript = transcript
        self.error = error
        self.calls = []

    def transcribe(self, source, duration, work_dir, detect_language=False, audio_stream=0):
        self.calls.append({"duration": duration, "detect_language": detect_language})
        if self.error is not None:
            raise self.error
        return self.transcript


class FakeTranslator:
    """Prefixes text with the target language; fails the first N calls per text."""

    def __init__(self, failures_per_text=0):
        self.failures_per_text = failures_per_text
        self.attempts: dict[tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def translate(self, text, target_lang, source_lang=None):
        key = (text, target_lang)
        with self._lock:
            self.attempts[key] = self.attempts.get(key, 0) + 1
            count = self.attempts[key]
        if count <= self.failures_per_text:
            raise TranslationError("HTTP error: 503", 503)
        return f"[{target_lang}] {text}"


def _probe(subtitles=None, audio=({"language": "eng"},)):
    return parse_ffprobe_output(
        "/uploads/movie.mkv",
        make_ffprobe_data(video={}, audio=list(audio), subtitles=subtitles),
    )


def _transcript(language="en"):
    return Transcript(cues=[Cue(1.0, 2.0, "Hello"), Cue(3.0, 4.0, "World")], language=language)


def _orchestrator(languages=("en", "cs"), transcriber=None, translator=None, **kwargs):
    return SubtitleCoverageOrchestrator(
        WhisperConfig(),
        TranslationConfig(languages=languages),
        kwargs.pop("extractor", FakeExtractor()),
        transcriber=transcriber,
        translator=translator,
        **kwargs,
    )


class TestCoverage:
    """End-to-end coverage scenarios."""

    def test_embedded_track_then_translation(self, temp_dir):
        """An embedded English track is kept and Czech is translated from it."""
        transcriber = FakeTranscriber(_transcript())
        orchestrator = _orchestrator(transcriber=transcriber, translator=FakeTranslator())
        subtitles = temp_dir / "subtitles"

        result = orchestrator.run(
            _probe(subtitles=[{"language": "eng"}]), subtitles, temp_dir / "tmp"
        )

        assert result.origins() == {
            "en": TrackOrigin.EMBEDDED,
            "cs": TrackOrigin.TRANSLATED,
        }
        assert transcriber.calls == []
        assert result.states == [
            CoverageState.GATHERING,
            CoverageState.RECONCILING,
            CoverageState.TRANSLATING,
            CoverageState.DONE,
        ]
        cs = parse_vtt((subtitles / "cs.vtt").read_text(encoding="utf-8"))
        assert [c.text for c in cs] == ["[cs] Hello", "[cs] World"]
        assert (subtitles / "list.txt").read_text(encoding="utf-8") == "en\ncs"

    def test_transcribed_track_then_translation(self, temp_dir):
        transcriber = FakeTranscriber(_transcript("en"))
        orchestrator = _orchestrator(transcriber=transcriber, translator=FakeTranslator())
        subtitles = temp_dir / "subtitles"

        result = orchestrator.run(_probe(), subtitles, temp_dir / "tmp")

        assert transcriber.calls == [{"duration": 120.0, "detect_language": True}]
        assert result.transcribed
        assert result.origins() == {
            "en": TrackOrigin.TRANSCRIBED,
            "cs": TrackOrigin.TRANSLATED,
        }
        assert CoverageState.TRANSCRIBING in result.states
        assert (subtitles / "AI_en.vtt").exists()
        assert (subtitles / "list.txt").read_text(encoding="utf-8") == "AI_en\ncs"

    def test_translation_disabled_writes_generic_track(self, temp_dir):
        transcriber = FakeTranscriber(_transcript("en"))
        orchestrator = _orchestrator(languages=(), transcriber=transcriber)
        subtitles = temp_dir / "subtitles"

        result = orchestrator.run(_probe(), subtitles, temp_dir / "tmp")

        assert transcriber.calls[0]["detect_language"] is False
        assert list(result.tracks) == ["AI_transcription"]
        assert (subtitles / "AI_transcription.vtt").exists()
        assert CoverageState.TRANSLATING not in result.states
        assert (subtitles / "list.txt").read_text(encoding="utf-8") == "AI_transcription"

    def test_failing_translator_passes_text_through(self, temp_dir):
        translator = FakeTranslator(failures_per_text=MAX_TRANSLATION_ATTEMPTS)
        orchestrator = _orchestrator(translator=translator)
        subtitles = temp_dir / "subtitles"

        result = orchestrator.run(
            _probe(subtitles=[{"language": "eng"}]), subtitles, temp_dir / "tmp"
        )

        assert result.passed_through == {"cs": 2}
        assert all(n == MAX_TRANSLATION_ATTEMPTS for n in translator.attempts.values())
        cs = parse_vtt((subtitles / "cs.vtt").read_text(encoding="utf-8"))
        assert [c.text for c in cs] == ["Hello", "World"]
        assert result.state is CoverageState.DONE

    def test_translation_retried_once(self, temp_dir):
        translator = FakeTranslator(failures_per_text=1)
        orchestrator = _orchestrator(translator=translator)
        subtitles = temp_dir / "subtitles"

        result = orchestrator.run(
            _probe(subtitles=[{"language": "eng"}]), subtitles, temp_dir / "tmp"
        )

        assert result.passed_through == {}
        cs = parse_vtt((subtitles / "cs.vtt").read_text(encoding="utf-8"))
        assert [c.text for c in cs] == ["[cs] Hello", "[cs] World"]

    def test_only_bitmap_streams_ignored(self, temp_dir):
        """Text streams without a known language are kept under their tag."""
        extractor = FakeExtractor()
        transcriber = FakeTranscriber(_transcript("en"))
        orchestrator = _orchestrator(
            languages=(), transcriber=transcriber, extractor=extractor
        )
        subtitles = temp_dir / "subtitles"

        result = orchestrator.run(
            _probe(
                subtitles=[
                    {"codec_name": "hdmv_pgs_subtitle", "language": "eng"},
                    {"language": "und"},
                    {},
                ]
            ),
            subtitles,
            temp_dir / "tmp",
        )

        assert [path.name for _, path in extractor.requests] == [
            "und.vtt",
            "subtitle_4.vtt",
        ]
        assert transcriber.calls == []
        assert list(result.tracks) == ["und", "subtitle_4"]
        assert all(
            track.origin is TrackOrigin.EMBEDDED for track in result.tracks.values()
        )

    def test_untagged_stream_counts_as_subtitles(self, temp_dir):
        """An untagged text stream is extracted instead of transcribing."""
        extractor = FakeExtractor()
        transcriber = FakeTranscriber(_transcript("en"))
        orchestrator = _orchestrator(
            languages=(), transcriber=transcriber, extractor=extractor
        )
        subtitles = temp_dir / "subtitles"

        result = orchestrator.run(_probe(subtitles=[{}]), subtitles, temp_dir / "tmp")

        assert transcriber.calls == []
        assert (subtitles / "subtitle_2.vtt").read_text(encoding="utf-8") == SOURCE_VTT
        assert list(result.tracks) == ["subtitle_2"]
        assert result.tracks["subtitle_2"].language is None
        assert "subtitle_2" in (subtitles / "list.txt").read_text(encoding="utf-8")

    def test_untagged_stream_names_deduplicated(self, temp_dir):
        extractor = FakeExtractor()
        orchestrator = _orchestrator(languages=(), extractor=extractor)

        orchestrator.run(
            _probe(
                subtitles=[
                    {"title": "Commentary"},
                    {"title": "Commentary"},
                    {"language": "xx/yy"},
                ]
            ),
            temp_dir / "subtitles",
            temp_dir / "tmp",
        )

        assert [path.name for _, path in extractor.requests] == [
            "Commentary.vtt",
            "Commentary_1.vtt",
            "xx_yy.vtt",
        ]

    def test_duplicate_embedded_language_extracted_once(self, temp_dir):
        extractor = FakeExtractor()
        orchestrator = _orchestrator(languages=(), extractor=extractor)

        result = orchestrator.run(
            _probe(subtitles=[{"language": "eng"}, {"language": "en", "title": "SDH"}]),
            temp_dir / "subtitles",
            temp_dir / "tmp",
        )

        assert len(extractor.requests) == 1
        assert list(result.tracks) == ["en"]

    def test_existing_tracks_reused(self, temp_dir):
        """A re-run only does the work that is still missing."""
        subtitles = temp_dir / "subtitles"
        subtitles.mkdir()
        (subtitles / "AI_en.vtt").write_text(SOURCE_VTT, encoding="utf-8")
        (subtitles / "cs.vtt").write_text(SOURCE_VTT, encoding="utf-8")
        transcriber = FakeTranscriber(_transcript())
        translator = FakeTranslator()
        orchestrator = _orchestrator(transcriber=transcriber, translator=translator)

        result = orchestrator.run(_probe(), subtitles, temp_dir / "tmp")

        assert transcriber.calls == []
        assert translator.attempts == {}
        assert result.origins() == {
            "en": TrackOrigin.TRANSCRIBED,
            "cs": TrackOrigin.TRANSLATED,
        }

    def test_prefers_source_language(self, temp_dir):
        translator = FakeTranslator()
        orchestrator = _orchestrator(languages=("cs",), translator=translator)
        subtitles = temp_dir / "subtitles"

        orchestrator.run(
            _probe(subtitles=[{"language": "ger"}, {"language": "eng"}]),
            subtitles,
            temp_dir / "tmp",
        )

        assert (subtitles / "de.vtt").exists()
        assert ("Hello", "cs") in translator.attempts
        assert (subtitles / "list.txt").read_text(encoding="utf-8") == "de\nen\ncs"

    def test_no_audio_no_subtitles(self, temp_dir):
        transcriber = FakeTranscriber(_transcript())
        orchestrator = _orchestrator(transcriber=transcriber, translator=FakeTranslator())
        subtitles = temp_dir / "subtitles"

        result = orchestrator.run(_probe(audio=()), subtitles, temp_dir / "tmp")

        assert transcriber.calls == []
        assert result.tracks == {}
        assert not (subtitles / "list.txt").exists()
        assert result.state is CoverageState.DONE

    def test_partial_transcript_flagged(self, temp_dir):
        transcript = _transcript("en")
        transcript.failed_chunks.append(1)
        orchestrator = _orchestrator(
            languages=(), transcriber=FakeTranscriber(transcript)
        )

        result = orchestrator.run(_probe(), temp_dir / "subtitles", temp_dir / "tmp")

        assert result.partial_transcript
        assert list(result.tracks) == ["AI_transcription"]


class TestFailures:
    def test_transcription_failure_recorded(self, temp_dir):
        transcriber = FakeTranscriber(error=TranscriptionError("service down"))
        orchestrator = _orchestrator(transcriber=transcriber)

        with pytest.raises(TranscriptionError):
            orchestrator.run(_probe(), temp_dir / "subtitles", temp_dir / "tmp")

        result = orchestrator.last_result
        assert result.state is CoverageState.FAILED
        assert "service down" in result.failure

    def test_cancelled_before_translation(self, temp_dir):
        cancel_event = threading.Event()
        cancel_event.set()
        orchestrator = _orchestrator(
            translator=FakeTranslator(), cancel_event=cancel_event
        )

        with pytest.raises(JobCancelledError):
            orchestrator.run(
                _probe(subtitles=[{"language": "eng"}]),
                temp_dir / "subtitles",
                temp_dir / "tmp",
            )
        assert orchestrator.last_result.state is CoverageState.FAILED


class TestTranslationUnit:
    def test_passes_through_after_last_attempt(self):
        unit = TranslationUnit(0, Cue(0.0, 1.0, "Hi"), "cs")
        translator = FakeTranslator(failures_per_text=5)

        unit.attempt(translator, "en")
        assert unit.status is UnitStatus.PENDING
        unit.attempt(translator, "en")

        assert unit.status is UnitStatus.PASSED_THROUGH
        assert unit.to_cue() == Cue(0.0, 1.0, "Hi")
        assert "503" in unit.last_error


class SlowTranslator:
    """Earlier cues take longer, so completions arrive in reverse order.

    Records the peak number of concurrent requests.
    """

    def __init__(self, count):
        self.count = count
        self.active = 0
        self.peak = 0
        self.completed = []
        self._lock = threading.Lock()

    def translate(self, text, target_lang, source_lang=None):
        index = int(text.split()[-1])
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(0.02 * (self.count - index))
        with self._lock:
            self.active -= 1
            self.completed.append(index)
        return f"[{target_lang}] {text}"


class TestTranslateCues:
    """Tests for the bounded translation pool."""

    CUES = [Cue(float(i), i + 0.5, f"cue {i}") for i in range(8)]

    def _orchestrator(self, translator, parallel_limit):
        return SubtitleCoverageOrchestrator(
            WhisperConfig(),
            TranslationConfig(languages=("cs",), parallel_limit=parallel_limit),
            FakeExtractor(),
            translator=translator,
        )

    def test_requests_bounded_by_parallel_limit(self):
        translator = SlowTranslator(len(self.CUES))

        self._orchestrator(translator, 3).translate_cues(self.CUES, "cs", "en")

        assert translator.peak == 3

    def test_units_reassembled_in_cue_order(self):
        translator = SlowTranslator(len(self.CUES))

        units = self._orchestrator(translator, 4).translate_cues(self.CUES, "cs", "en")

        assert translator.completed != sorted(translator.completed)
        assert [u.index for u in units] == list(range(len(self.CUES)))
        assert [u.to_cue().text for u in units] == [f"[cs] cue {i}" for i in range(8)]
        assert all(u.status is UnitStatus.TRANSLATED for u in units)

    def test_single_worker_never_overlaps(self):
        translator = SlowTranslator(3)

        self._orchestrator(translator, 1).translate_cues(self.CUES[:3], "cs", None)

        assert translator.peak == 1
        assert translator.completed == [0, 1, 2]
