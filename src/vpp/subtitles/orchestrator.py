"""Subtitle coverage: make sure every configured language has a track.

The orchestrator runs once per job as a small state machine::

    GATHERING -> [TRANSCRIBING] -> RECONCILING -> [TRANSLATING] -> DONE

``FAILED`` is reachable from any state. Embedded tracks are collected
first; only when there are none is the audio transcribed. Any configured
language still missing afterwards is machine-translated from the best
available track, one cue at a time, so a single failing cue never costs
the whole track.

Artifacts from a previous run are picked up again in GATHERING, so
re-running a job only does the work that is still missing.
"""

from __future__ import annotations

import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from vpp.config.models import TranslationConfig, WhisperConfig
from vpp.core.file_utils import atomic_output
from vpp.errors import JobCancelledError, ProcessorError, TranslationError
from vpp.introspector.models import ProbeResult, StreamInfo
from vpp.language import normalize_language
from vpp.logging import run_in_context
from vpp.subtitles.extract import is_text_subtitle
from vpp.subtitles.tracks import (
    TRANSCRIBED_PREFIX,
    SubtitleTrack,
    TrackOrigin,
    TrackRegistry,
    track_filename,
    write_track_list,
)
from vpp.subtitles.vtt import Cue, build_vtt, parse_vtt

if TYPE_CHECKING:
    from vpp.transcription.transcriber import Transcript

logger = logging.getLogger(__name__)

# First attempt plus one retry
MAX_TRANSLATION_ATTEMPTS = 2

_UNSAFE_NAME_CHARS = re.compile(r"[^\w.-]+")


class CoverageState(Enum):
    GATHERING = "gathering"
    TRANSCRIBING = "transcribing"
    RECONCILING = "reconciling"
    TRANSLATING = "translating"
    DONE = "done"
    FAILED = "failed"


class UnitStatus(Enum):
    PENDING = "pending"
    TRANSLATED = "translated"
    PASSED_THROUGH = "passed-through"


class Extractor(Protocol):
    def extract(
        self, source: Path, requests: list[tuple[StreamInfo, Path]]
    ) -> list[Path]: ...


class Transcriber(Protocol):
    def transcribe(
        self,
        source: Path,
        duration: float,
        work_dir: Path,
        detect_language: bool = False,
        audio_stream: int = 0,
    ) -> Transcript: ...


class Translator(Protocol):
    def translate(
        self, text: str, target_lang: str, source_lang: str | None = None
    ) -> str: ...


@dataclass
class TranslationUnit:
    """Translation of one cue into one language.

    The unit records its own attempts; after the last failed attempt it is
    passed through with the source text instead of raising.
    """

    index: int
    cue: Cue
    target: str
    attempts: int = 0
    last_error: str | None = None
    status: UnitStatus = UnitStatus.PENDING
    translated_text: str | None = None

    @property
    def text(self) -> str:
        if self.status is UnitStatus.TRANSLATED and self.translated_text:
            return self.translated_text
        return self.cue.text

    def to_cue(self) -> Cue:
        return Cue(start=self.cue.start, end=self.cue.end, text=self.text)

    def attempt(self, translator: Translator, source_lang: str | None) -> None:
        """Make one translation attempt and update the unit's state."""
        self.attempts += 1
        try:
            self.translated_text = translator.translate(
                self.cue.text, self.target, source_lang
            )
        except TranslationError as e:
            self.last_error = str(e)
            if self.attempts >= MAX_TRANSLATION_ATTEMPTS:
                self.status = UnitStatus.PASSED_THROUGH
            return
        self.status = UnitStatus.TRANSLATED


@dataclass
class CoverageResult:
    """Outcome of subtitle coverage for one job."""

    tracks: dict[str, SubtitleTrack] = field(default_factory=dict)
    states: list[CoverageState] = field(default_factory=list)
    transcribed: bool = False
    partial_transcript: bool = False
    passed_through: dict[str, int] = field(default_factory=dict)
    failure: str | None = None

    @property
    def state(self) -> CoverageState | None:
        return self.states[-1] if self.states else None

    def origins(self) -> dict[str, TrackOrigin]:
        return {key: track.origin for key, track in self.tracks.items()}


class SubtitleCoverageOrchestrator:
    """Drives one job's subtitles from embedded tracks to full coverage."""

    def __init__(
        self,
        whisper: WhisperConfig,
        translation: TranslationConfig,
        extractor: Extractor,
        transcriber: Transcriber | None = None,
        translator: Translator | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            whisper: Transcription settings (generic label).
            translation: Target languages and translation limits.
            extractor: Converts embedded streams to WebVTT.
            transcriber: Produces a transcript; None disables transcription.
            translator: Translates cue text; None disables translation even
                if languages are configured.
            cancel_event: Checked between units of work.
        """
        self._whisper = whisper
        self._translation = translation
        self._extractor = extractor
        self._transcriber = transcriber
        self._translator = translator
        self._cancel_event = cancel_event
        self._states: list[CoverageState] = []
        self.last_result: CoverageResult | None = None

    @property
    def translation_enabled(self) -> bool:
        return self._translation.enabled and self._translator is not None

    def _enter(self, state: CoverageState) -> None:
        self._states.append(state)
        logger.debug("Subtitle coverage: %s", state.value)

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise JobCancelledError("Cancelled during subtitle processing")

    def run(
        self,
        probe: ProbeResult,
        subtitles_dir: Path,
        work_dir: Path,
        registry: TrackRegistry | None = None,
    ) -> CoverageResult:
        """Run the state machine to completion.

        Args:
            probe: Probe of the source file.
            subtitles_dir: Output directory for WebVTT files.
            work_dir: Job temporary directory.
            registry: Registry to fill; a new one is used if omitted.

        Returns:
            The coverage result with the visited states.

        Raises:
            ProcessorError: Transcription failed without a usable partial
                result, or the job was cancelled. The FAILED state is
                recorded before the error propagates.
        """
        registry = registry if registry is not None else TrackRegistry()
        result = CoverageResult()
        self._states = []
        subtitles_dir.mkdir(parents=True, exist_ok=True)

        try:
            self._enter(CoverageState.GATHERING)
            self._gather(probe, subtitles_dir, registry)

            if not len(registry):
                self._enter(CoverageState.TRANSCRIBING)
                self._transcribe(probe, subtitles_dir, work_dir, registry, result)

            self._enter(CoverageState.RECONCILING)
            missing = self._missing_languages(registry)

            if missing:
                self._enter(CoverageState.TRANSLATING)
                self._translate(missing, subtitles_dir, registry, result)

            write_track_list(subtitles_dir, registry)
            self._enter(CoverageState.DONE)
        except ProcessorError as e:
            self._enter(CoverageState.FAILED)
            result.failure = str(e)
            raise
        finally:
            result.states = list(self._states)
            result.tracks = registry.by_language()
            self.last_result = result

        return result

    # -- gathering ---------------------------------------------------------

    def _gather(
        self, probe: ProbeResult, subtitles_dir: Path, registry: TrackRegistry
    ) -> None:
        requests: list[tuple[StreamInfo, Path, str | None]] = []
        claimed: set[str] = set()
        for stream in probe.subtitle_streams:
            if not is_text_subtitle(stream):
                logger.info(
                    "Ignoring bitmap subtitle stream %d (%s)",
                    stream.index,
                    stream.codec_name,
                )
                continue
            language = normalize_language(stream.language)
            if language is None:
                # Kept under its tag or title; it never covers a language
                name = untagged_track_name(stream, claimed)
                logger.info(
                    "Subtitle stream %d has no known language (%r); extracting as %s",
                    stream.index,
                    stream.language,
                    name,
                )
                claimed.add(name)
                requests.append((stream, subtitles_dir / f"{name}.vtt", None))
                continue
            if language in claimed:
                continue
            claimed.add(language)
            path = subtitles_dir / track_filename(
                language, TrackOrigin.EMBEDDED, self._whisper.output_label
            )
            requests.append((stream, path, language))

        if requests:
            extracted = set(
                self._extractor.extract(
                    Path(probe.path), [(stream, path) for stream, path, _ in requests]
                )
            )
            for _, path, language in requests:
                if path in extracted:
                    registry.register(SubtitleTrack(language, TrackOrigin.EMBEDDED, path))

        self._register_existing(subtitles_dir, registry)
        logger.info(
            "Gathered %d subtitle track(s): %s",
            len(registry),
            ", ".join(t.key for t in registry) or "none",
        )

    def _register_existing(self, subtitles_dir: Path, registry: TrackRegistry) -> None:
        """Pick up tracks written by an earlier run of the same job."""
        generic = subtitles_dir / f"{self._whisper.output_label}.vtt"
        if _nonempty(generic):
            registry.register(SubtitleTrack(None, TrackOrigin.TRANSCRIBED, generic))

        for path in sorted(subtitles_dir.glob(f"{TRANSCRIBED_PREFIX}*.vtt")):
            language = normalize_language(path.stem[len(TRANSCRIBED_PREFIX) :])
            if language is not None and _nonempty(path):
                registry.register(SubtitleTrack(language, TrackOrigin.TRANSCRIBED, path))

        for language in self._translation.languages:
            path = subtitles_dir / f"{language}.vtt"
            if _nonempty(path):
                registry.register(SubtitleTrack(language, TrackOrigin.TRANSLATED, path))

    # -- transcribing ------------------------------------------------------

    def _transcribe(
        self,
        probe: ProbeResult,
        subtitles_dir: Path,
        work_dir: Path,
        registry: TrackRegistry,
        result: CoverageResult,
    ) -> None:
        if self._transcriber is None:
            logger.info("Transcription disabled; no subtitles available")
            return
        if not probe.audio_streams:
            logger.info("No audio to transcribe")
            return

        detect = self.translation_enabled
        transcript = self._transcriber.transcribe(
            Path(probe.path),
            probe.duration or 0.0,
            work_dir,
            detect_language=detect,
        )
        result.transcribed = True
        if transcript.is_partial:
            result.partial_transcript = True
            logger.warning(
                "Transcription incomplete: %d of %d chunks failed; keeping partial track",
                len(transcript.failed_chunks),
                len(transcript.chunks),
            )
        if not transcript.cues:
            logger.warning("Transcription produced no cues")
            return

        language = transcript.language if detect else None
        path = subtitles_dir / track_filename(
            language, TrackOrigin.TRANSCRIBED, self._whisper.output_label
        )
        with atomic_output(path) as tmp:
            tmp.write_text(build_vtt(transcript.cues), encoding="utf-8")
        registry.register(SubtitleTrack(language, TrackOrigin.TRANSCRIBED, path))

    # -- reconciling -------------------------------------------------------

    def _missing_languages(self, registry: TrackRegistry) -> list[str]:
        if not self.translation_enabled:
            logger.debug("No target languages configured; skipping translation")
            return []
        if not len(registry):
            logger.warning("No subtitle track to translate from")
            return []
        missing = [lang for lang in self._translation.languages if not registry.covers(lang)]
        if missing:
            logger.info("Languages to translate: %s", ", ".join(missing))
        return missing

    # -- translating -------------------------------------------------------

    def select_source(self, registry: TrackRegistry) -> SubtitleTrack | None:
        """Preferred source language if present, else the first track."""
        preferred = registry.get(self._translation.source_language)
        if preferred is not None and preferred.language is not None:
            return preferred
        return registry.first()

    def _translate(
        self,
        missing: list[str],
        subtitles_dir: Path,
        registry: TrackRegistry,
        result: CoverageResult,
    ) -> None:
        source = self.select_source(registry)
        if source is None:
            return
        cues = parse_vtt(source.path.read_text(encoding="utf-8", errors="replace"))
        logger.info(
            "Translating %d cues from %s (%s)",
            len(cues),
            source.path.name,
            source.language or "unknown language",
        )

        for target in missing:
            self._check_cancelled()
            units = self.translate_cues(cues, target, source.language)
            passed = sum(1 for u in units if u.status is UnitStatus.PASSED_THROUGH)
            if passed:
                result.passed_through[target] = passed
                logger.warning(
                    "%d of %d cues left untranslated for %s", passed, len(units), target
                )

            path = subtitles_dir / track_filename(
                target, TrackOrigin.TRANSLATED, self._whisper.output_label
            )
            with atomic_output(path) as tmp:
                tmp.write_text(build_vtt(u.to_cue() for u in units), encoding="utf-8")
            registry.register(SubtitleTrack(target, TrackOrigin.TRANSLATED, path))

    def translate_cues(
        self, cues: list[Cue], target: str, source_lang: str | None
    ) -> list[TranslationUnit]:
        """Translate every cue into target with a bounded worker pool.

        Returns:
            Units in cue order, whatever order they completed in.
        """
        translator = self._translator
        if translator is None:
            raise RuntimeError("No translator configured")

        units = [TranslationUnit(i, cue, target) for i, cue in enumerate(cues)]
        if not units:
            return units

        def work(unit: TranslationUnit) -> TranslationUnit:
            while unit.status is UnitStatus.PENDING:
                self._check_cancelled()
                unit.attempt(translator, source_lang)
                if unit.status is UnitStatus.PENDING:
                    logger.debug(
                        "Retrying cue %d (%s): %s", unit.index, target, unit.last_error
                    )
            return unit

        workers = min(self._translation.parallel_limit, len(units))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            done = list(pool.map(run_in_context(work), units))
        return sorted(done, key=lambda u: u.index)


def _nonempty(path: Path) -> bool:
    return path.is_file() and path.stat().st_size > 0


def untagged_track_name(stream: StreamInfo, taken: set[str]) -> str:
    """File stem for an embedded stream without a recognizable language.

    The raw language tag, else the title, else ``subtitle_<index>``; a
    counter suffix keeps names unique within the job.
    """
    raw = stream.language or stream.title or ""
    base = _UNSAFE_NAME_CHARS.sub("_", raw).strip("_.") or f"subtitle_{stream.index}"
    name = base
    counter = 1
    while name in taken:
        name = f"{base}_{counter}"
        counter += 1
    return name
