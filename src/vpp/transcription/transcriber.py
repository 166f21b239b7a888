"""Chunked transcription of a media file's audio.

Short audio goes to the transcription service in one request. Longer
audio is split at silences (see vpp.transcription.chunker) and each chunk
is transcribed on its own; cue timestamps are shifted back onto the
source timeline and the chunk transcripts concatenated.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from vpp.config.models import WhisperConfig
from vpp.core.subprocess_utils import CommandRunner
from vpp.errors import JobCancelledError, TranscriptionError
from vpp.subtitles.vtt import Cue, offset_cues
from vpp.transcription.audio import AudioExtractor
from vpp.transcription.chunker import AudioChunk, SilenceInterval, SplitReason, chunk
from vpp.transcription.silence import SilenceDetector

if TYPE_CHECKING:
    from vpp.services.whisper import TranscriptionResult

logger = logging.getLogger(__name__)

# Timeout used when the duration of the audio is unknown
UNKNOWN_DURATION_TIMEOUT_SECS = 1800


class TranscriptionService(Protocol):
    def transcribe(
        self, audio_path: Path, timeout: float, detect_language: bool = False
    ) -> TranscriptionResult: ...


class SilenceSource(Protocol):
    def detect(self, audio: Path, total_duration: float) -> list[SilenceInterval]: ...


@dataclass
class Transcript:
    """Concatenated transcript of all chunks.

    Attributes:
        cues: Cues on the source timeline, in order.
        language: Dominant detected language, or None.
        chunks: Chunks the audio was split into.
        failed_chunks: Indexes of chunks whose transcription failed.
    """

    cues: list[Cue] = field(default_factory=list)
    language: str | None = None
    chunks: list[AudioChunk] = field(default_factory=list)
    failed_chunks: list[int] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.failed_chunks)


def request_timeout(duration: float, minimum: float) -> float:
    """Service timeout for a chunk: twice its length, at least minimum."""
    if duration <= 0:
        return max(float(UNKNOWN_DURATION_TIMEOUT_SECS), minimum)
    return max(float(math.ceil(2 * duration)), minimum)


def dominant_language(
    results: list[tuple[AudioChunk, str | None]],
) -> str | None:
    """Language covering the most transcribed audio.

    Ties go to the language seen first.
    """
    totals: dict[str, float] = defaultdict(float)
    for audio_chunk, language in results:
        if language:
            totals[language] += max(audio_chunk.duration, 0.0)
    if not totals:
        return None
    return max(totals, key=lambda lang: totals[lang])


class AudioTranscriber:
    """Turns a media file into a single transcript."""

    def __init__(
        self,
        extractor: AudioExtractor,
        service: TranscriptionService,
        config: WhisperConfig,
        silence: SilenceSource | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._extractor = extractor
        self._service = service
        self._config = config
        self._silence = silence
        self._cancel_event = cancel_event

    @classmethod
    def create(
        cls,
        ffmpeg: str,
        runner: CommandRunner,
        service: TranscriptionService,
        config: WhisperConfig,
        cancel_event: threading.Event | None = None,
    ) -> AudioTranscriber:
        """Build a transcriber with the default ffmpeg-backed collaborators."""
        return cls(
            AudioExtractor(ffmpeg, runner),
            service,
            config,
            silence=SilenceDetector(ffmpeg, runner, config),
            cancel_event=cancel_event,
        )

    def plan_chunks(self, wav: Path, duration: float) -> list[AudioChunk]:
        """Decide how the audio is split for transcription."""
        if duration <= self._config.target_chunk_secs:
            return [AudioChunk(0, 0.0, max(duration, 0.0), SplitReason.END_OF_INPUT)]

        silences: list[SilenceInterval] = []
        if self._silence is not None:
            silences = self._silence.detect(wav, duration)
        return chunk(
            duration,
            silences,
            self._config.target_chunk_secs,
            self._config.max_chunk_secs,
            min_silence=self._config.silence_min_duration,
        )

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise JobCancelledError("Cancelled during transcription")

    def transcribe(
        self,
        source: Path,
        duration: float,
        work_dir: Path,
        detect_language: bool = False,
        audio_stream: int = 0,
    ) -> Transcript:
        """Transcribe the audio of source.

        Args:
            source: Media file.
            duration: Its duration in seconds (0 if unknown).
            work_dir: Job temporary directory for the extracted audio.
            detect_language: Ask the service for the spoken language.
            audio_stream: Audio stream to transcribe.

        Returns:
            The transcript. When some chunks failed but others produced
            cues, the partial transcript is returned with failed_chunks
            set.

        Raises:
            TranscriptionError: If extraction fails or no chunk produced
                any cue while at least one chunk failed.
        """
        work_dir.mkdir(parents=True, exist_ok=True)
        wav = self._extractor.extract(source, work_dir / "transcription.wav", audio_stream)

        chunks = self.plan_chunks(wav, duration)
        transcript = Transcript(chunks=chunks)
        languages: list[tuple[AudioChunk, str | None]] = []
        last_error: TranscriptionError | None = None

        for audio_chunk in chunks:
            self._check_cancelled()
            if len(chunks) == 1:
                chunk_wav = wav
            else:
                chunk_wav = self._extractor.extract_chunk(
                    wav, audio_chunk, work_dir / f"chunk_{audio_chunk.index:04d}.wav"
                )
            timeout = request_timeout(audio_chunk.duration, self._config.min_timeout_secs)
            logger.info(
                "Transcribing chunk %d/%d (%.1f-%.1fs, timeout %.0fs)",
                audio_chunk.index + 1,
                len(chunks),
                audio_chunk.start,
                audio_chunk.end,
                timeout,
            )
            try:
                result = self._service.transcribe(
                    chunk_wav, timeout=timeout, detect_language=detect_language
                )
            except TranscriptionError as e:
                logger.warning("Chunk %d failed: %s", audio_chunk.index, e)
                transcript.failed_chunks.append(audio_chunk.index)
                last_error = e
                continue
            finally:
                if chunk_wav != wav:
                    chunk_wav.unlink(missing_ok=True)

            transcript.cues.extend(offset_cues(result.cues, audio_chunk.start))
            languages.append((audio_chunk, result.language))

        if transcript.failed_chunks and not transcript.cues:
            raise TranscriptionError(
                f"{len(transcript.failed_chunks)} of {len(chunks)} chunks failed "
                f"and nothing was transcribed: {last_error}"
            ) from last_error

        transcript.language = dominant_language(languages)
        logger.info(
            "Transcribed %d cues from %d chunks (language=%s)",
            len(transcript.cues),
            len(chunks),
            transcript.language or "unknown",
        )
        return transcript
