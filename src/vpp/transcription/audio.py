"""Audio extraction for transcription.

The transcription service expects mono 16 kHz 16-bit PCM. The whole
audio track is decoded once into the job's temporary directory; chunks
are then cut from that WAV, which is much cheaper than seeking in the
original container for every chunk.
"""

from __future__ import annotations

import logging
import subprocess  # nosec B404 - only for TimeoutExpired
from collections.abc import Callable
from pathlib import Path

from vpp.concurrency import ResourceLimits, get_limits
from vpp.core.file_utils import artifact_exists, atomic_output
from vpp.core.subprocess_utils import CommandRunner
from vpp.errors import TranscriptionError
from vpp.transcription.chunker import AudioChunk

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000
# Generous: decoding to PCM is much faster than real time
EXTRACT_TIMEOUT_SECS = 3600


def build_extract_command(
    ffmpeg: str, source: Path, output: Path, audio_stream: int = 0
) -> list[str | Path]:
    return [
        ffmpeg, "-nostdin", "-y", "-hide_banner",
        "-i", source,
        "-map", f"0:a:{audio_stream}",
        "-vn", "-ac", "1", "-ar", str(SAMPLE_RATE),
        "-c:a", "pcm_s16le",
        "-f", "wav", output,
    ]


def build_chunk_command(
    ffmpeg: str, wav: Path, chunk: AudioChunk, output: Path
) -> list[str | Path]:
    return [
        ffmpeg, "-nostdin", "-y", "-hide_banner",
        "-ss", f"{chunk.start:.3f}",
        "-i", wav,
        "-t", f"{chunk.duration:.3f}",
        "-c:a", "pcm_s16le",
        "-f", "wav", output,
    ]


class AudioExtractor:
    """Decodes audio into transcription-ready WAV files."""

    def __init__(
        self,
        ffmpeg: str,
        runner: CommandRunner,
        limits: ResourceLimits | None = None,
    ) -> None:
        self._ffmpeg = ffmpeg
        self._runner = runner
        self._limits = limits or get_limits()

    def _run(self, args: list[str | Path], what: str) -> None:
        try:
            with self._limits.external():
                result = self._runner.run(args, timeout=EXTRACT_TIMEOUT_SECS)
        except subprocess.TimeoutExpired as e:
            raise TranscriptionError(f"{what} timed out") from e
        if not result.ok:
            raise TranscriptionError(f"{what} failed: {result.stderr_tail()}")

    def _produce(
        self,
        args_for: Callable[[Path], list[str | Path]],
        output: Path,
        what: str,
    ) -> Path:
        with atomic_output(output) as tmp:
            self._run(args_for(tmp), what)
        if not artifact_exists(output):
            raise TranscriptionError(f"{what} produced no output")
        return output

    def extract(self, source: Path, output: Path, audio_stream: int = 0) -> Path:
        """Decode one audio stream of source to a mono 16 kHz WAV.

        Raises:
            TranscriptionError: If ffmpeg fails or writes nothing.
        """
        if artifact_exists(output):
            logger.debug("Reusing extracted audio %s", output)
            return output
        logger.info("Extracting audio for transcription")
        return self._produce(
            lambda tmp: build_extract_command(self._ffmpeg, source, tmp, audio_stream),
            output,
            "Audio extraction",
        )

    def extract_chunk(self, wav: Path, chunk: AudioChunk, output: Path) -> Path:
        """Cut one chunk out of an extracted WAV."""
        return self._produce(
            lambda tmp: build_chunk_command(self._ffmpeg, wav, chunk, tmp),
            output,
            f"Extraction of chunk {chunk.index}",
        )
