"""Audio-only transcoding.

The first audio stream becomes ``audio.<format>``; further streams become
``audio_2.<format>``, ``audio_3.<format>`` and so on. Lossless sources
get the higher bitrate since there is no earlier lossy generation to
hide behind.
"""

from __future__ import annotations

import logging
import subprocess  # nosec B404 - only for TimeoutExpired
from pathlib import Path

from vpp.concurrency import ResourceLimits, get_limits
from vpp.config.models import AudioConfig
from vpp.core.file_utils import artifact_exists, atomic_output
from vpp.core.subprocess_utils import CommandRunner
from vpp.errors import EncodeError
from vpp.introspector.models import StreamInfo

logger = logging.getLogger(__name__)

AUDIO_TIMEOUT_SECS = 3600


def select_bitrate(codec_name: str | None, config: AudioConfig) -> str:
    if codec_name and codec_name in config.lossless_codecs:
        return config.lossless_bitrate
    return config.lossy_bitrate


def audio_output_name(position: int, config: AudioConfig) -> str:
    """``audio.ogg`` for the first stream, ``audio_<n>.ogg`` after that."""
    if position == 0:
        return f"audio.{config.output_format}"
    return f"audio_{position + 1}.{config.output_format}"


def build_audio_command(
    ffmpeg: str,
    source: Path,
    stream: StreamInfo,
    config: AudioConfig,
    output: Path,
) -> list[str | Path]:
    return [
        ffmpeg, "-nostdin", "-y", "-hide_banner",
        "-i", source,
        "-map", f"0:a:{stream.type_index}",
        "-c:a", config.codec,
        "-b:a", select_bitrate(stream.codec_name, config),
        "-vbr", config.vbr,
        "-application", config.application,
        "-vn",
        "-f", config.output_format, output,
    ]


class AudioTranscoder:
    def __init__(
        self,
        ffmpeg: str,
        runner: CommandRunner,
        config: AudioConfig,
        limits: ResourceLimits | None = None,
    ) -> None:
        self._ffmpeg = ffmpeg
        self._runner = runner
        self._config = config
        self._limits = limits or get_limits()

    def _encode(self, source: Path, stream: StreamInfo, output: Path) -> str | None:
        """Encode one stream; returns an error message or None."""
        if artifact_exists(output):
            logger.debug("%s exists, skipping", output.name)
            return None
        with atomic_output(output) as tmp:
            args = build_audio_command(self._ffmpeg, source, stream, self._config, tmp)
            try:
                with self._limits.external():
                    result = self._runner.run(args, timeout=AUDIO_TIMEOUT_SECS)
            except subprocess.TimeoutExpired:
                tmp.unlink(missing_ok=True)
                return "timed out"
            if not result.ok:
                tmp.unlink(missing_ok=True)
                return result.stderr_tail()
        if not artifact_exists(output):
            return "no output written"
        return None

    def transcode(self, source: Path, streams: list[StreamInfo], workspace: Path) -> list[Path]:
        """Transcode every audio stream.

        Raises:
            EncodeError: The first stream failed. Failures of further
                streams are only logged.
        """
        if not streams:
            raise EncodeError("audio", "source has no audio stream")

        produced = []
        for position, stream in enumerate(streams):
            output = workspace / audio_output_name(position, self._config)
            logger.info(
                "Transcoding audio stream %d (%s) at %s",
                stream.type_index,
                stream.codec_name or "unknown codec",
                select_bitrate(stream.codec_name, self._config),
            )
            error = self._encode(source, stream, output)
            if error is None:
                produced.append(output)
            elif position == 0:
                raise EncodeError("audio", error)
            else:
                logger.warning("Audio stream %d failed: %s", stream.type_index, error)
        return produced
