"""Extraction of embedded text subtitles to WebVTT."""

from __future__ import annotations

import logging
import os
import subprocess  # nosec B404 - only for TimeoutExpired
from pathlib import Path

from vpp.concurrency import ResourceLimits, get_limits
from vpp.core.file_utils import artifact_exists, partial_path
from vpp.core.subprocess_utils import CommandRunner
from vpp.introspector.models import StreamInfo

logger = logging.getLogger(__name__)

# Image-based formats cannot be converted to text
BITMAP_CODECS = frozenset(
    {"hdmv_pgs_subtitle", "dvd_subtitle", "dvb_subtitle", "dvb_teletext", "xsub"}
)
EXTRACT_TIMEOUT_SECS = 600


def is_text_subtitle(stream: StreamInfo) -> bool:
    return stream.codec_name not in BITMAP_CODECS


def build_extract_command(
    ffmpeg: str, source: Path, outputs: list[tuple[StreamInfo, Path]]
) -> list[str | Path]:
    """One ffmpeg call writing every requested stream to its own file."""
    args: list[str | Path] = [ffmpeg, "-nostdin", "-y", "-v", "error", "-i", source]
    for stream, output in outputs:
        args += ["-map", f"0:{stream.index}", "-c:s", "webvtt", "-f", "webvtt", output]
    return args


class SubtitleExtractor:
    """Converts embedded subtitle streams to WebVTT files."""

    def __init__(
        self,
        ffmpeg: str,
        runner: CommandRunner,
        limits: ResourceLimits | None = None,
    ) -> None:
        self._ffmpeg = ffmpeg
        self._runner = runner
        self._limits = limits or get_limits()

    def extract(
        self, source: Path, requests: list[tuple[StreamInfo, Path]]
    ) -> list[Path]:
        """Extract streams, skipping outputs that already exist.

        Args:
            source: Media file.
            requests: (stream, output path) pairs.

        Returns:
            Output paths that now hold a non-empty file, in request order.
            Failures are logged; a stream that could not be converted is
            simply absent from the result.
        """
        pending = [(s, out) for s, out in requests if not artifact_exists(out)]
        if pending:
            self._extract_pending(source, pending)
        return [out for _, out in requests if artifact_exists(out)]

    def _extract_pending(
        self, source: Path, pending: list[tuple[StreamInfo, Path]]
    ) -> None:
        temp_outputs = [(s, partial_path(out)) for s, out in pending]
        for _, out in pending:
            out.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Extracting %d subtitle stream(s) to WebVTT", len(pending))
        succeeded = False
        try:
            with self._limits.external():
                result = self._runner.run(
                    build_extract_command(self._ffmpeg, source, temp_outputs),
                    timeout=EXTRACT_TIMEOUT_SECS,
                )
            if result.ok:
                succeeded = True
            else:
                logger.warning("Subtitle extraction failed: %s", result.stderr_tail())
        except subprocess.TimeoutExpired:
            logger.warning("Subtitle extraction timed out")
        finally:
            for (_, tmp), (_, out) in zip(temp_outputs, pending):
                if succeeded and artifact_exists(tmp):
                    os.replace(tmp, out)
                else:
                    tmp.unlink(missing_ok=True)
