"""Silence detection with ffmpeg's silencedetect filter.

Only the neighbourhood of each expected chunk boundary is scanned, and the
scans run in parallel, so a multi-hour file does not need a full decode
pass before transcription can start.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from vpp.concurrency import ResourceLimits, get_limits
from vpp.config.models import WhisperConfig
from vpp.core.subprocess_utils import CommandRunner
from vpp.logging import run_in_context
from vpp.transcription.chunker import SilenceInterval

logger = logging.getLogger(__name__)

_START_RE = re.compile(r"silence_start:\s*(-?[\d.]+)")
_END_RE = re.compile(r"silence_end:\s*(-?[\d.]+)")

# Scan this far before an expected boundary
WINDOW_LEAD_SECS = 120.0
# ...and this far past the latest point the chunker could cut
WINDOW_TAIL_SECS = 60.0
# Windows closer than this are scanned as one
WINDOW_MERGE_GAP_SECS = 30.0
# Intervals found twice by overlapping scans are considered duplicates
DUPLICATE_TOLERANCE_SECS = 0.1


def parse_silence_output(
    stderr: str, offset: float = 0.0, window_end: float | None = None
) -> list[SilenceInterval]:
    """Extract silence intervals from silencedetect log output.

    Args:
        stderr: ffmpeg stderr.
        offset: Seek position of the scan; added to every timestamp.
        window_end: Absolute end of the scan. A silence still open when
            the scan stops is closed here; without it, it is dropped.

    Returns:
        Intervals in absolute input time.
    """
    intervals: list[SilenceInterval] = []
    pending_start: float | None = None
    for line in stderr.splitlines():
        if (match := _START_RE.search(line)) is not None:
            pending_start = max(float(match.group(1)), 0.0) + offset
        elif (match := _END_RE.search(line)) is not None and pending_start is not None:
            end = float(match.group(1)) + offset
            if end > pending_start:
                intervals.append(SilenceInterval(pending_start, end))
            pending_start = None

    if pending_start is not None and window_end is not None and window_end > pending_start:
        intervals.append(SilenceInterval(pending_start, window_end))
    return intervals


def detection_windows(
    total_duration: float, target: float, maximum: float
) -> list[tuple[float, float]]:
    """Compute the spans to scan, one around each expected boundary.

    Overlapping or nearly touching windows are merged.
    """
    windows: list[tuple[float, float]] = []
    position = target
    while position < total_duration:
        start = max(position - WINDOW_LEAD_SECS, 0.0)
        end = min(position + (maximum - target) + WINDOW_TAIL_SECS, total_duration)
        if windows and start - windows[-1][1] <= WINDOW_MERGE_GAP_SECS:
            windows[-1] = (windows[-1][0], max(windows[-1][1], end))
        else:
            windows.append((start, end))
        position += target
    return windows


def merge_intervals(intervals: list[SilenceInterval]) -> list[SilenceInterval]:
    """Sort intervals and drop duplicates reported by overlapping scans."""
    result: list[SilenceInterval] = []
    for interval in sorted(intervals, key=lambda s: (s.start, s.end)):
        if result and (
            abs(interval.start - result[-1].start) <= DUPLICATE_TOLERANCE_SECS
            and abs(interval.end - result[-1].end) <= DUPLICATE_TOLERANCE_SECS
        ):
            continue
        result.append(interval)
    return result


class SilenceDetector:
    """Runs windowed silencedetect scans over an audio file."""

    def __init__(
        self,
        ffmpeg: str,
        runner: CommandRunner,
        config: WhisperConfig,
        limits: ResourceLimits | None = None,
    ) -> None:
        self._ffmpeg = ffmpeg
        self._runner = runner
        self._config = config
        self._limits = limits or get_limits()

    def build_command(self, audio: Path, start: float, duration: float) -> list[str | Path]:
        filter_spec = (
            f"silencedetect=noise={self._config.silence_noise_db:g}dB"
            f":d={self._config.silence_min_duration:g}"
        )
        return [
            self._ffmpeg, "-nostdin", "-hide_banner",
            "-ss", f"{start:.3f}",
            "-i", audio,
            "-t", f"{duration:.3f}",
            "-vn", "-af", filter_spec,
            "-f", "null", "-",
        ]

    def _scan(self, audio: Path, window: tuple[float, float]) -> list[SilenceInterval]:
        start, end = window
        with self._limits.external():
            result = self._runner.run(self.build_command(audio, start, end - start))
        if not result.ok:
            # A failed scan only costs split quality; chunking falls back to
            # forced cuts in this window.
            logger.warning(
                "Silence scan of %.0f-%.0fs failed: %s", start, end, result.stderr_tail()
            )
            return []
        return parse_silence_output(result.stderr, offset=start, window_end=end)

    def detect(self, audio: Path, total_duration: float) -> list[SilenceInterval]:
        """Find silences near every expected chunk boundary.

        Args:
            audio: Audio file to scan.
            total_duration: Its length in seconds.

        Returns:
            Sorted, de-duplicated silence intervals.
        """
        windows = detection_windows(
            total_duration,
            self._config.target_chunk_secs,
            self._config.max_chunk_secs,
        )
        if not windows:
            return []

        workers = min(self._config.silence_detect_parallel, len(windows))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(run_in_context(lambda w: self._scan(audio, w)), windows))

        intervals = merge_intervals([i for batch in results for i in batch])
        logger.info(
            "Found %d silences in %d scan windows", len(intervals), len(windows)
        )
        return intervals
