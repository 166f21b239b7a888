"""Silence-aware audio chunking.

Long audio is sent to the transcription service in chunks. Cutting in the
middle of a word hurts recognition on both sides of the cut, so chunk
boundaries are placed at detected silences whenever one is close enough to
the target length, and forced at the maximum length otherwise.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class SplitReason(Enum):
    """Why a chunk ends where it does."""

    SILENCE_FOUND = "silence-found"
    FORCED_MAX_DURATION = "forced-max-duration"
    END_OF_INPUT = "end-of-input"


@dataclass(frozen=True)
class SilenceInterval:
    """A detected stretch of silence, in seconds from the start of input."""

    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def midpoint(self) -> float:
        return (self.start + self.end) / 2


@dataclass(frozen=True)
class AudioChunk:
    """A half-open span [start, end) of the input audio."""

    index: int
    start: float
    end: float
    split_reason: SplitReason

    @property
    def duration(self) -> float:
        return self.end - self.start


def chunk(
    total_duration: float,
    silences: Iterable[SilenceInterval],
    target_duration: float,
    max_duration: float,
    min_silence: float = 0.0,
) -> list[AudioChunk]:
    """Split [0, total_duration) into chunks cut at silences.

    Starting at the end of the previous chunk, every silence whose midpoint
    lies within ``max_duration`` is a candidate; the one closest to
    ``target_duration`` wins, ties going to the earliest. Without a
    candidate the chunk is cut at ``max_duration`` (or at the end of input,
    if sooner). Once the remaining audio fits in ``target_duration`` it
    becomes the final chunk.

    The chunks tile the input exactly: no gaps, no overlap, the first starts
    at 0 and the last ends at ``total_duration``. No chunk is longer than
    ``max_duration``.

    Args:
        total_duration: Length of the audio in seconds.
        silences: Detected silence intervals, in any order.
        target_duration: Preferred chunk length.
        max_duration: Hard upper bound on chunk length.
        min_silence: Silences shorter than this are ignored.

    Returns:
        Chunks in time order; empty for zero-length input.

    Raises:
        ValueError: If the durations are inconsistent.
    """
    if target_duration <= 0:
        raise ValueError(f"target_duration must be positive, got {target_duration}")
    if max_duration < target_duration:
        raise ValueError(
            f"max_duration ({max_duration}) must be >= target_duration "
            f"({target_duration})"
        )
    if total_duration <= 0:
        return []

    midpoints = sorted(
        {
            s.midpoint
            for s in silences
            if s.duration >= min_silence and 0 < s.midpoint < total_duration
        }
    )

    chunks: list[AudioChunk] = []
    last_end = 0.0
    while total_duration - last_end > target_duration:
        window_end = last_end + max_duration
        ideal = last_end + target_duration

        best: float | None = None
        best_distance = 0.0
        for mid in midpoints:
            if mid <= last_end:
                continue
            if mid > window_end:
                break
            distance = abs(mid - ideal)
            # Strict comparison keeps the earliest midpoint on ties
            if best is None or distance < best_distance:
                best, best_distance = mid, distance

        if best is not None:
            cut, reason = best, SplitReason.SILENCE_FOUND
        else:
            cut, reason = min(window_end, total_duration), SplitReason.FORCED_MAX_DURATION

        if cut >= total_duration:
            break

        chunks.append(AudioChunk(len(chunks), last_end, cut, reason))
        last_end = cut

    chunks.append(
        AudioChunk(len(chunks), last_end, total_duration, SplitReason.END_OF_INPUT)
    )

    logger.debug(
        "Split %.1fs of audio into %d chunks (%d at silence)",
        total_duration,
        len(chunks),
        sum(1 for c in chunks if c.split_reason is SplitReason.SILENCE_FOUND),
    )
    return chunks
