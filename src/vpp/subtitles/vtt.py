"""WebVTT reading and writing.

Only what the processor needs: cue timing and text. Cue settings
(``align:start`` and friends) are accepted on input and dropped.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, replace

logger = logging.getLogger(__name__)

_TIMESTAMP_RE = re.compile(r"^(?:(\d+):)?(\d{1,2}):(\d{2})[.,](\d{1,3})$")
_ARROW = "-->"


@dataclass(frozen=True)
class Cue:
    """A timed block of subtitle text."""

    start: float
    end: float
    text: str

    def shifted(self, offset: float) -> Cue:
        return replace(self, start=self.start + offset, end=self.end + offset)


def format_timestamp(seconds: float) -> str:
    """Format seconds as ``HH:MM:SS.mmm``.

    Examples:
        >>> format_timestamp(3725.5)
        '01:02:05.500'
    """
    total_ms = max(int(round(seconds * 1000)), 0)
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


def parse_timestamp(value: str) -> float:
    """Parse ``HH:MM:SS.mmm`` or ``MM:SS.mmm`` into seconds.

    Raises:
        ValueError: If the value is not a WebVTT timestamp.
    """
    match = _TIMESTAMP_RE.match(value.strip())
    if match is None:
        raise ValueError(f"Invalid WebVTT timestamp: {value!r}")
    hours, minutes, secs, frac = match.groups()
    millis = int(frac.ljust(3, "0"))
    return int(hours or 0) * 3600 + int(minutes) * 60 + int(secs) + millis / 1000


def _parse_timing(line: str) -> tuple[float, float] | None:
    if _ARROW not in line:
        return None
    left, right = line.split(_ARROW, 1)
    right_parts = right.split()
    if not right_parts:
        return None
    try:
        return parse_timestamp(left), parse_timestamp(right_parts[0])
    except ValueError:
        return None


def parse_vtt(content: str) -> list[Cue]:
    """Parse WebVTT text into cues.

    Malformed timing lines are skipped with a debug message rather than
    failing the whole document; transcription services occasionally emit
    stray lines.
    """
    cues: list[Cue] = []
    blocks = re.split(r"\r?\n[ \t]*\r?\n", content.replace("\ufeff", "").strip())
    for block in blocks:
        lines = [line.rstrip() for line in block.splitlines()]
        if not lines:
            continue
        head = lines[0].strip()
        if head.startswith(("WEBVTT", "NOTE", "STYLE", "REGION")):
            # The header block may also carry the first cue if no blank
            # line follows it
            if not head.startswith("WEBVTT") or not any(_ARROW in ln for ln in lines):
                continue
            lines = lines[1:]

        for i, line in enumerate(lines):
            timing = _parse_timing(line)
            if timing is None:
                continue
            text = "\n".join(ln for ln in lines[i + 1 :] if ln.strip())
            start, end = timing
            if end < start:
                logger.debug("Skipping cue with negative duration: %s", line)
                break
            cues.append(Cue(start=start, end=end, text=text))
            break
    return cues


def build_vtt(cues: Iterable[Cue]) -> str:
    """Render cues as a WebVTT document."""
    parts = ["WEBVTT", ""]
    for cue in cues:
        parts.append(f"{format_timestamp(cue.start)} --> {format_timestamp(cue.end)}")
        parts.append(cue.text)
        parts.append("")
    return "\n".join(parts)


def offset_cues(cues: Iterable[Cue], offset: float) -> list[Cue]:
    """Shift every cue by offset seconds."""
    return [cue.shifted(offset) for cue in cues]
