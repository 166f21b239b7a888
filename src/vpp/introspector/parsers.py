"""Pure parsing functions for ffprobe JSON output.

These functions turn ffprobe's JSON into ProbeResult objects. They do no
I/O so they can be tested directly against captured ffprobe output.
"""

from __future__ import annotations

import logging
from typing import Any

from vpp.introspector.models import ChapterInfo, ProbeResult, StreamInfo

logger = logging.getLogger(__name__)


def parse_frame_rate(frame_rate_str: str | None) -> float | None:
    """Parse an ffprobe frame rate string (e.g. '24000/1001') to float.

    Returns:
        Frame rate as float, or None if unparseable or zero.
    """
    if not frame_rate_str or frame_rate_str == "0/0":
        return None

    if "/" in frame_rate_str:
        try:
            num, denom = frame_rate_str.split("/")
            denom_val = float(denom)
            if denom_val == 0:
                return None
            value = float(num) / denom_val
        except ValueError:
            return None
    else:
        try:
            value = float(frame_rate_str)
        except ValueError:
            return None

    return value if value > 0 else None


def parse_float(value: Any) -> float | None:
    """Parse a numeric ffprobe field ("3600.000", "N/A", missing)."""
    if value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if result >= 0 else None


def parse_int(value: Any) -> int | None:
    """Parse an integer ffprobe field such as nb_frames ("N/A" tolerated)."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = int(str(value).strip())
    except ValueError:
        return None
    return result if result >= 0 else None


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_stream(stream: dict[str, Any], type_index: int) -> StreamInfo:
    """Parse a single ffprobe stream dict."""
    codec_type = stream.get("codec_type") or "unknown"
    tags = {str(k).lower(): v for k, v in (stream.get("tags") or {}).items()}
    disposition = stream.get("disposition") or {}

    frame_rate = parse_frame_rate(stream.get("avg_frame_rate")) or parse_frame_rate(
        stream.get("r_frame_rate")
    )

    return StreamInfo(
        index=int(stream.get("index", 0)),
        type_index=type_index,
        codec_type=codec_type,
        codec_name=_clean(stream.get("codec_name")),
        language=_clean(tags.get("language")),
        title=_clean(tags.get("title")),
        duration=parse_float(stream.get("duration")),
        nb_frames=parse_int(stream.get("nb_frames")),
        attached_pic=disposition.get("attached_pic", 0) == 1,
        width=parse_int(stream.get("width")),
        height=parse_int(stream.get("height")),
        frame_rate=frame_rate,
        color_transfer=_clean(stream.get("color_transfer")),
        color_primaries=_clean(stream.get("color_primaries")),
        color_space=_clean(stream.get("color_space")),
        channels=parse_int(stream.get("channels")),
        bit_rate=parse_int(stream.get("bit_rate")),
    )


def parse_chapters(chapters: list[dict[str, Any]]) -> tuple[ChapterInfo, ...]:
    """Parse ffprobe chapters, skipping entries without usable times."""
    result: list[ChapterInfo] = []
    for chapter in chapters:
        start = parse_float(chapter.get("start_time"))
        end = parse_float(chapter.get("end_time"))
        if start is None or end is None or end <= start:
            logger.debug("Skipping chapter with invalid times: %s", chapter)
            continue
        tags = chapter.get("tags") or {}
        result.append(ChapterInfo(start=start, end=end, title=_clean(tags.get("title"))))
    return tuple(result)


def parse_ffprobe_output(path: str, data: dict[str, Any]) -> ProbeResult:
    """Build a ProbeResult from ffprobe's ``-print_format json`` output.

    Args:
        path: Probed file, for context.
        data: Decoded ffprobe JSON.

    Returns:
        ProbeResult with streams in ffprobe order.
    """
    fmt = data.get("format") or {}
    type_counts: dict[str, int] = {}
    streams: list[StreamInfo] = []
    for raw in data.get("streams") or []:
        codec_type = raw.get("codec_type") or "unknown"
        type_index = type_counts.get(codec_type, 0)
        type_counts[codec_type] = type_index + 1
        streams.append(parse_stream(raw, type_index))

    duration = parse_float(fmt.get("duration"))
    if duration is None:
        stream_durations = [s.duration for s in streams if s.duration is not None]
        duration = max(stream_durations) if stream_durations else None

    return ProbeResult(
        path=path,
        duration=duration,
        format_name=_clean(fmt.get("format_name")),
        streams=tuple(streams),
        chapters=parse_chapters(data.get("chapters") or []),
    )
