"""Media introspection via ffprobe."""

from vpp.introspector.ffprobe import FFprobeIntrospector
from vpp.introspector.models import ChapterInfo, ProbeResult, StreamInfo
from vpp.introspector.parsers import parse_ffprobe_output, parse_frame_rate

__all__ = [
    "ChapterInfo",
    "FFprobeIntrospector",
    "ProbeResult",
    "StreamInfo",
    "parse_ffprobe_output",
    "parse_frame_rate",
]
