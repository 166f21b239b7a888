"""Media classification.

Decides which processing branch a source file takes. PDF documents are
recognized by their leading bytes; everything else by the shape of its
streams:

- more than one video frame and an audio stream: video
- an audio stream and at most one video frame: audio (cover art included)
- exactly one video frame and no audio: picture
- anything else: unrecognized
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

from vpp.errors import ClassificationError
from vpp.introspector.models import ProbeResult, StreamInfo

logger = logging.getLogger(__name__)


class MediaCategory(Enum):
    """Processing branch for a source file."""

    VIDEO = "video"
    AUDIO = "audio"
    PICTURE = "picture"
    DOCUMENT_PDF = "document_pdf"


PDF_MAGIC = b"%PDF"


def is_pdf(path: Path) -> bool:
    """Return True if the file starts with the PDF signature."""
    try:
        with path.open("rb") as f:
            return f.read(len(PDF_MAGIC)) == PDF_MAGIC
    except OSError:
        return False


def category_hint(media_type: str | None) -> MediaCategory | None:
    """Category named by the type recorded with an upload, if it names one."""
    try:
        return MediaCategory(media_type)
    except ValueError:
        return None


def count_video_frames(stream: StreamInfo | None, container_duration: float | None) -> int:
    """Best-effort count of decodable frames in a video stream.

    Uses the container-reported frame count when present, otherwise
    estimates from duration and frame rate. A video stream always has at
    least one frame.

    Args:
        stream: The primary video stream, or None.
        container_duration: Format-level duration as a fallback.

    Returns:
        Frame count; 0 when there is no video stream.
    """
    if stream is None:
        return 0
    if stream.attached_pic:
        return 1
    if stream.nb_frames is not None:
        return max(stream.nb_frames, 1)

    duration = stream.duration if stream.duration is not None else container_duration
    if duration and stream.frame_rate:
        return max(round(duration * stream.frame_rate), 1)
    return 1


def classify(probe: ProbeResult) -> MediaCategory:
    """Classify a probed file.

    Args:
        probe: ffprobe result for the source.

    Returns:
        The media category.

    Raises:
        ClassificationError: If the stream shape matches no category.
    """
    frames = count_video_frames(probe.primary_video, probe.duration)
    has_audio = bool(probe.audio_streams)

    if frames > 1 and has_audio:
        category = MediaCategory.VIDEO
    elif has_audio:
        category = MediaCategory.AUDIO
    elif frames == 1:
        category = MediaCategory.PICTURE
    else:
        detail = (
            f"{frames} video frames without audio"
            if frames
            else "no video or audio streams"
        )
        raise ClassificationError(probe.path, detail)

    logger.info(
        "Classified %s as %s (video frames: %d, audio: %s)",
        probe.path,
        category.value,
        frames,
        has_audio,
    )
    return category
