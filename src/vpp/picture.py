"""Still-image outputs: ``picture.avif`` and its thumbnails.

Used for picture sources and for the cover art embedded in audio files.
"""

from __future__ import annotations

import logging
import subprocess  # nosec B404 - only for TimeoutExpired
from pathlib import Path

from vpp.concurrency import ResourceLimits, get_limits
from vpp.config.models import PictureConfig
from vpp.core.file_utils import artifact_exists, atomic_output
from vpp.core.subprocess_utils import CommandRunner
from vpp.errors import EncodeError

logger = logging.getLogger(__name__)

PICTURE_FILE = "picture.avif"
THUMBNAIL_AVIF = "thumbnail.avif"
THUMBNAIL_JPG = "thumbnail.jpg"
PICTURE_TIMEOUT_SECS = 600
ALL_OUTPUTS = (PICTURE_FILE, THUMBNAIL_AVIF, THUMBNAIL_JPG)
THUMBNAILS = (THUMBNAIL_AVIF, THUMBNAIL_JPG)


def fit_within(
    width: int, height: int, target_width: int, target_height: int
) -> tuple[int, int]:
    """Largest even size with the source aspect ratio inside the target box.

    Examples:
        >>> fit_within(4000, 3000, 1280, 720)
        (960, 720)
    """
    if width <= 0 or height <= 0:
        return target_width, target_height
    aspect = width / height
    if aspect > target_width / target_height:
        new_width, new_height = target_width, min(int(target_width / aspect), target_height)
    else:
        new_width, new_height = min(int(target_height * aspect), target_width), target_height
    return max(new_width // 2 * 2, 2), max(new_height // 2 * 2, 2)


def build_picture_commands(
    ffmpeg: str,
    source: Path,
    config: PictureConfig,
    thumb_size: tuple[int, int],
    outputs: dict[str, Path],
    video_stream: int = 0,
) -> dict[str, list[str | Path]]:
    """Commands keyed by output name (picture, thumbnail AVIF and JPEG)."""
    tw, th = thumb_size
    scale = f"scale={tw}:{th}:force_original_aspect_ratio=decrease"
    head: list[str | Path] = [
        ffmpeg, "-nostdin", "-y", "-hide_banner",
        "-i", source, "-map", f"0:v:{video_stream}",
    ]
    avif = ["-c:v", "libsvtav1", "-svtav1-params", "avif=1", "-b:v", "0"]
    return {
        PICTURE_FILE: head
        + avif
        + ["-crf", str(config.crf), "-frames:v", "1", "-f", "avif", outputs[PICTURE_FILE]],
        THUMBNAIL_AVIF: head
        + avif
        + [
            "-crf", str(config.thumbnail_crf),
            "-vf", f"{scale},format=yuv420p10le",
            "-frames:v", "1", "-f", "avif", outputs[THUMBNAIL_AVIF],
        ],
        THUMBNAIL_JPG: head
        + [
            "-vf", scale, "-q:v", str(config.jpg_quality),
            "-frames:v", "1", "-update", "1", "-f", "image2", outputs[THUMBNAIL_JPG],
        ],
    }


class PictureTranscoder:
    """Produces the still-image artifact set."""

    def __init__(
        self,
        ffmpeg: str,
        runner: CommandRunner,
        config: PictureConfig,
        limits: ResourceLimits | None = None,
    ) -> None:
        self._ffmpeg = ffmpeg
        self._runner = runner
        self._config = config
        self._limits = limits or get_limits()

    def transcode(
        self,
        source: Path,
        workspace: Path,
        width: int,
        height: int,
        video_stream: int = 0,
        required: bool = True,
        names: tuple[str, ...] = ALL_OUTPUTS,
    ) -> list[Path]:
        """Write picture.avif, thumbnail.avif and thumbnail.jpg.

        Existing files are kept.

        Args:
            source: Image or media file with a still video stream.
            workspace: Output directory.
            width: Source width, for thumbnail sizing.
            height: Source height.
            video_stream: Video stream to read (cover art index for audio).
            required: Raise on failure instead of logging a warning.
            names: Subset of the outputs to write, in order.

        Returns:
            Artifacts that exist afterwards.

        Raises:
            EncodeError: A required output could not be produced.
        """
        thumb_size = fit_within(
            width, height, self._config.thumbnail_width, self._config.thumbnail_height
        )
        targets = {name: workspace / name for name in ALL_OUTPUTS}
        produced = []
        for name in names:
            final = targets[name]
            if artifact_exists(final):
                produced.append(final)
                continue
            with atomic_output(final) as tmp:
                commands = build_picture_commands(
                    self._ffmpeg,
                    source,
                    self._config,
                    thumb_size,
                    {**targets, name: tmp},
                    video_stream,
                )
                error = self._run(commands[name], name)
                if error is not None:
                    tmp.unlink(missing_ok=True)
            if error is None and artifact_exists(final):
                produced.append(final)
            elif required:
                raise EncodeError(name, error or "no output written")
            else:
                logger.warning("Could not produce %s: %s", name, error)
        return produced

    def _run(self, args: list[str | Path], name: str) -> str | None:
        try:
            with self._limits.external():
                result = self._runner.run(args, timeout=PICTURE_TIMEOUT_SECS)
        except subprocess.TimeoutExpired:
            return "timed out"
        if not result.ok:
            return result.stderr_tail()
        return None
