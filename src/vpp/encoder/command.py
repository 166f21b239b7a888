"""FFmpeg command building for ladder encodes.

Commands are returned as argument lists; they are never joined into a
shell string.
"""

from __future__ import annotations

from pathlib import Path

from vpp.encoder.profile import EncoderProfile
from vpp.ladder import QualityStep


def format_rate(fps: float) -> str:
    """Render a frame rate without float noise (29.97, 30, 23.976)."""
    return f"{fps:.3f}".rstrip("0").rstrip(".")


def build_encode_command(
    ffmpeg: str,
    profile: EncoderProfile,
    step: QualityStep,
    source: Path,
    output: Path,
    video_stream: int = 0,
) -> list[str | Path]:
    """Build the ffmpeg invocation for one ladder step.

    The output is video-only WebM; audio is packaged separately for the
    manifest.

    Args:
        ffmpeg: Resolved ffmpeg executable.
        profile: Encoder profile for the step.
        step: The planned quality step.
        source: Input media file.
        output: Destination file (normally a ``.partial`` path).
        video_stream: Index of the source video stream among video streams.

    Returns:
        Argument list, starting with the ffmpeg executable.
    """
    cmd: list[str | Path] = [ffmpeg, "-nostdin", "-y", "-hide_banner"]
    cmd.extend(profile.input_args)
    cmd.extend(["-i", source])
    cmd.extend(["-map", f"0:v:{video_stream}"])
    cmd.extend(["-vf", profile.filter_graph])
    cmd.extend(["-c:v", profile.codec])
    cmd.extend(profile.rate_control)
    cmd.extend(["-r", format_rate(step.fps)])

    if profile.pixel_format and not profile.hw_frames:
        cmd.extend(["-pix_fmt", profile.pixel_format])

    if profile.output_colorspace:
        cmd.extend(
            [
                "-colorspace", profile.output_colorspace,
                "-color_primaries", profile.output_colorspace,
                "-color_trc", profile.output_colorspace,
            ]
        )

    cmd.extend(["-an", "-sn", "-dn", "-f", "webm", output])
    return cmd
