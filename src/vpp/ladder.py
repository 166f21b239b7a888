"""Quality ladder planning.

Turns the configured quality steps into concrete output renditions for one
source. Planning is pure: the same source dimensions and configuration
always yield the same ladder.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from vpp.config.models import QualityStepConfig, VideoConfig

logger = logging.getLogger(__name__)

NATIVE_LABEL = "original"


@dataclass(frozen=True)
class QualityStep:
    """One rendition of the adaptive-bitrate ladder."""

    label: str
    scale_divisor: int
    audio_bitrate_divisor: int
    width: int
    height: int
    fps: float
    audio_bitrate_kbps: int

    @property
    def output_name(self) -> str:
        return f"output_{self.label}.webm"


def _even(value: int) -> int:
    """Floor to an even pixel count; encoders reject odd 4:2:0 dimensions."""
    return max(value - value % 2, 2)


def _audio_bitrate(
    base: int, divisor: int, source_pixels: int, threshold: int, bonus: int
) -> int:
    bitrate = base // divisor
    if source_pixels >= threshold:
        bitrate += bonus
    return bitrate


def plan(
    source_width: int,
    source_height: int,
    source_fps: float,
    steps: Sequence[QualityStepConfig],
    max_steps: int,
    min_dimension: int,
    fps_cap: float,
    audio_base: int,
    threshold_pixels: int,
    bonus: int,
) -> list[QualityStep]:
    """Compute the ladder for one source.

    Steps are evaluated in configured order. A step whose width or height
    falls below min_dimension is dropped, not clamped. Planning stops once
    max_steps steps have been accepted. If no configured step survives, a
    single step at the source's native resolution is returned, so the
    result is never empty.

    Args:
        source_width: Source width in pixels.
        source_height: Source height in pixels.
        source_fps: Source frame rate.
        steps: Configured steps, in order.
        max_steps: Maximum number of steps to emit.
        min_dimension: Smallest acceptable width or height.
        fps_cap: Upper bound on output frame rate.
        audio_base: Audio bitrate (kbps) before division.
        threshold_pixels: Source pixel count that earns the audio bonus.
        bonus: Extra audio kbps for sources at or above the threshold.

    Returns:
        Accepted steps in configured order.

    Raises:
        ValueError: If the source dimensions are not positive.
    """
    if source_width <= 0 or source_height <= 0:
        raise ValueError(
            f"Source dimensions must be positive, got {source_width}x{source_height}"
        )

    source_pixels = source_width * source_height
    fps = min(source_fps, fps_cap) if source_fps > 0 else fps_cap

    ladder: list[QualityStep] = []
    for step in steps:
        if len(ladder) >= max_steps:
            break

        width = _even(source_width // step.scale_divisor)
        height = _even(source_height // step.scale_divisor)
        if width < min_dimension or height < min_dimension:
            logger.debug(
                "Dropping step %s: %dx%d is below minimum dimension %d",
                step.label,
                width,
                height,
                min_dimension,
            )
            continue

        ladder.append(
            QualityStep(
                label=step.label,
                scale_divisor=step.scale_divisor,
                audio_bitrate_divisor=step.audio_bitrate_divisor,
                width=width,
                height=height,
                fps=fps,
                audio_bitrate_kbps=_audio_bitrate(
                    audio_base,
                    step.audio_bitrate_divisor,
                    source_pixels,
                    threshold_pixels,
                    bonus,
                ),
            )
        )

    if not ladder:
        logger.info(
            "No configured step fits a %dx%d source; using native resolution",
            source_width,
            source_height,
        )
        ladder.append(
            QualityStep(
                label=NATIVE_LABEL,
                scale_divisor=1,
                audio_bitrate_divisor=1,
                width=_even(source_width),
                height=_even(source_height),
                fps=fps,
                audio_bitrate_kbps=_audio_bitrate(
                    audio_base, 1, source_pixels, threshold_pixels, bonus
                ),
            )
        )

    return ladder


def plan_ladder(
    source_width: int, source_height: int, source_fps: float, config: VideoConfig
) -> list[QualityStep]:
    """Plan the ladder using the video section of the configuration."""
    return plan(
        source_width,
        source_height,
        source_fps,
        config.quality_steps,
        max_steps=config.max_resolution_steps,
        min_dimension=config.min_dimension,
        fps_cap=config.fps_cap,
        audio_base=config.audio_bitrate_base,
        threshold_pixels=config.threshold_2k_pixels,
        bonus=config.audio_bitrate_2k_bonus,
    )
