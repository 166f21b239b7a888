"""Preview sprites, thumbnails and the animated showcase.

Sprite sheets tile one capture every ``interval_seconds`` into a grid
``sprites_across`` wide, at most ``max_sprites_per_file`` captures per
sheet. Players load ``sprites/sprites.vtt`` and use its media-fragment
coordinates (``0.avif#xywh=640,0,640,360``) to show a scrubbing preview.

Sheets are independent, so they are rendered concurrently; the index is
computed from the plan, never from completion order.
"""

from __future__ import annotations

import logging
import math
import random
import subprocess  # nosec B404 - only for TimeoutExpired
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from vpp.concurrency import ResourceLimits, get_limits
from vpp.config.models import PreviewSpriteConfig, ShowcaseConfig, ThumbnailConfig
from vpp.core.file_utils import artifact_exists, atomic_output
from vpp.core.subprocess_utils import CommandRunner
from vpp.logging import run_in_context
from vpp.subtitles.vtt import Cue, build_vtt

logger = logging.getLogger(__name__)

SPRITE_INDEX = "sprites.vtt"
SHOWCASE_FILE = "showcase.avif"
THUMBNAIL_JPG = "thumbnail.jpg"
THUMBNAIL_AVIF = "thumbnail.avif"
RENDER_TIMEOUT_SECS = 1800
# Below this, a thumbnail is simply taken from the first frame
MIN_RANDOM_DURATION = 0.1


@dataclass(frozen=True)
class SpriteSheet:
    """One tiled image covering consecutive captures."""

    index: int
    first_capture: int
    captures: int
    columns: int
    rows: int
    start: float
    duration: float

    @property
    def filename(self) -> str:
        return f"{self.index}.avif"


@dataclass
class SpriteReport:
    """What happened to each planned sheet."""

    sheets: list[SpriteSheet] = field(default_factory=list)
    rendered: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    index_path: Path | None = None

    @property
    def ok(self) -> bool:
        return not self.failed


def capture_count(duration: float, interval: float) -> int:
    """Number of captures: one per interval, at least one."""
    if duration <= 0:
        return 1
    return max(math.ceil(duration / interval), 1)


def plan_sprite_sheets(duration: float, config: PreviewSpriteConfig) -> list[SpriteSheet]:
    """Split the captures of a video into sprite sheets.

    Examples:
        With the defaults (5 s interval, 100 per sheet, 10 across), a
        12 minute video has 144 captures: sheet 0 holds 100 in a 10x10
        grid and sheet 1 holds 44 in a 10x5 grid.
    """
    total = capture_count(duration, config.interval_seconds)
    per_sheet = config.max_sprites_per_file
    sheets = []
    for index in range(math.ceil(total / per_sheet)):
        first = index * per_sheet
        captures = min(per_sheet, total - first)
        columns = config.sprites_across
        sheets.append(
            SpriteSheet(
                index=index,
                first_capture=first,
                captures=captures,
                columns=columns,
                rows=math.ceil(captures / columns),
                start=first * config.interval_seconds,
                duration=captures * config.interval_seconds,
            )
        )
    return sheets


def sprite_index_cues(duration: float, config: PreviewSpriteConfig) -> list[Cue]:
    """One cue per capture pointing at its tile, in time order."""
    interval = config.interval_seconds
    per_sheet = config.max_sprites_per_file
    width, height = config.thumb_width, config.thumb_height
    cues = []
    for i in range(capture_count(duration, interval)):
        local = i % per_sheet
        row, col = divmod(local, config.sprites_across)
        start = i * interval
        end = (i + 1) * interval
        if duration > 0:
            end = min(end, duration)
        fragment = f"{i // per_sheet}.avif#xywh={col * width},{row * height},{width},{height}"
        cues.append(Cue(start=start, end=max(end, start), text=fragment))
    return cues


def thumbnail_time(duration: float, seed: str) -> float:
    """Pseudo-random capture time, stable for a given job."""
    if duration <= MIN_RANDOM_DURATION:
        return 0.0
    return random.Random(seed).uniform(0.0, duration)  # nosec B311 - not for security


def build_sheet_command(
    ffmpeg: str,
    source: Path,
    sheet: SpriteSheet,
    config: PreviewSpriteConfig,
    output: Path,
) -> list[str | Path]:
    w, h = config.thumb_width, config.thumb_height
    tile_filter = (
        f"fps=1/{config.interval_seconds:.3f},"
        f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
        f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2,"
        f"tile={sheet.columns}x{sheet.rows}"
    )
    return [
        ffmpeg, "-nostdin", "-y", "-hide_banner",
        "-ss", f"{sheet.start:.3f}",
        "-t", f"{sheet.duration:.3f}",
        "-i", source,
        "-vf", tile_filter,
        "-c:v", "libsvtav1", "-svtav1-params", "avif=1",
        "-pix_fmt", "yuv420p10le",
        "-crf", str(config.quality),
        "-frames:v", "1", "-update", "1",
        "-f", "avif", output,
    ]


def _thumbnail_head(
    ffmpeg: str, source: Path, at: float, config: ThumbnailConfig
) -> list[str | Path]:
    scale = (
        f"scale={config.width}:{config.height}:force_original_aspect_ratio=decrease"
    )
    return [
        ffmpeg, "-nostdin", "-y", "-hide_banner",
        "-ss", f"{at:.2f}", "-i", source, "-vf", scale, "-frames:v", "1",
    ]


def build_thumbnail_jpg_command(
    ffmpeg: str, source: Path, at: float, config: ThumbnailConfig, output: Path
) -> list[str | Path]:
    return _thumbnail_head(ffmpeg, source, at, config) + [
        "-q:v", str(config.jpg_quality), "-update", "1", "-f", "image2", output,
    ]


def build_thumbnail_avif_command(
    ffmpeg: str, source: Path, at: float, config: ThumbnailConfig, output: Path
) -> list[str | Path]:
    return _thumbnail_head(ffmpeg, source, at, config) + [
        "-c:v", "libsvtav1", "-svtav1-params", "avif=1",
        "-pix_fmt", "yuv420p10le", "-crf", str(config.avif_crf),
        "-update", "1", "-f", "avif", output,
    ]


def build_showcase_command(
    ffmpeg: str, source: Path, config: ShowcaseConfig, output: Path
) -> list[str | Path]:
    return [
        ffmpeg, "-nostdin", "-y", "-hide_banner",
        "-i", source,
        "-vf", f"scale={config.width}:-2,fps={config.fps},format=yuv420p10le",
        "-frames:v", str(config.max_frames),
        "-c:v", "libaom-av1", "-pix_fmt", "yuv420p10le",
        "-crf", str(config.quality),
        "-cpu-used", str(config.cpu_used),
        "-row-mt", "1",
        "-f", "avif", output,
    ]


class PreviewRenderer:
    """Renders every still and animated preview of a video."""

    def __init__(
        self,
        ffmpeg: str,
        runner: CommandRunner,
        limits: ResourceLimits | None = None,
    ) -> None:
        self._ffmpeg = ffmpeg
        self._runner = runner
        self._limits = limits or get_limits()

    def _render(self, args: list[str | Path], what: str) -> bool:
        """Run one render holding an external slot; failures are logged."""
        try:
            with self._limits.external():
                result = self._runner.run(args, timeout=RENDER_TIMEOUT_SECS)
        except subprocess.TimeoutExpired:
            logger.warning("%s timed out", what)
            return False
        if not result.ok:
            logger.warning("%s failed: %s", what, result.stderr_tail())
            return False
        return True

    def _render_to(
        self,
        output: Path,
        what: str,
        build: Callable[[Path], list[str | Path]],
    ) -> bool:
        if artifact_exists(output):
            logger.debug("%s exists, skipping", output.name)
            return True
        with atomic_output(output) as tmp:
            ok = self._render(build(tmp), what) and artifact_exists(tmp)
            if not ok:
                tmp.unlink(missing_ok=True)
        return ok

    def render_sprites(
        self,
        source: Path,
        duration: float,
        sprites_dir: Path,
        config: PreviewSpriteConfig,
    ) -> SpriteReport:
        """Render all sprite sheets and write the index.

        Existing sheets are kept. The index references every planned sheet
        even when some failed; failed sheets are listed in the report.
        """
        sprites_dir.mkdir(parents=True, exist_ok=True)
        report = SpriteReport(sheets=plan_sprite_sheets(duration, config))
        logger.info(
            "Rendering %d sprite sheet(s), %d at a time",
            len(report.sheets),
            config.parallel_limit,
        )

        def render(sheet: SpriteSheet) -> tuple[SpriteSheet, str]:
            output = sprites_dir / sheet.filename
            if artifact_exists(output):
                return sheet, "skipped"
            ok = self._render_to(
                output,
                f"Sprite sheet {sheet.index}",
                lambda tmp: build_sheet_command(self._ffmpeg, source, sheet, config, tmp),
            )
            return sheet, "rendered" if ok else "failed"

        workers = min(config.parallel_limit, len(report.sheets))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(run_in_context(render), report.sheets))

        for sheet, outcome in sorted(outcomes, key=lambda o: o[0].index):
            getattr(report, outcome).append(sheet.index)
        if report.failed:
            logger.warning("Sprite sheets failed: %s", report.failed)

        index_path = sprites_dir / SPRITE_INDEX
        with atomic_output(index_path) as tmp:
            tmp.write_text(build_vtt(sprite_index_cues(duration, config)), encoding="utf-8")
        report.index_path = index_path
        return report

    def render_thumbnails(
        self,
        source: Path,
        duration: float,
        workspace: Path,
        config: ThumbnailConfig,
        seed: str,
    ) -> bool:
        """Write thumbnail.jpg and thumbnail.avif from one instant."""
        at = thumbnail_time(duration, seed)
        logger.info("Thumbnail time: %.2fs", at)
        jpg_ok = self._render_to(
            workspace / THUMBNAIL_JPG,
            "JPEG thumbnail",
            lambda tmp: build_thumbnail_jpg_command(self._ffmpeg, source, at, config, tmp),
        )
        avif_ok = self._render_to(
            workspace / THUMBNAIL_AVIF,
            "AVIF thumbnail",
            lambda tmp: build_thumbnail_avif_command(self._ffmpeg, source, at, config, tmp),
        )
        return jpg_ok and avif_ok

    def render_showcase(
        self, source: Path, workspace: Path, config: ShowcaseConfig
    ) -> bool:
        """Write the animated showcase.avif."""
        return self._render_to(
            workspace / SHOWCASE_FILE,
            "Showcase",
            lambda tmp: build_showcase_command(self._ffmpeg, source, config, tmp),
        )
