"""Per-job processing pipeline.

A job is recognized as a PDF by its leading bytes, or probed once and
classified, then takes exactly one branch:

- video: quality ladder, DASH manifest, preview clip, thumbnails,
  showcase, sprites, subtitles and chapters
- audio: Opus transcode, cover art, subtitles and chapters
- picture: AVIF picture and thumbnails
- document_pdf: first-page thumbnails, extracted text and a copy of the PDF

Every artifact is written through a ``.partial`` path and skipped when it
already exists, so a job interrupted at any point can simply be run again.
"""

from __future__ import annotations

import logging
import subprocess  # nosec B404 - only for TimeoutExpired
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from vpp.audio import AudioTranscoder
from vpp.classifier import MediaCategory, category_hint, classify, is_pdf
from vpp.concurrency import ResourceLimits, get_limits
from vpp.config.models import ProcessorConfig
from vpp.core.file_utils import artifact_exists, atomic_output, remove_partials
from vpp.core.subprocess_utils import CommandRunner
from vpp.core.tools import ToolPaths
from vpp.encoder import build_encode_command, build_profile, detect_hdr
from vpp.document import DocumentProcessor
from vpp.errors import ClassificationError, EncodeError, JobCancelledError, ProbeError
from vpp.introspector import FFprobeIntrospector
from vpp.introspector.models import ProbeResult, StreamInfo
from vpp.jobs.models import VIDEO_DIR, JobContext
from vpp.ladder import QualityStep, plan_ladder
from vpp.logging import job_context, run_in_context, stage_context
from vpp.manifest import ManifestAssembler
from vpp.picture import PictureTranscoder
from vpp.services import TranslationClient, WhisperClient
from vpp.sprites import PreviewRenderer
from vpp.subtitles import (
    CoverageResult,
    SubtitleCoverageOrchestrator,
    SubtitleExtractor,
    export_chapters,
)
from vpp.transcription import AudioTranscriber

logger = logging.getLogger(__name__)


class StepStatus(Enum):
    ENCODED = "encoded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class StepOutcome:
    """Result of one ladder step."""

    step: QualityStep
    output: Path
    status: StepStatus
    error: str | None = None


@dataclass
class PipelineResult:
    """Summary of a processed job."""

    job_id: str
    category: MediaCategory
    steps: list[StepOutcome] = field(default_factory=list)
    coverage: CoverageResult | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def failed_steps(self) -> list[str]:
        return [o.step.label for o in self.steps if o.status is StepStatus.FAILED]


@dataclass
class JobPlan:
    """Dry-run view of what a job would do."""

    source: Path
    category: MediaCategory
    probe: ProbeResult | None = None
    steps: list[QualityStep] = field(default_factory=list)
    hdr: str = "none"
    commands: list[list[str]] = field(default_factory=list)


class MediaPipeline:
    """Runs the processing branch that matches a job's media category."""

    def __init__(
        self,
        config: ProcessorConfig,
        tools: ToolPaths,
        limits: ResourceLimits | None = None,
        whisper: WhisperClient | None = None,
        translator: TranslationClient | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            config: Validated processor configuration.
            tools: Resolved ffmpeg/ffprobe executables.
            limits: Process-wide concurrency limits; the shared instance
                is used if omitted.
            whisper: Transcription client; created from config if omitted.
            translator: Translation client; created from config when
                translation is enabled and none is given.
        """
        self.config = config
        self.tools = tools
        self.limits = limits or get_limits()
        self._whisper = whisper or WhisperClient(config.whisper)
        if translator is None and config.translation.enabled:
            translator = TranslationClient(config.translation)
        self._translator = translator

    def close(self) -> None:
        """Close the service clients."""
        self._whisper.close()
        if self._translator is not None:
            self._translator.close()

    def __enter__(self) -> MediaPipeline:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- entry points ------------------------------------------------------

    def probe(self, source: Path, runner: CommandRunner | None = None) -> ProbeResult:
        introspector = FFprobeIntrospector(
            self.tools.ffprobe, runner, timeout=self.config.tools.probe_timeout_secs
        )
        return introspector.probe(source)

    def process(self, ctx: JobContext) -> PipelineResult:
        """Process one job to completion.

        Args:
            ctx: Job context; its runner and cancel event are used for every
                external process.

        Returns:
            Summary of the processed job.

        Raises:
            ProcessorError: The job failed; the message is the reason stored
                with the job.
            JobCancelledError: Cancellation was requested.
        """
        job = ctx.job
        with job_context(job.id):
            ctx.prepare()
            try:
                with stage_context("probe"):
                    job.category = self._categorize(ctx)
                logger.info("Processing %s as %s", job.source.name, job.category.value)

                result = PipelineResult(job_id=job.id, category=job.category)
                if job.category is MediaCategory.VIDEO:
                    self._process_video(ctx, ctx.probe, result)
                elif job.category is MediaCategory.AUDIO:
                    self._process_audio(ctx, ctx.probe, result)
                elif job.category is MediaCategory.DOCUMENT_PDF:
                    self._process_document(ctx, result)
                else:
                    self._process_picture(ctx, ctx.probe)

                logger.info("Job %s processed", job.id)
                return result
            except JobCancelledError:
                logger.info("Job %s cancelled; removing partial output", job.id)
                remove_partials(job.workspace)
                raise
            finally:
                ctx.cleanup_tmp()
                if not ctx.cancelled:
                    remove_partials(job.workspace)

    def plan(self, source: Path, runner: CommandRunner | None = None) -> JobPlan:
        """Probe and classify a file and build its ladder commands."""
        if is_pdf(source):
            return JobPlan(source=source, category=MediaCategory.DOCUMENT_PDF)
        probe = self.probe(source, runner)
        category = classify(probe)
        job_plan = JobPlan(source=source, category=category, probe=probe)
        if category is not MediaCategory.VIDEO:
            return job_plan

        video = self.config.video
        stream = _require_video(probe)
        hdr = detect_hdr(stream, video.encoder)
        job_plan.hdr = hdr.kind.value
        job_plan.steps = plan_ladder(
            stream.width or 0, stream.height or 0, stream.frame_rate or 0.0, video
        )
        for step in job_plan.steps:
            profile = build_profile(step, video.backend_settings, hdr)
            args = build_encode_command(
                self.tools.ffmpeg,
                profile,
                step,
                source,
                Path(VIDEO_DIR) / step.output_name,
                stream.type_index,
            )
            job_plan.commands.append([str(arg) for arg in args])
        return job_plan

    # -- routing -----------------------------------------------------------

    def _categorize(self, ctx: JobContext) -> MediaCategory:
        """Choose the processing branch of a job.

        A PDF signature wins. Otherwise the file is probed and classified;
        if that fails, a job recorded as ``document_pdf`` still takes the
        document branch.
        """
        job = ctx.job
        if is_pdf(job.source):
            return MediaCategory.DOCUMENT_PDF
        try:
            ctx.probe = self.probe(job.source, ctx.runner)
            return classify(ctx.probe)
        except (ProbeError, ClassificationError) as e:
            if category_hint(job.media_type) is not MediaCategory.DOCUMENT_PDF:
                raise
            logger.warning("%s; using recorded type %s", e, job.media_type)
            return MediaCategory.DOCUMENT_PDF

    # -- video -------------------------------------------------------------

    def _process_video(
        self, ctx: JobContext, probe: ProbeResult, result: PipelineResult
    ) -> None:
        video = self.config.video
        stream = _require_video(probe)
        ctx.hdr = detect_hdr(stream, video.encoder)
        steps = plan_ladder(
            stream.width or 0, stream.height or 0, stream.frame_rate or 0.0, video
        )
        logger.info(
            "Ladder: %s",
            ", ".join(f"{s.label} {s.width}x{s.height}@{s.fps:g}" for s in steps),
        )

        with stage_context("encode"):
            result.steps = self.encode_ladder(ctx, steps, stream)
        ctx.check_cancelled()

        with stage_context("manifest"):
            assembler = ManifestAssembler(
                self.tools.ffmpeg, ctx.runner, video.dash, self.limits
            )
            assembler.assemble(
                [(o.step, o.output) for o in result.steps],
                ctx.workspace,
                source=ctx.job.source,
                audio_streams=probe.audio_streams,
                refresh=any(o.status is StepStatus.ENCODED for o in result.steps),
            )
        ctx.check_cancelled()

        duration = probe.duration or stream.duration or 0.0
        renderer = PreviewRenderer(self.tools.ffmpeg, ctx.runner, self.limits)
        with stage_context("previews"):
            if not renderer.render_thumbnails(
                ctx.job.source, duration, ctx.workspace, video.thumbnail, seed=ctx.job.id
            ):
                result.warnings.append("thumbnail")
            if not renderer.render_showcase(ctx.job.source, ctx.workspace, video.showcase):
                result.warnings.append("showcase")
            ctx.check_cancelled()
            report = renderer.render_sprites(
                ctx.job.source, duration, ctx.sprites_dir, video.preview_sprites
            )
            if not report.ok:
                result.warnings.append("sprites")
        ctx.check_cancelled()

        result.coverage = self._process_subtitles(ctx, probe)
        self._export_chapters(ctx, probe)

    def encode_ladder(
        self, ctx: JobContext, steps: list[QualityStep], stream: StreamInfo
    ) -> list[StepOutcome]:
        """Encode every ladder step.

        Steps run in a pool of ``video.parallel_steps`` workers, each holding
        an encoder slot while its encoder runs. A failed step is recorded and
        the others continue; failed steps are not retried.

        Returns:
            One outcome per step, in ladder order.
        """
        workers = min(self.config.video.parallel_steps, len(steps)) or 1

        def encode(step: QualityStep) -> StepOutcome:
            return self._encode_step(ctx, step, stream)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(run_in_context(encode), steps))

        failed = [o for o in outcomes if o.status is StepStatus.FAILED]
        if failed:
            logger.warning(
                "%d of %d quality steps failed: %s",
                len(failed),
                len(outcomes),
                ", ".join(o.step.label for o in failed),
            )
        return outcomes

    def _encode_step(
        self, ctx: JobContext, step: QualityStep, stream: StreamInfo
    ) -> StepOutcome:
        video = self.config.video
        output = ctx.video_dir / step.output_name
        if artifact_exists(output):
            logger.info("Step %s already encoded, skipping", step.label)
            return StepOutcome(step, output, StepStatus.SKIPPED)

        ctx.check_cancelled()
        profile = build_profile(step, video.backend_settings, ctx.hdr)
        try:
            with atomic_output(output) as tmp:
                args = build_encode_command(
                    self.tools.ffmpeg, profile, step, ctx.job.source, tmp, stream.type_index
                )
                logger.info("Encoding %s (%dx%d)", step.label, step.width, step.height)
                try:
                    with self.limits.encoder():
                        run = ctx.runner.run(args, timeout=video.encode_timeout_secs)
                except subprocess.TimeoutExpired as e:
                    raise EncodeError(step.label, f"timed out after {e.timeout}s") from e
                if not run.ok:
                    raise EncodeError(step.label, run.stderr_tail(), run.returncode)
                if not artifact_exists(tmp):
                    raise EncodeError(step.label, "encoder produced no output")
        except EncodeError as e:
            logger.error("%s", e)
            return StepOutcome(step, output, StepStatus.FAILED, str(e))
        return StepOutcome(step, output, StepStatus.ENCODED)

    # -- audio, picture and document -----------------------------------

    def _process_audio(
        self, ctx: JobContext, probe: ProbeResult, result: PipelineResult
    ) -> None:
        with stage_context("audio"):
            transcoder = AudioTranscoder(
                self.tools.ffmpeg, ctx.runner, self.config.audio, self.limits
            )
            transcoder.transcode(ctx.job.source, probe.audio_streams, ctx.workspace)
        ctx.check_cancelled()

        cover = probe.primary_video
        if cover is not None:
            with stage_context("cover"):
                pictures = PictureTranscoder(
                    self.tools.ffmpeg, ctx.runner, self.config.picture, self.limits
                )
                produced = pictures.transcode(
                    ctx.job.source,
                    ctx.workspace,
                    cover.width or 0,
                    cover.height or 0,
                    video_stream=cover.type_index,
                    required=False,
                )
                if len(produced) < 3:
                    result.warnings.append("cover art")
            ctx.check_cancelled()

        result.coverage = self._process_subtitles(ctx, probe)
        self._export_chapters(ctx, probe)

    def _process_picture(self, ctx: JobContext, probe: ProbeResult) -> None:
        stream = _require_video(probe)
        with stage_context("picture"):
            PictureTranscoder(
                self.tools.ffmpeg, ctx.runner, self.config.picture, self.limits
            ).transcode(
                ctx.job.source,
                ctx.workspace,
                stream.width or 0,
                stream.height or 0,
                video_stream=stream.type_index,
            )

    def _process_document(self, ctx: JobContext, result: PipelineResult) -> None:
        with stage_context("document"):
            report = DocumentProcessor(
                self.tools, ctx.runner, self.config.pdf, self.limits
            ).process(ctx.job.source, ctx.workspace, ctx.tmp_dir)
            if report.text is None:
                result.warnings.append("document text")

    # -- subtitles ---------------------------------------------------------

    def _process_subtitles(self, ctx: JobContext, probe: ProbeResult) -> CoverageResult:
        with stage_context("subtitles"):
            extractor = SubtitleExtractor(self.tools.ffmpeg, ctx.runner, self.limits)
            transcriber = AudioTranscriber.create(
                self.tools.ffmpeg,
                ctx.runner,
                self._whisper,
                self.config.whisper,
                cancel_event=ctx.cancel_event,
            )
            orchestrator = SubtitleCoverageOrchestrator(
                self.config.whisper,
                self.config.translation,
                extractor,
                transcriber=transcriber,
                translator=self._translator,
                cancel_event=ctx.cancel_event,
            )
            return orchestrator.run(probe, ctx.subtitles_dir, ctx.tmp_dir, ctx.registry)

    def _export_chapters(self, ctx: JobContext, probe: ProbeResult) -> None:
        with stage_context("chapters"):
            export_chapters(probe.chapters, ctx.workspace)


def _require_video(probe: ProbeResult) -> StreamInfo:
    stream = probe.primary_video
    if stream is None:
        raise ProbeError(f"No video stream in {probe.path}")
    return stream
