"""Configuration models.

The whole configuration document is validated once, at startup, into frozen
pydantic models. Unknown keys are rejected so that a typo never silently
falls back to a default.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from vpp.language import normalize_language

VALID_LOG_LEVELS = ("debug", "info", "warning", "error")
VALID_LOG_FORMATS = ("text", "json")
VALID_BACKENDS = ("nvenc", "qsv", "vaapi")


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


# ---------------------------------------------------------------------------
# Encoder backends
# ---------------------------------------------------------------------------


class NvencSettings(_Section):
    """NVIDIA NVENC parameters."""

    backend: Literal["nvenc"] = "nvenc"
    codec: str
    preset: str
    tier: str = "high"
    rc: str = "vbr"
    cq: int = Field(ge=0, le=63)
    lookahead: int | None = Field(default=None, ge=0)
    temporal_aq: bool = False


class QsvSettings(_Section):
    """Intel Quick Sync parameters.

    A look_ahead_depth of 0 disables lookahead entirely.
    """

    backend: Literal["qsv"] = "qsv"
    codec: str
    preset: str
    global_quality: int = Field(ge=0)
    look_ahead_depth: int = Field(default=0, ge=0)


class VaapiSettings(_Section):
    """VA-API parameters. Higher quality values mean more compression."""

    backend: Literal["vaapi"] = "vaapi"
    codec: str
    quality: int = Field(ge=0)
    compression_level: int = Field(default=7, ge=0)
    device: str = "/dev/dri/renderD128"


BackendSettings = Annotated[
    NvencSettings | QsvSettings | VaapiSettings,
    Field(discriminator="backend"),
]


# ---------------------------------------------------------------------------
# Video
# ---------------------------------------------------------------------------


class QualityStepConfig(_Section):
    """One configured rung of the quality ladder."""

    label: str = Field(min_length=1)
    scale_divisor: int = Field(ge=1)
    audio_bitrate_divisor: int = Field(ge=1)

    @field_validator("label")
    @classmethod
    def validate_label(cls, v: str) -> str:
        """Labels become file names, so restrict them to a safe alphabet."""
        if not all(c.isalnum() or c in "_-" for c in v):
            raise ValueError(
                f"Invalid step label '{v}'. Use letters, digits, '_' and '-' only."
            )
        return v


class DashConfig(_Section):
    """Streaming manifest packaging."""

    audio_codec: str = "libopus"
    audio_vbr: str = "constrained"
    audio_channels: int = Field(default=2, ge=1)
    segment_duration: int = Field(default=8, ge=1)


class ThumbnailConfig(_Section):
    width: int = Field(default=1920, ge=16)
    height: int = Field(default=1080, ge=16)
    jpg_quality: int = Field(default=25, ge=1, le=31)
    avif_crf: int = Field(default=28, ge=0, le=63)


class ShowcaseConfig(_Section):
    """Short animated preview."""

    width: int = Field(default=480, ge=16)
    fps: int = Field(default=2, ge=1)
    max_frames: int = Field(default=60, ge=1)
    quality: int = Field(default=40, ge=0, le=63)
    cpu_used: int = Field(default=2, ge=0, le=8)


class PreviewSpriteConfig(_Section):
    """Scrubbing-preview sprite sheets."""

    interval_seconds: float = Field(default=5.0, gt=0)
    thumb_width: int = Field(default=640, ge=16)
    thumb_height: int = Field(default=360, ge=16)
    max_sprites_per_file: int = Field(default=100, ge=1)
    sprites_across: int = Field(default=10, ge=1)
    quality: int = Field(default=36, ge=0, le=63)
    parallel_limit: int = Field(default=4, ge=1)


class VideoConfig(_Section):
    """Ladder, encoder backend and preview settings."""

    encoder: str
    max_resolution_steps: int = Field(default=4, ge=1)
    min_dimension: int = Field(default=144, ge=2)
    fps_cap: float = Field(default=60.0, gt=0)
    audio_bitrate_base: int = Field(default=192, ge=1)
    threshold_2k_pixels: int = Field(default=2560 * 1440, ge=0)
    audio_bitrate_2k_bonus: int = Field(default=64, ge=0)
    quality_steps: tuple[QualityStepConfig, ...] = Field(min_length=1)
    parallel_steps: int = Field(default=1, ge=1)
    encode_timeout_secs: int | None = Field(default=None, ge=1)
    nvenc: NvencSettings | None = None
    qsv: QsvSettings | None = None
    vaapi: VaapiSettings | None = None
    dash: DashConfig = DashConfig()
    thumbnail: ThumbnailConfig = ThumbnailConfig()
    showcase: ShowcaseConfig = ShowcaseConfig()
    preview_sprites: PreviewSpriteConfig = PreviewSpriteConfig()

    @field_validator("encoder")
    @classmethod
    def validate_encoder(cls, v: str) -> str:
        """Validate the backend tag."""
        tag = v.strip().casefold()
        if tag not in VALID_BACKENDS:
            raise ValueError(
                f"Unrecognized encoder '{v}'. "
                f"Must be one of: {', '.join(VALID_BACKENDS)}"
            )
        return tag

    @field_validator("quality_steps")
    @classmethod
    def validate_unique_labels(
        cls, v: tuple[QualityStepConfig, ...]
    ) -> tuple[QualityStepConfig, ...]:
        """Step labels name output files and must be unique."""
        labels = [step.label for step in v]
        duplicates = sorted({label for label in labels if labels.count(label) > 1})
        if duplicates:
            raise ValueError(f"Duplicate quality step labels: {', '.join(duplicates)}")
        return v

    @model_validator(mode="after")
    def validate_backend_block(self) -> VideoConfig:
        """The block for the selected backend must be present."""
        if getattr(self, self.encoder) is None:
            raise ValueError(
                f"encoder is '{self.encoder}' but no [video.{self.encoder}] "
                "settings were provided"
            )
        return self

    @property
    def backend_settings(self) -> BackendSettings:
        """Settings of the selected backend; its ``backend`` tag equals ``encoder``."""
        settings = getattr(self, self.encoder)
        assert settings is not None  # guaranteed by validate_backend_block
        return settings


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


class WhisperConfig(_Section):
    """Transcription service and audio chunking."""

    url: str = "http://whisper:8080/inference"
    model: str = "whisper-1"
    response_format: Literal["vtt", "verbose_json"] = "vtt"
    output_label: str = "AI_transcription"
    temperature: float = Field(default=0.0, ge=0.0, le=1.0)
    target_chunk_secs: float = Field(default=600.0, gt=0)
    max_chunk_secs: float = Field(default=900.0, gt=0)
    silence_noise_db: float = -30.0
    silence_min_duration: float = Field(default=0.5, ge=0)
    silence_detect_parallel: int = Field(default=4, ge=1)
    min_timeout_secs: int = Field(default=30, ge=1)

    @model_validator(mode="after")
    def validate_chunk_durations(self) -> WhisperConfig:
        """A chunk can never be allowed to be shorter than its target."""
        if self.max_chunk_secs < self.target_chunk_secs:
            raise ValueError(
                f"max_chunk_secs ({self.max_chunk_secs}) must be >= "
                f"target_chunk_secs ({self.target_chunk_secs})"
            )
        return self


class TranslationConfig(_Section):
    """Subtitle translation.

    An empty languages list disables language detection and translation
    (single generic transcript label).
    """

    languages: tuple[str, ...] = ()
    llama_url: str = "http://llama:8081"
    source_language: str = "en"
    timeout_secs: int = Field(default=120, ge=1)
    parallel_limit: int = Field(default=4, ge=1)

    @field_validator("languages")
    @classmethod
    def validate_languages(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Normalize target languages, dropping duplicates, keeping order."""
        result: list[str] = []
        for tag in v:
            code = normalize_language(tag)
            if code is None:
                raise ValueError(f"Unrecognized translation language '{tag}'")
            if code not in result:
                result.append(code)
        return tuple(result)

    @field_validator("source_language")
    @classmethod
    def validate_source_language(cls, v: str) -> str:
        """Normalize the preferred source language."""
        code = normalize_language(v)
        if code is None:
            raise ValueError(f"Unrecognized source language '{v}'")
        return code

    @property
    def enabled(self) -> bool:
        return bool(self.languages)


# ---------------------------------------------------------------------------
# Audio / picture
# ---------------------------------------------------------------------------


class AudioConfig(_Section):
    """Audio-only transcode."""

    codec: str = "libopus"
    lossless_bitrate: str = "300k"
    lossy_bitrate: str = "256k"
    vbr: str = "on"
    application: str = "audio"
    output_format: str = "ogg"
    lossless_codecs: tuple[str, ...] = ("flac", "wav", "pcm_s16le")


class PictureConfig(_Section):
    """Still-image transcode."""

    crf: int = Field(default=26, ge=0, le=63)
    thumbnail_crf: int = Field(default=28, ge=0, le=63)
    jpg_quality: int = Field(default=25, ge=1, le=31)
    thumbnail_width: int = Field(default=1280, ge=16)
    thumbnail_height: int = Field(default=720, ge=16)


class PdfConfig(PictureConfig):
    """PDF documents: the first page is rendered, then thumbnailed like a picture."""

    render_width: int = Field(default=2000, ge=16)


# ---------------------------------------------------------------------------
# Runtime
# ---------------------------------------------------------------------------


class ToolPathsConfig(_Section):
    """External tool paths. Unset tools are looked up in PATH."""

    ffmpeg: Path | None = None
    ffprobe: Path | None = None
    pdftoppm: Path | None = None
    probe_timeout_secs: int = Field(default=60, ge=1)


class WorkerConfig(_Section):
    """Job polling and global concurrency limits."""

    database_path: Path = Path("jobs.db")
    upload_dir: Path = Path("upload")
    poll_interval_secs: float = Field(default=60.0, gt=0)
    encoder_slots: int = Field(default=1, ge=1)
    external_slots: int = Field(default=4, ge=1)
    remove_source: bool = False


class LoggingConfig(_Section):
    """Structured logging."""

    level: str = "info"
    file: Path | None = None
    format: str = "text"
    include_stderr: bool = False
    max_bytes: int = Field(default=10_485_760, ge=0)
    backup_count: int = Field(default=5, ge=0)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        if v.casefold() not in VALID_LOG_LEVELS:
            raise ValueError(f"level must be one of {VALID_LOG_LEVELS}, got {v}")
        return v.casefold()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v.casefold() not in VALID_LOG_FORMATS:
            raise ValueError(f"format must be one of {VALID_LOG_FORMATS}, got {v}")
        return v.casefold()


class ProcessorConfig(_Section):
    """Root configuration document."""

    video: VideoConfig
    whisper: WhisperConfig = WhisperConfig()
    translation: TranslationConfig = TranslationConfig()
    audio: AudioConfig = AudioConfig()
    picture: PictureConfig = PictureConfig()
    pdf: PdfConfig = PdfConfig()
    tools: ToolPathsConfig = ToolPathsConfig()
    worker: WorkerConfig = WorkerConfig()
    logging: LoggingConfig = LoggingConfig()
