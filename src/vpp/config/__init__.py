"""Configuration for the media processor."""

from vpp.config.env import EnvReader
from vpp.config.loader import build_config, find_config_path, load_config
from vpp.config.models import (
    AudioConfig,
    BackendSettings,
    DashConfig,
    LoggingConfig,
    NvencSettings,
    PictureConfig,
    PdfConfig,
    PreviewSpriteConfig,
    ProcessorConfig,
    QsvSettings,
    QualityStepConfig,
    ShowcaseConfig,
    ThumbnailConfig,
    ToolPathsConfig,
    TranslationConfig,
    VaapiSettings,
    VideoConfig,
    WhisperConfig,
    WorkerConfig,
)

__all__ = [
    "AudioConfig",
    "BackendSettings",
    "DashConfig",
    "EnvReader",
    "LoggingConfig",
    "NvencSettings",
    "PictureConfig",
    "PdfConfig",
    "PreviewSpriteConfig",
    "ProcessorConfig",
    "QsvSettings",
    "QualityStepConfig",
    "ShowcaseConfig",
    "ThumbnailConfig",
    "ToolPathsConfig",
    "TranslationConfig",
    "VaapiSettings",
    "VideoConfig",
    "WhisperConfig",
    "WorkerConfig",
    "build_config",
    "find_config_path",
    "load_config",
]
