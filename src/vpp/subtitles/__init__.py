"""Subtitle extraction, transcription and translation coverage."""

from vpp.subtitles.chapters import export_chapters
from vpp.subtitles.extract import SubtitleExtractor
from vpp.subtitles.orchestrator import (
    CoverageResult,
    CoverageState,
    SubtitleCoverageOrchestrator,
    TranslationUnit,
    UnitStatus,
)
from vpp.subtitles.tracks import SubtitleTrack, TrackOrigin, TrackRegistry
from vpp.subtitles.vtt import Cue, build_vtt, parse_vtt

__all__ = [
    "CoverageResult",
    "CoverageState",
    "Cue",
    "SubtitleCoverageOrchestrator",
    "SubtitleExtractor",
    "SubtitleTrack",
    "TrackOrigin",
    "TrackRegistry",
    "TranslationUnit",
    "UnitStatus",
    "build_vtt",
    "export_chapters",
    "parse_vtt",
]
