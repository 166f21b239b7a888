"""HTTP clients for the external transcription and translation services."""

from vpp.services.translation import (
    TranslationClient,
    strip_list_prefix,
    strip_translation_preamble,
)
from vpp.services.whisper import TranscriptionResult, WhisperClient

__all__ = [
    "TranscriptionResult",
    "TranslationClient",
    "WhisperClient",
    "strip_list_prefix",
    "strip_translation_preamble",
]
