"""Audio transcription: extraction, silence detection and chunking."""

from vpp.transcription.audio import AudioExtractor
from vpp.transcription.chunker import AudioChunk, SilenceInterval, SplitReason, chunk
from vpp.transcription.silence import SilenceDetector, parse_silence_output
from vpp.transcription.transcriber import AudioTranscriber, Transcript

__all__ = [
    "AudioChunk",
    "AudioExtractor",
    "AudioTranscriber",
    "SilenceDetector",
    "SilenceInterval",
    "SplitReason",
    "Transcript",
    "chunk",
    "parse_silence_output",
]
