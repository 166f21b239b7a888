"""Hardware encoder profiles and HDR handling."""

from vpp.encoder.command import build_encode_command, format_rate
from vpp.encoder.hdr import (
    SDR,
    SOFTWARE_TONEMAP_CHAIN,
    HdrKind,
    HdrState,
    TonemapStrategy,
    classify_hdr,
    detect_hdr,
)
from vpp.encoder.profile import EncoderProfile, build_profile

__all__ = [
    "SDR",
    "SOFTWARE_TONEMAP_CHAIN",
    "EncoderProfile",
    "HdrKind",
    "HdrState",
    "TonemapStrategy",
    "build_encode_command",
    "build_profile",
    "classify_hdr",
    "detect_hdr",
    "format_rate",
]
