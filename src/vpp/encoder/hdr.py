"""HDR detection and tonemapping strategy.

HDR sources are always delivered as SDR BT.709 in 10-bit. Whether the
tonemap runs on the GPU or in software depends on the backend.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from vpp.introspector.models import StreamInfo

logger = logging.getLogger(__name__)

PQ_TRANSFER = "smpte2084"
HLG_TRANSFER = "arib-std-b67"
BT2020_PRIMARIES = "bt2020"

# Linearize, convert primaries, tonemap with mobius, then re-encode as
# limited-range BT.709 at 10 bits.
SOFTWARE_TONEMAP_CHAIN: tuple[str, ...] = (
    "zscale=t=linear:npl=100",
    "format=gbrpf32le",
    "zscale=p=bt709",
    "tonemap=mobius",
    "zscale=t=bt709:m=bt709:r=tv",
    "format=yuv420p10le",
)

# Backends whose video post-processor can tonemap on the GPU
_HARDWARE_TONEMAP_BACKENDS = frozenset({"qsv"})


class HdrKind(Enum):
    """Type of HDR signal detected on the primary video stream."""

    NONE = "none"
    HDR10 = "hdr10"  # PQ transfer
    HLG = "hlg"
    WIDE_GAMUT = "bt2020"  # BT.2020 primaries with an SDR-looking transfer


class TonemapStrategy(Enum):
    NONE = "none"
    HARDWARE = "hardware"
    SOFTWARE = "software"


@dataclass(frozen=True)
class HdrState:
    """HDR facts for one job, computed once from the primary video stream."""

    kind: HdrKind
    transfer: str | None
    primaries: str | None
    matrix: str | None
    tonemap: TonemapStrategy

    @property
    def is_hdr(self) -> bool:
        return self.kind is not HdrKind.NONE


SDR = HdrState(HdrKind.NONE, None, None, None, TonemapStrategy.NONE)


def classify_hdr(transfer: str | None, primaries: str | None) -> HdrKind:
    """Classify color metadata.

    Args:
        transfer: ffprobe ``color_transfer``.
        primaries: ffprobe ``color_primaries``.

    Returns:
        The detected HdrKind.
    """
    transfer = (transfer or "").casefold()
    primaries = (primaries or "").casefold()
    if transfer == PQ_TRANSFER:
        return HdrKind.HDR10
    if transfer == HLG_TRANSFER:
        return HdrKind.HLG
    if primaries == BT2020_PRIMARIES:
        return HdrKind.WIDE_GAMUT
    return HdrKind.NONE


def detect_hdr(stream: StreamInfo | None, backend: str) -> HdrState:
    """Build the HdrState for a job.

    Args:
        stream: Primary video stream, or None for non-video media.
        backend: Configured encoder backend tag.

    Returns:
        HdrState with the tonemap strategy for the backend.
    """
    if stream is None:
        return SDR

    kind = classify_hdr(stream.color_transfer, stream.color_primaries)
    if kind is HdrKind.NONE:
        return SDR

    strategy = (
        TonemapStrategy.HARDWARE
        if backend in _HARDWARE_TONEMAP_BACKENDS
        else TonemapStrategy.SOFTWARE
    )
    logger.info(
        "HDR source detected (%s: transfer=%s primaries=%s matrix=%s); "
        "tonemapping to BT.709 in %s",
        kind.value,
        stream.color_transfer,
        stream.color_primaries,
        stream.color_space,
        strategy.value,
    )
    return HdrState(
        kind=kind,
        transfer=stream.color_transfer,
        primaries=stream.color_primaries,
        matrix=stream.color_space,
        tonemap=strategy,
    )
