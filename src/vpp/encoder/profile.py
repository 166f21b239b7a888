"""Encoder profile building.

An EncoderProfile is the complete, backend-specific description of how one
ladder step is encoded: codec, rate control, hardware device setup and the
ordered filter chain. Profiles are built fresh for every step and never
shared, because each step has its own output dimensions.
"""

from __future__ import annotations

from dataclasses import dataclass

from vpp.config.models import BackendSettings, NvencSettings, QsvSettings, VaapiSettings
from vpp.encoder.hdr import SOFTWARE_TONEMAP_CHAIN, HdrState, TonemapStrategy
from vpp.ladder import QualityStep

OUTPUT_COLORSPACE = "bt709"
TEN_BIT_FORMAT = "p010le"

# ffmpeg's NVENC wrappers take qmin/qmax in the 0..51 (h264/hevc) or
# 0..255 (av1) range; only the lower bound needs guarding.
_QUALITY_SPREAD = 10


@dataclass(frozen=True)
class EncoderProfile:
    """Backend-specific encode description for one quality step."""

    backend: str
    codec: str
    rate_control: tuple[str, ...]
    input_args: tuple[str, ...]
    filter_chain: tuple[str, ...]
    pixel_format: str | None = None
    output_colorspace: str | None = None
    hw_frames: bool = False

    @property
    def has_tonemap(self) -> bool:
        return any("tonemap" in stage for stage in self.filter_chain)

    @property
    def filter_graph(self) -> str:
        return ",".join(self.filter_chain)


def _nvenc_profile(
    step: QualityStep, settings: NvencSettings, hdr: HdrState
) -> EncoderProfile:
    cq = settings.cq
    rate_control = [
        "-preset", settings.preset,
        "-tier", settings.tier,
        "-rc", settings.rc,
        "-cq", str(cq),
        "-qmin", str(cq + _QUALITY_SPREAD),
        "-qmax", str(max(cq - _QUALITY_SPREAD, 0)),
    ]
    if settings.lookahead is not None:
        rate_control += ["-rc-lookahead", str(settings.lookahead)]
    if settings.temporal_aq:
        rate_control += ["-temporal-aq", "1"]

    if hdr.is_hdr:
        # Tonemap on the CPU, then hand 10-bit frames to the encoder
        return EncoderProfile(
            backend="nvenc",
            codec=settings.codec,
            rate_control=tuple(rate_control),
            input_args=(
                "-init_hw_device", "cuda=cuda0",
                "-filter_hw_device", "cuda0",
            ),
            filter_chain=SOFTWARE_TONEMAP_CHAIN
            + (f"scale={step.width}:{step.height}", f"format={TEN_BIT_FORMAT}"),
            pixel_format=TEN_BIT_FORMAT,
            output_colorspace=OUTPUT_COLORSPACE,
        )

    return EncoderProfile(
        backend="nvenc",
        codec=settings.codec,
        rate_control=tuple(rate_control),
        input_args=("-hwaccel", "cuda", "-hwaccel_output_format", "cuda"),
        filter_chain=(f"scale_cuda={step.width}:{step.height}",),
        hw_frames=True,
    )


def _qsv_profile(
    step: QualityStep, settings: QsvSettings, hdr: HdrState
) -> EncoderProfile:
    rate_control = ["-preset:v", settings.preset]
    if settings.look_ahead_depth > 0:
        rate_control += [
            "-extbrc:v", "1",
            "-look_ahead_depth:v", str(settings.look_ahead_depth),
        ]
    if settings.global_quality > 0:
        rate_control += ["-global_quality:v", str(settings.global_quality)]

    if hdr.is_hdr and hdr.tonemap is not TonemapStrategy.HARDWARE:
        # Tonemap on the CPU, then upload to the QSV device for encoding
        return EncoderProfile(
            backend="qsv",
            codec=settings.codec,
            rate_control=tuple(rate_control),
            input_args=("-init_hw_device", "qsv=qsv0", "-filter_hw_device", "qsv0"),
            filter_chain=SOFTWARE_TONEMAP_CHAIN
            + (
                f"scale={step.width}:{step.height}",
                f"format={TEN_BIT_FORMAT}",
                "hwupload=extra_hw_frames=64",
            ),
            pixel_format=TEN_BIT_FORMAT,
            output_colorspace=OUTPUT_COLORSPACE,
            hw_frames=True,
        )

    scale = f"vpp_qsv=w={step.width}:h={step.height}"
    if hdr.is_hdr:
        stage = f"{scale}:tonemap=1:format={TEN_BIT_FORMAT}:out_color_matrix=bt709"
        colorspace: str | None = OUTPUT_COLORSPACE
    else:
        stage = f"{scale}:format={TEN_BIT_FORMAT}"
        colorspace = None

    return EncoderProfile(
        backend="qsv",
        codec=settings.codec,
        rate_control=tuple(rate_control),
        input_args=("-hwaccel", "qsv", "-hwaccel_output_format", "qsv"),
        filter_chain=(stage,),
        pixel_format=TEN_BIT_FORMAT,
        output_colorspace=colorspace,
        hw_frames=True,
    )


def _vaapi_profile(
    step: QualityStep, settings: VaapiSettings, hdr: HdrState
) -> EncoderProfile:
    rate_control = (
        "-global_quality", str(settings.quality),
        "-qp", str(settings.quality),
        "-compression_level", str(settings.compression_level),
    )

    if hdr.is_hdr:
        return EncoderProfile(
            backend="vaapi",
            codec=settings.codec,
            rate_control=rate_control,
            input_args=("-vaapi_device", settings.device),
            filter_chain=SOFTWARE_TONEMAP_CHAIN
            + (
                f"scale={step.width}:{step.height}",
                f"format={TEN_BIT_FORMAT}",
                "hwupload",
            ),
            pixel_format=TEN_BIT_FORMAT,
            output_colorspace=OUTPUT_COLORSPACE,
            hw_frames=True,
        )

    return EncoderProfile(
        backend="vaapi",
        codec=settings.codec,
        rate_control=rate_control,
        input_args=(
            "-hwaccel", "vaapi",
            "-hwaccel_output_format", "vaapi",
            "-vaapi_device", settings.device,
        ),
        filter_chain=(
            f"scale_vaapi={step.width}:{step.height}:format={TEN_BIT_FORMAT}",
        ),
        pixel_format=TEN_BIT_FORMAT,
        hw_frames=True,
    )


def build_profile(
    step: QualityStep,
    settings: BackendSettings,
    hdr: HdrState,
) -> EncoderProfile:
    """Build the encoder profile for one ladder step.

    Args:
        step: Planned quality step.
        settings: Validated settings of the configured backend.
        hdr: Job HDR state.

    Returns:
        A new EncoderProfile. HDR input always yields a tonemapping filter
        chain and BT.709 output; SDR input never does.

    Raises:
        TypeError: If settings is not a known backend settings type.
    """
    if isinstance(settings, NvencSettings):
        return _nvenc_profile(step, settings, hdr)
    if isinstance(settings, QsvSettings):
        return _qsv_profile(step, settings, hdr)
    if isinstance(settings, VaapiSettings):
        return _vaapi_profile(step, settings, hdr)
    raise TypeError(f"Unsupported backend settings: {type(settings).__name__}")
