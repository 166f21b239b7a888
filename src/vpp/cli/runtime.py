"""Construction of the runtime objects shared by CLI commands."""

from __future__ import annotations

from vpp.cli.exit_codes import ExitCode
from vpp.cli.output import error_exit
from vpp.concurrency import configure_limits
from vpp.config import ProcessorConfig
from vpp.core.tools import ToolPaths, resolve_tools
from vpp.errors import ConfigurationError
from vpp.jobs import MediaPipeline


def require_tools(config: ProcessorConfig, json_output: bool = False) -> ToolPaths:
    """Resolve ffmpeg/ffprobe or exit with TOOL_NOT_AVAILABLE."""
    try:
        return resolve_tools(config.tools)
    except ConfigurationError as e:
        error_exit(str(e), ExitCode.TOOL_NOT_AVAILABLE, json_output)


def build_pipeline(config: ProcessorConfig, tools: ToolPaths) -> MediaPipeline:
    """Install the process-wide limits and build the pipeline."""
    limits = configure_limits(
        config.worker.encoder_slots, config.worker.external_slots
    )
    return MediaPipeline(config, tools, limits=limits)
