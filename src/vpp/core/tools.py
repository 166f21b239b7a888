"""Resolution of external tool executables."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path

from vpp.config.models import ToolPathsConfig
from vpp.errors import ConfigurationError


@dataclass(frozen=True)
class ToolPaths:
    """Resolved executables used by the pipeline.

    ``pdftoppm`` is only needed for PDF documents and is None when it is
    not installed.
    """

    ffmpeg: str
    ffprobe: str
    pdftoppm: str | None = None


def resolve_tool(name: str, configured: Path | None = None) -> str:
    """Resolve a tool to an executable path.

    Args:
        name: Executable name to look up in PATH.
        configured: Explicit path from configuration, if any.

    Returns:
        Path to the executable as a string.

    Raises:
        ConfigurationError: If the tool cannot be found.
    """
    if configured is not None:
        if not configured.is_file():
            raise ConfigurationError(f"Configured {name} not found: {configured}")
        return str(configured)

    found = shutil.which(name)
    if found is None:
        raise ConfigurationError(f"{name} not found in PATH")
    return found


def resolve_tools(config: ToolPathsConfig) -> ToolPaths:
    """Resolve ffmpeg and ffprobe from configuration, falling back to PATH.

    pdftoppm is resolved the same way when configured; otherwise it is
    optional and looked up in PATH without failing.
    """
    pdftoppm = (
        resolve_tool("pdftoppm", config.pdftoppm)
        if config.pdftoppm is not None
        else shutil.which("pdftoppm")
    )
    return ToolPaths(
        ffmpeg=resolve_tool("ffmpeg", config.ffmpeg),
        ffprobe=resolve_tool("ffprobe", config.ffprobe),
        pdftoppm=pdftoppm,
    )
