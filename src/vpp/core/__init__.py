"""Core utilities shared by every pipeline stage."""

from vpp.core.subprocess_utils import (
    CommandResult,
    CommandRunner,
    SubprocessRunner,
    run_command,
)
from vpp.core.tools import ToolPaths, resolve_tool, resolve_tools

__all__ = [
    "CommandResult",
    "CommandRunner",
    "SubprocessRunner",
    "ToolPaths",
    "resolve_tool",
    "resolve_tools",
    "run_command",
]
