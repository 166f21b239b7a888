"""Exit codes for vpp CLI commands.

Exit code ranges:
    0: Success
    1-9: General errors
    10-19: Configuration errors
    20-29: Input file errors
    30-39: Tool/dependency errors
    40-49: Processing errors
"""

from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0

    # General errors (1-9)
    GENERAL_ERROR = 1
    INTERRUPTED = 2

    # Configuration errors (10-19)
    CONFIG_ERROR = 11

    # Input file errors (20-29)
    TARGET_NOT_FOUND = 20
    UNRECOGNIZED_MEDIA = 21

    # Tool/dependency errors (30-39)
    TOOL_NOT_AVAILABLE = 30
    FFPROBE_FAILED = 32

    # Processing errors (40-49)
    OPERATION_FAILED = 40
    DATABASE_ERROR = 42
