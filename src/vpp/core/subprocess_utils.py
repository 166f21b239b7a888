"""Subprocess utilities for external tool invocation.

Every ffmpeg/ffprobe call in the processor goes through run_command() so
that timeouts, cancellation, encoding and logging behave the same way
everywhere. Arguments are always passed as a list; no shell is involved.
"""

from __future__ import annotations

import logging
import subprocess  # nosec B404 - subprocess is required for FFmpeg invocation
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from vpp.errors import JobCancelledError

logger = logging.getLogger(__name__)

# How often a running command checks for cancellation
POLL_INTERVAL = 0.25


@dataclass(frozen=True)
class CommandResult:
    """Captured output of a finished command."""

    stdout: str
    stderr: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def stderr_tail(self, lines: int = 5) -> str:
        """Last few stderr lines, for error messages."""
        return "\n".join(self.stderr.strip().splitlines()[-lines:])


class CommandRunner(Protocol):
    """Anything that can run an external command to completion."""

    def run(
        self, args: list[str | Path], timeout: float | None = None
    ) -> CommandResult: ...


def _terminate(process: subprocess.Popen[str]) -> None:
    """Kill a child process and reap it."""
    process.kill()
    try:
        process.communicate(timeout=5)
    except subprocess.TimeoutExpired:
        logger.warning("Process %d did not exit after SIGKILL", process.pid)


def run_command(
    args: list[str | Path],
    timeout: float | None = None,
    cancel_event: threading.Event | None = None,
) -> CommandResult:
    """Run an external command with timeout and cancellation support.

    Args:
        args: Command and arguments. Path objects are converted to strings.
        timeout: Seconds before the command is killed, or None for no limit.
        cancel_event: When set, the command is killed immediately.

    Returns:
        CommandResult with decoded stdout/stderr and the exit code.

    Raises:
        FileNotFoundError: If the executable does not exist.
        subprocess.TimeoutExpired: If the timeout elapsed. The child has
            already been killed.
        JobCancelledError: If cancel_event was set. The child has already
            been killed.
    """
    str_args = [str(arg) for arg in args]
    command_name = Path(str_args[0]).name if str_args else "unknown"

    logger.debug(
        "Executing command: %s",
        " ".join(str_args),
        extra={"command": command_name, "arg_count": len(str_args)},
    )

    if cancel_event is not None and cancel_event.is_set():
        raise JobCancelledError(f"Cancelled before starting {command_name}")

    start_time = time.monotonic()
    deadline = start_time + timeout if timeout is not None else None

    process = subprocess.Popen(  # nosec B603 - args are built internally
        str_args,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
    )

    while True:
        try:
            stdout, stderr = process.communicate(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if cancel_event is not None and cancel_event.is_set():
                _terminate(process)
                logger.info("Killed %s on cancellation", command_name)
                raise JobCancelledError(f"Cancelled while running {command_name}")
            if deadline is not None and time.monotonic() >= deadline:
                _terminate(process)
                logger.warning(
                    "Command timed out after %ss: %s",
                    timeout,
                    " ".join(str_args[:3]) + ("..." if len(str_args) > 3 else ""),
                    extra={"command": command_name, "timeout_seconds": timeout},
                )
                raise subprocess.TimeoutExpired(str_args, timeout or 0) from None

    elapsed = time.monotonic() - start_time
    logger.debug(
        "Command completed",
        extra={
            "command": command_name,
            "elapsed_seconds": round(elapsed, 3),
            "returncode": process.returncode,
        },
    )
    return CommandResult(stdout or "", stderr or "", process.returncode)


class SubprocessRunner:
    """CommandRunner bound to one job's cancellation event."""

    def __init__(self, cancel_event: threading.Event | None = None) -> None:
        self.cancel_event = cancel_event or threading.Event()

    def run(
        self, args: list[str | Path], timeout: float | None = None
    ) -> CommandResult:
        return run_command(args, timeout=timeout, cancel_event=self.cancel_event)
