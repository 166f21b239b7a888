"""ffprobe-based media introspection."""

from __future__ import annotations

import json
import subprocess  # nosec B404 - only for the TimeoutExpired type
from pathlib import Path

from vpp.core.subprocess_utils import CommandRunner, SubprocessRunner
from vpp.errors import ProbeError
from vpp.introspector.models import ProbeResult
from vpp.introspector.parsers import parse_ffprobe_output


class FFprobeIntrospector:
    """Reads stream, format and chapter metadata with a single ffprobe call."""

    def __init__(
        self,
        ffprobe_path: str,
        runner: CommandRunner | None = None,
        timeout: float = 60,
    ) -> None:
        """Initialize the introspector.

        Args:
            ffprobe_path: Resolved ffprobe executable.
            runner: Command runner; a plain SubprocessRunner if omitted.
            timeout: Seconds before a hung ffprobe is killed.
        """
        self._ffprobe_path = ffprobe_path
        self._runner = runner or SubprocessRunner()
        self._timeout = timeout

    def probe(self, path: Path) -> ProbeResult:
        """Probe a media file.

        Args:
            path: File to inspect.

        Returns:
            Parsed ProbeResult.

        Raises:
            ProbeError: If the file is missing or ffprobe fails, times out,
                or returns unusable output.
        """
        if not path.exists():
            raise ProbeError(f"File not found: {path}")

        args: list[str | Path] = [
            self._ffprobe_path,
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_streams",
            "-show_format",
            "-show_chapters",
            path,
        ]
        try:
            result = self._runner.run(args, timeout=self._timeout)
        except subprocess.TimeoutExpired as e:
            raise ProbeError(
                f"ffprobe timed out for {path} after {e.timeout}s"
            ) from e
        except OSError as e:
            raise ProbeError(f"Cannot execute ffprobe: {e}") from e

        if not result.ok:
            raise ProbeError(f"ffprobe failed for {path}: {result.stderr_tail()}")

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ProbeError(f"Invalid ffprobe output for {path}: {e}") from e

        if not isinstance(data, dict) or "streams" not in data:
            raise ProbeError(
                f"Missing 'streams' in ffprobe output for {path}. "
                "File may be corrupted or not a media file."
            )

        return parse_ffprobe_output(str(path), data)
