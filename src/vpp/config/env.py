"""Environment variable reader with dependency injection support."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

logger = logging.getLogger(__name__)


class EnvReader:
    """Read typed values from the environment.

    Accepts an optional mapping instead of os.environ so that tests can
    inject variables without touching the process environment.

    Example:
        reader = EnvReader({"VPP_LOG_LEVEL": "debug"})
        reader.get_str("VPP_LOG_LEVEL")  # "debug"
    """

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self._env: Mapping[str, str] = env if env is not None else os.environ

    def get_str(self, var: str, default: str | None = None) -> str | None:
        """Return the variable, or default if unset or blank."""
        value = self._env.get(var)
        if value is None or not value.strip():
            return default
        return value.strip()

    def get_int(self, var: str, default: int | None = None) -> int | None:
        """Return the variable as int.

        A value that cannot be parsed is logged and replaced by default.
        """
        value = self.get_str(var)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            logger.warning("Invalid integer value for %s: %s", var, value)
            return default

    def get_path(self, var: str, default: Path | None = None) -> Path | None:
        """Return the variable as an expanded Path."""
        value = self.get_str(var)
        if value is None:
            return default
        return Path(value).expanduser()
