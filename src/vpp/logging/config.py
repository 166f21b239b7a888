"""Logging setup for the worker and the CLI.

configure_logging() replaces the root handlers with a rotating file handler,
a stderr handler or both. Every handler carries the job context filter, so
records from pool threads are tagged with the job and stage they belong to.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING

from vpp.logging.context import JobContextFilter
from vpp.logging.handlers import JSONFormatter

if TYPE_CHECKING:
    from vpp.config.models import LoggingConfig

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(job_tag)s%(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Libraries that are chatty below these levels; left alone at debug
QUIET_LIBRARIES: dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "pypdf": logging.ERROR,
}


def build_formatter(log_format: str) -> logging.Formatter:
    """JSON lines for log shippers, otherwise the tagged text format."""
    if log_format.casefold() == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT)


def _open_log_file(config: LoggingConfig) -> logging.Handler | None:
    if config.file is None:
        return None
    path = Path(config.file).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            path,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        # Logging is not configured yet
        sys.stderr.write(f"Warning: Could not open log file {path}: {e}\n")
        return None


def build_handlers(config: LoggingConfig) -> list[logging.Handler]:
    """Handlers for config: the log file, and stderr when asked or as fallback."""
    handlers: list[logging.Handler] = []
    file_handler = _open_log_file(config)
    if file_handler is not None:
        handlers.append(file_handler)
    if config.include_stderr or file_handler is None:
        handlers.append(logging.StreamHandler(sys.stderr))
    return handlers


def configure_logging(config: LoggingConfig) -> None:
    """Configure the root logger from LoggingConfig.

    Existing root handlers are replaced. An unwritable log file is reported
    on stderr and logging falls back to stderr.
    """
    level = logging.getLevelName(config.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    formatter = build_formatter(config.format)
    context_filter = JobContextFilter()

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    for handler in build_handlers(config):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)
        root.addHandler(handler)

    for name, floor in QUIET_LIBRARIES.items():
        logging.getLogger(name).setLevel(
            logging.NOTSET if level <= logging.DEBUG else floor
        )
