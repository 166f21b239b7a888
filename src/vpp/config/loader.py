"""Configuration loading with precedence handling.

Configuration is resolved with the following precedence (highest first):
1. CLI arguments (passed to load_config)
2. Environment variables (VPP_*)
3. Config file (TOML or JSON)
4. Model defaults

Environment variables:
- VPP_CONFIG_PATH: Config file location
- VPP_FFMPEG_PATH / VPP_FFPROBE_PATH: External tool paths
- VPP_DATABASE_PATH: Job store database
- VPP_UPLOAD_DIR: Directory holding uploads and job workspaces
- VPP_LOG_LEVEL / VPP_LOG_FORMAT: Logging overrides
- VPP_WHISPER_URL: Transcription service endpoint
- VPP_LLAMA_URL: Translation service base URL
"""

from __future__ import annotations

import json
import logging
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from vpp.config.env import EnvReader
from vpp.config.models import ProcessorConfig
from vpp.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILES = (Path("config.toml"), Path("config.json"))

# (section, key) -> environment variable
_ENV_OVERRIDES: dict[tuple[str, str], str] = {
    ("tools", "ffmpeg"): "VPP_FFMPEG_PATH",
    ("tools", "ffprobe"): "VPP_FFPROBE_PATH",
    ("worker", "database_path"): "VPP_DATABASE_PATH",
    ("worker", "upload_dir"): "VPP_UPLOAD_DIR",
    ("logging", "level"): "VPP_LOG_LEVEL",
    ("logging", "format"): "VPP_LOG_FORMAT",
    ("whisper", "url"): "VPP_WHISPER_URL",
    ("translation", "llama_url"): "VPP_LLAMA_URL",
}


def find_config_path(
    config_path: Path | None = None, env_reader: EnvReader | None = None
) -> Path:
    """Locate the configuration file.

    Args:
        config_path: Explicit path, e.g. from the CLI.
        env_reader: Optional EnvReader for testing.

    Returns:
        Path to an existing config file.

    Raises:
        ConfigurationError: If no configuration file can be found.
    """
    reader = env_reader or EnvReader()
    candidate = config_path or reader.get_path("VPP_CONFIG_PATH")
    if candidate is not None:
        if not candidate.is_file():
            raise ConfigurationError(f"Config file not found: {candidate}")
        return candidate

    for default in DEFAULT_CONFIG_FILES:
        if default.is_file():
            return default

    raise ConfigurationError(
        "No configuration file found (looked for "
        + ", ".join(str(p) for p in DEFAULT_CONFIG_FILES)
        + "); pass --config or set VPP_CONFIG_PATH"
    )


def read_config_file(path: Path) -> dict[str, Any]:
    """Parse a TOML or JSON config file into a dict.

    The format is chosen by extension; ``.json`` is JSON, anything else
    is TOML.

    Raises:
        ConfigurationError: If the file cannot be read or parsed.
    """
    try:
        if path.suffix.casefold() == ".json":
            with path.open(encoding="utf-8") as f:
                data = json.load(f)
        else:
            with path.open("rb") as f:
                data = tomllib.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    except (tomllib.TOMLDecodeError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot parse config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a table/object")
    return data


def apply_env_overrides(data: dict[str, Any], reader: EnvReader) -> dict[str, Any]:
    """Return a copy of data with environment overrides applied."""
    merged = {
        key: dict(value) if isinstance(value, dict) else value
        for key, value in data.items()
    }
    for (section, key), var in _ENV_OVERRIDES.items():
        value = reader.get_str(var)
        if value is None:
            continue
        merged.setdefault(section, {})[key] = value
        logger.debug("Config %s.%s overridden by %s", section, key, var)
    return merged


def format_validation_error(error: ValidationError) -> str:
    """Flatten a pydantic ValidationError into one readable line per problem."""
    lines = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "<root>"
        lines.append(f"{location}: {item['msg']}")
    return "; ".join(lines)


def build_config(data: dict[str, Any]) -> ProcessorConfig:
    """Validate a configuration document.

    Raises:
        ConfigurationError: If the document is invalid.
    """
    try:
        return ProcessorConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid configuration: {format_validation_error(e)}"
        ) from e


def load_config(
    config_path: Path | None = None,
    *,
    log_level: str | None = None,
    log_file: Path | None = None,
    log_format: str | None = None,
    env_reader: EnvReader | None = None,
) -> ProcessorConfig:
    """Load, merge and validate the processor configuration.

    Args:
        config_path: Explicit config file (overrides VPP_CONFIG_PATH).
        log_level: CLI override for the log level.
        log_file: CLI override for the log file.
        log_format: CLI override for the log format.
        env_reader: Optional EnvReader for testing.

    Returns:
        Validated, frozen configuration.

    Raises:
        ConfigurationError: If the file is missing, unparseable or invalid.
    """
    reader = env_reader or EnvReader()
    path = find_config_path(config_path, reader)
    data = apply_env_overrides(read_config_file(path), reader)

    cli_logging = {
        key: value
        for key, value in (
            ("level", log_level),
            ("file", str(log_file) if log_file else None),
            ("format", log_format),
        )
        if value is not None
    }
    if cli_logging:
        data.setdefault("logging", {}).update(cli_logging)

    config = build_config(data)
    logger.debug("Loaded configuration from %s", path)
    return config
