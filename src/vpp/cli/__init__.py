"""CLI module for the media processor."""

from __future__ import annotations

import logging
from pathlib import Path

import click

from vpp.cli.exit_codes import ExitCode
from vpp.config import ProcessorConfig, load_config
from vpp.errors import ConfigurationError

logger = logging.getLogger(__name__)

_logging_configured: bool = False


def _configure_logging(config: ProcessorConfig) -> None:
    """Configure logging once per process."""
    global _logging_configured
    if _logging_configured:
        return

    from vpp.logging import configure_logging

    configure_logging(config.logging)
    _logging_configured = True


def get_config(ctx: click.Context) -> ProcessorConfig:
    """Return the configuration loaded by the group callback."""
    return ctx.find_root().obj["config"]


@click.group()
@click.version_option(package_name="video-platform-processor")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Configuration file (default: $VPP_CONFIG_PATH, ./config.toml, ./config.json).",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Override log level (default: info).",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Override log file path.",
)
@click.option(
    "--log-json",
    is_flag=True,
    default=False,
    help="Use JSON log format.",
)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Path | None,
    log_level: str | None,
    log_file: Path | None,
    log_json: bool,
) -> None:
    """Video platform processor - encode, package and subtitle uploaded media."""
    ctx.ensure_object(dict)

    # Tests may pass a prepared configuration
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = load_config(
                config_path,
                log_level=log_level,
                log_file=log_file,
                log_format="json" if log_json else None,
            )
        except ConfigurationError as e:
            click.echo(f"Error: {e}", err=True)
            raise SystemExit(ExitCode.CONFIG_ERROR) from e

    _configure_logging(ctx.obj["config"])


def _register_commands() -> None:
    from vpp.cli.config import config_group
    from vpp.cli.jobs import jobs_group
    from vpp.cli.plan import plan_command
    from vpp.cli.process import process_command
    from vpp.cli.run import run_command

    main.add_command(config_group)
    main.add_command(jobs_group)
    main.add_command(plan_command)
    main.add_command(process_command)
    main.add_command(run_command)


_register_commands()
