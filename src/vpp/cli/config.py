"""CLI commands for configuration management."""

from __future__ import annotations

import logging

import click

from vpp.cli import get_config
from vpp.cli.output import echo_json

logger = logging.getLogger(__name__)


@click.group("config")
def config_group() -> None:
    """Inspect the processor configuration.

    Examples:

        # Validate config.toml and show the resolved settings
        vpp config check

        # Same, as JSON
        vpp config check --json
    """
    pass


@config_group.command("check")
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output in JSON format.",
)
@click.pass_context
def check_config_cmd(ctx: click.Context, json_output: bool) -> None:
    """Validate the configuration and print the resolved encoder backend.

    Invalid configuration never reaches this command: loading fails first
    and the CLI exits with a configuration error.
    """
    config = get_config(ctx)
    video = config.video
    settings = video.backend_settings
    summary = {
        "backend": video.encoder,
        "codec": settings.codec,
        "quality_steps": [step.label for step in video.quality_steps],
        "max_resolution_steps": video.max_resolution_steps,
        "transcription_url": config.whisper.url,
        "translation_languages": list(config.translation.languages),
        "database": str(config.worker.database_path),
        "upload_dir": str(config.worker.upload_dir),
    }

    if json_output:
        echo_json({"status": "valid", **summary})
        return

    click.echo("Configuration is valid.")
    click.echo(f"  Backend:       {summary['backend']} ({summary['codec']})")
    click.echo(f"  Ladder:        {', '.join(summary['quality_steps'])}")
    click.echo(f"  Max steps:     {summary['max_resolution_steps']}")
    click.echo(f"  Transcription: {summary['transcription_url']}")
    languages = summary["translation_languages"]
    click.echo(f"  Translation:   {', '.join(languages) if languages else 'disabled'}")
    click.echo(f"  Database:      {summary['database']}")
    click.echo(f"  Uploads:       {summary['upload_dir']}")
