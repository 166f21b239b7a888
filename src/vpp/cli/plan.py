"""CLI command for dry-run planning of a single file."""

from __future__ import annotations

import logging
import shlex
from pathlib import Path

import click

from vpp.cli import get_config
from vpp.cli.exit_codes import ExitCode
from vpp.cli.output import echo_json, error_exit
from vpp.cli.runtime import build_pipeline, require_tools
from vpp.errors import ClassificationError, ProbeError

logger = logging.getLogger(__name__)


@click.command("plan")
@click.argument(
    "file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output in JSON format.",
)
@click.pass_context
def plan_command(ctx: click.Context, file: Path, json_output: bool) -> None:
    """Show how FILE would be processed, without encoding anything.

    Prints the media category, the HDR state, the quality ladder and the
    encoder invocation of every step.

    Examples:

        vpp plan movie.mkv

        vpp plan movie.mkv --json
    """
    config = get_config(ctx)
    tools = require_tools(config, json_output)
    with build_pipeline(config, tools) as pipeline:
        try:
            job_plan = pipeline.plan(file)
        except ClassificationError as e:
            error_exit(str(e), ExitCode.UNRECOGNIZED_MEDIA, json_output)
        except ProbeError as e:
            error_exit(str(e), ExitCode.FFPROBE_FAILED, json_output)

    if json_output:
        echo_json(
            {
                "file": str(file),
                "category": job_plan.category.value,
                "duration": job_plan.probe.duration if job_plan.probe else None,
                "hdr": job_plan.hdr,
                "steps": [
                    {
                        "label": step.label,
                        "width": step.width,
                        "height": step.height,
                        "fps": step.fps,
                        "audio_bitrate_kbps": step.audio_bitrate_kbps,
                        "output": step.output_name,
                        "command": command,
                    }
                    for step, command in zip(job_plan.steps, job_plan.commands)
                ],
            }
        )
        return

    click.echo(f"File:     {file}")
    click.echo(f"Category: {job_plan.category.value}")
    if not job_plan.steps:
        return
    click.echo(f"HDR:      {job_plan.hdr}")
    click.echo("")
    for step, command in zip(job_plan.steps, job_plan.commands):
        click.echo(
            f"{step.label}: {step.width}x{step.height} @ {step.fps:g} fps, "
            f"audio {step.audio_bitrate_kbps}k -> {step.output_name}"
        )
        click.echo(f"  {shlex.join(command)}")
