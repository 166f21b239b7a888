"""CLI command for processing a single file without the job store."""

from __future__ import annotations

import logging
import signal
from pathlib import Path

import click

from vpp.cli import get_config
from vpp.cli.exit_codes import ExitCode
from vpp.cli.output import echo_json, error_exit
from vpp.cli.runtime import build_pipeline, require_tools
from vpp.errors import ClassificationError, JobCancelledError, ProcessorError
from vpp.jobs import JobContext, MediaJob, workspace_for

logger = logging.getLogger(__name__)


@click.command("process")
@click.argument(
    "file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--job-id",
    default=None,
    help="Job identifier (default: the file name). Seeds the thumbnail time.",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Workspace directory (default: <file>_processing next to FILE).",
)
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output in JSON format.",
)
@click.pass_context
def process_command(
    ctx: click.Context,
    file: Path,
    job_id: str | None,
    output: Path | None,
    json_output: bool,
) -> None:
    """Process FILE into a workspace of streaming artifacts.

    Re-running the command on the same workspace only produces what is
    missing. Ctrl+C cancels the job and removes partial output.

    Examples:

        vpp process upload/4f2a

        vpp process movie.mkv --job-id movie --output /srv/media/movie
    """
    config = get_config(ctx)
    tools = require_tools(config, json_output)

    job_id = job_id or file.name
    job = MediaJob(
        id=job_id,
        source=file,
        workspace=output or workspace_for(file.parent, job_id),
    )
    job_ctx = JobContext(job)

    def cancel(signum: int, frame) -> None:
        logger.info("Received %s, cancelling job", signal.Signals(signum).name)
        job_ctx.cancel_event.set()

    previous = signal.signal(signal.SIGINT, cancel)
    try:
        with build_pipeline(config, tools) as pipeline:
            result = pipeline.process(job_ctx)
    except JobCancelledError:
        error_exit("Job cancelled", ExitCode.INTERRUPTED, json_output)
    except ClassificationError as e:
        error_exit(str(e), ExitCode.UNRECOGNIZED_MEDIA, json_output)
    except ProcessorError as e:
        error_exit(str(e), ExitCode.OPERATION_FAILED, json_output)
    finally:
        signal.signal(signal.SIGINT, previous)

    if json_output:
        echo_json(
            {
                "status": "completed",
                "job_id": job.id,
                "category": result.category.value,
                "workspace": str(job.workspace),
                "failed_steps": result.failed_steps,
                "subtitles": sorted(job_ctx.registry.languages),
                "warnings": result.warnings,
            }
        )
        return

    click.echo(f"Processed {file.name} as {result.category.value} into {job.workspace}")
    if result.failed_steps:
        click.echo(f"Failed quality steps: {', '.join(result.failed_steps)}")
    if result.warnings:
        click.echo(f"Incomplete: {', '.join(result.warnings)}")
