"""CLI commands for the job store."""

from __future__ import annotations

import logging

import click

from vpp.cli import get_config
from vpp.cli.exit_codes import ExitCode
from vpp.cli.output import echo_json, error_exit
from vpp.jobs import JobState, MediaJob, SQLiteJobStore

logger = logging.getLogger(__name__)

_STATE_COLORS = {
    JobState.QUEUED: "cyan",
    JobState.RUNNING: "yellow",
    JobState.COMPLETED: "green",
    JobState.FAILED: "red",
    JobState.CANCELLED: "magenta",
}


def _open_store(ctx: click.Context) -> SQLiteJobStore:
    store = SQLiteJobStore(get_config(ctx).worker.database_path)
    store.initialize()
    return store


@click.group("jobs")
def jobs_group() -> None:
    """Manage the job store.

    Examples:

        # Queue an uploaded file
        vpp jobs enqueue 4f2a --media-type video

        # List failed jobs
        vpp jobs list --state failed

        # Cancel a queued or running job
        vpp jobs cancel 4f2a
    """
    pass


@jobs_group.command("enqueue")
@click.argument("job_id")
@click.option("--media-type", default=None, help="Media type recorded with the job, e.g. video or document_pdf.")
@click.pass_context
def enqueue_job(ctx: click.Context, job_id: str, media_type: str | None) -> None:
    """Queue the upload named JOB_ID in the upload directory."""
    store = _open_store(ctx)
    upload = get_config(ctx).worker.upload_dir / job_id
    if not upload.exists():
        click.echo(f"Warning: {upload} does not exist yet", err=True)
    if store.enqueue(job_id, media_type):
        click.echo(f"Queued {job_id}")
    else:
        error_exit(f"Job {job_id} already exists", ExitCode.GENERAL_ERROR)


@jobs_group.command("cancel")
@click.argument("job_id")
@click.pass_context
def cancel_job(ctx: click.Context, job_id: str) -> None:
    """Cancel a queued or running job.

    A running worker notices the cancellation within a few seconds, kills
    its encoder and removes partial output.
    """
    store = _open_store(ctx)
    if store.cancel(job_id):
        click.echo(f"Cancelled {job_id}")
        return
    state = store.get_state(job_id)
    if state is None:
        error_exit(f"No job {job_id}", ExitCode.TARGET_NOT_FOUND)
    error_exit(f"Job {job_id} is already {state.value}", ExitCode.GENERAL_ERROR)


@jobs_group.command("list")
@click.option(
    "--state",
    "-s",
    type=click.Choice([s.value for s in JobState] + ["all"]),
    default="all",
    help="Filter by job state.",
)
@click.option(
    "--limit",
    "-n",
    type=int,
    default=50,
    help="Maximum number of jobs to show.",
)
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output in JSON format.",
)
@click.pass_context
def list_jobs(ctx: click.Context, state: str, limit: int, json_output: bool) -> None:
    """List jobs, most recent first."""
    store = _open_store(ctx)
    upload_dir = get_config(ctx).worker.upload_dir
    state_filter = None if state == "all" else JobState(state)
    jobs = store.list_jobs(upload_dir, state=state_filter, limit=limit)

    if json_output:
        echo_json([_job_to_dict(job) for job in jobs])
        return

    if not jobs:
        click.echo("No jobs found.")
        return

    click.echo(f"{'ID':<38} {'STATE':<11} {'CATEGORY':<9} {'CREATED':<20} ERROR")
    click.echo("-" * 100)
    for job in jobs:
        state_formatted = click.style(
            f"{job.state.value:<11}", fg=_STATE_COLORS[job.state]
        )
        created = (job.created_at or "")[:19].replace("T", " ")
        category = job.category.value if job.category else "-"
        click.echo(
            f"{job.id:<38} {state_formatted} {category:<9} {created:<20} "
            f"{job.error or ''}"
        )


def _job_to_dict(job: MediaJob) -> dict[str, object]:
    return {
        "id": job.id,
        "state": job.state.value,
        "media_type": job.media_type,
        "category": job.category.value if job.category else None,
        "error": job.error,
        "source": str(job.source),
        "workspace": str(job.workspace),
        "created_at": job.created_at,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
    }
