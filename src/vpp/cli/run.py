"""CLI command for the polling worker."""

from __future__ import annotations

import logging
import sqlite3

import click

from vpp.cli import get_config
from vpp.cli.exit_codes import ExitCode
from vpp.cli.output import error_exit
from vpp.cli.runtime import build_pipeline, require_tools
from vpp.jobs import JobWorker, SQLiteJobStore

logger = logging.getLogger(__name__)


@click.command("run")
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after processing this many jobs.",
)
@click.option(
    "--once",
    is_flag=True,
    help="Exit when the queue is empty instead of polling.",
)
@click.pass_context
def run_command(ctx: click.Context, max_jobs: int | None, once: bool) -> None:
    """Process queued uploads until stopped.

    The worker claims one job at a time from the job store, polls every
    worker.poll_interval_secs while the queue is empty, and stops
    gracefully on SIGTERM or SIGINT. A job interrupted by shutdown is put
    back in the queue.

    Examples:

        vpp run

        vpp --log-json run --max-jobs 10
    """
    config = get_config(ctx)
    tools = require_tools(config)
    worker_config = config.worker

    store = SQLiteJobStore(worker_config.database_path)
    try:
        store.initialize()
    except sqlite3.Error as e:
        error_exit(f"Cannot open job store: {e}", ExitCode.DATABASE_ERROR)

    with build_pipeline(config, tools) as pipeline:
        worker = JobWorker(
            store,
            pipeline,
            worker_config.upload_dir,
            poll_interval=worker_config.poll_interval_secs,
            max_jobs=max_jobs,
            remove_source=worker_config.remove_source,
        )
        processed = worker.run(once=once)

    click.echo(f"Processed {processed} job(s).")
