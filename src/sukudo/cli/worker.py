"""CLI command for running the job worker."""

import logging
import sys

import click

from sukudo.cli import get_db_conn
from sukudo.cli.exit_codes import ExitCode
from sukudo.enhance.pipeline import build_pipeline
from sukudo.jobs.worker import EnhanceWorker
from sukudo.storage import create_storage
from sukudo.tools.detection import (
    OPTIONAL_FILTERS,
    REQUIRED_FILTERS,
    detect_filters,
    find_tool,
)

logger = logging.getLogger(__name__)


@click.command("worker")
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after processing this many jobs.",
)
@click.option(
    "--max-duration",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many seconds (checked between jobs).",
)
@click.option(
    "--poll-interval",
    type=click.FloatRange(min=0.1),
    default=None,
    help="Seconds to wait between queue polls when idle.",
)
@click.option(
    "--reap-after",
    type=click.IntRange(min=1),
    default=None,
    help="Fail running jobs without a heartbeat for this many seconds.",
)
@click.option(
    "--once",
    is_flag=True,
    default=False,
    help="Process at most one queued job and exit.",
)
@click.pass_context
def worker_command(
    ctx: click.Context,
    max_jobs: int | None,
    max_duration: int | None,
    poll_interval: float | None,
    reap_after: int | None,
    once: bool,
) -> None:
    """Claim queued jobs and enhance their inputs.

    Runs until interrupted (SIGTERM/SIGINT stop it after the current job),
    or until --max-jobs / --max-duration is reached. Several workers may
    share one database; each job is claimed by exactly one of them.

    \b
    Examples:
        sukudo worker                     # Run until stopped
        sukudo worker --once              # Drain a single job
        sukudo worker --max-jobs 10       # Stop after ten jobs
        sukudo worker --reap-after 600    # Fail jobs silent for 10 minutes
    """
    config = ctx.obj["config"]
    conn = get_db_conn(ctx)

    try:
        storage = create_storage(config.storage)
    except ValueError as e:
        logger.error("Invalid storage configuration: %s", e)
        sys.exit(ExitCode.CONFIG_ERROR)

    ffmpeg = find_tool("ffmpeg", config.tools.ffmpeg)
    if ffmpeg is None:
        click.echo("Error: ffmpeg not found. Run 'sukudo doctor'.", err=True)
        sys.exit(ExitCode.TOOL_NOT_AVAILABLE)

    support = detect_filters(ffmpeg)
    missing = support.missing(REQUIRED_FILTERS)
    if missing:
        click.echo(
            f"Error: ffmpeg lacks required filters: {', '.join(missing)}",
            err=True,
        )
        sys.exit(ExitCode.TOOL_NOT_AVAILABLE)
    for name in support.missing(OPTIONAL_FILTERS):
        logger.warning("ffmpeg lacks optional filter %s", name)

    worker = EnhanceWorker(
        conn=conn,
        storage=storage,
        pipeline=build_pipeline(config),
        ffprobe_path=find_tool("ffprobe", config.tools.ffprobe),
        poll_interval=(
            poll_interval if poll_interval is not None else config.worker.poll_interval
        ),
        heartbeat_interval=config.worker.heartbeat_interval,
        max_jobs=max_jobs if max_jobs is not None else config.worker.max_jobs,
        max_duration=(
            max_duration if max_duration is not None else config.worker.max_duration
        ),
        reap_after=reap_after if reap_after is not None else config.worker.reap_after,
    )

    if once:
        claimed = worker.run_once()
        if not claimed:
            click.echo("No queued jobs.")
        sys.exit(ExitCode.SUCCESS)

    processed = worker.run()
    click.echo(f"Processed {processed} job(s).")
