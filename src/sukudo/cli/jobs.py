"""CLI commands for submitting and inspecting enhancement jobs."""

import json
import logging
import re
import sqlite3
import uuid
from pathlib import Path
from typing import Any

import click

from sukudo.cli import get_db_conn
from sukudo.db import (
    Job,
    JobEvent,
    JobStatus,
    get_jobs_by_id_prefix,
    list_jobs,
)
from sukudo.jobs.events import get_all_events
from sukudo.jobs.exceptions import JobValidationError
from sukudo.jobs.queue import (
    DEFAULT_HEARTBEAT_TIMEOUT,
    get_queue_stats,
    reap_stale_jobs,
)
from sukudo.jobs.tracking import create_enhance_job, input_object_path
from sukudo.storage import StorageError, create_storage, guess_content_type

logger = logging.getLogger(__name__)

JOB_STATUS_COLORS: dict[JobStatus, str] = {
    JobStatus.QUEUED: "yellow",
    JobStatus.RUNNING: "blue",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
}

_ID_PREFIX = re.compile(r"^[0-9a-fA-F-]{4,36}$")


def _parse_param(raw: str) -> tuple[str, Any]:
    """Split KEY=VALUE; the value is parsed as JSON when it is valid JSON."""
    key, sep, value = raw.partition("=")
    if not sep or not key:
        raise click.BadParameter(f"expected KEY=VALUE, got '{raw}'")
    try:
        return key, json.loads(value)
    except json.JSONDecodeError:
        return key, value


def _resolve_job(conn: sqlite3.Connection, job_id: str) -> Job:
    """Find a job by full id or unambiguous prefix.

    Raises:
        click.ClickException: If no job or more than one job matches.
    """
    if not _ID_PREFIX.match(job_id):
        raise click.ClickException(f"Invalid job id: {job_id}")

    matching = get_jobs_by_id_prefix(conn, job_id.lower())
    if not matching:
        raise click.ClickException(f"Job not found: {job_id}")
    if len(matching) > 1:
        click.echo(f"Multiple jobs match '{job_id}':", err=True)
        for job in matching[:5]:
            click.echo(f"  {job.id[:8]} - {job.status.value}", err=True)
        raise click.ClickException("Be more specific.")
    return matching[0]


def _format_event(event: JobEvent) -> str:
    ts = event.ts[:19].replace("T", " ")
    line = f"{event.id:>6}  {ts}  {event.level.value:<5}  {event.message}"
    if event.data:
        line += f"  {json.dumps(event.data, sort_keys=True)}"
    return line


@click.group("jobs")
def jobs_group() -> None:
    """Submit and inspect enhancement jobs.

    \b
    Examples:
        # Queue a stored file with default controls
        sukudo jobs submit inputs/abc/interview.wav

    \b
        # Upload a local file and queue it at max quality
        sukudo jobs submit --upload ./talk.mp4 --param quality=max

    \b
        # Follow a job
        sukudo jobs show 1a2b
        sukudo jobs events 1a2b
    """


@jobs_group.command("submit")
@click.argument("input_urls", nargs=-1)
@click.option(
    "--upload",
    "uploads",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Upload a local file to storage and add it as an input.",
)
@click.option(
    "--param",
    "params",
    multiple=True,
    help="Control as KEY=VALUE (e.g. quality=max, lufs=-16). Repeatable.",
)
@click.option(
    "--params-json",
    default=None,
    help="All controls as a JSON object; --param values override it.",
)
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output the queued job in JSON format.",
)
@click.pass_context
def submit_job(
    ctx: click.Context,
    input_urls: tuple[str, ...],
    uploads: tuple[Path, ...],
    params: tuple[str, ...],
    params_json: str | None,
    json_output: bool,
) -> None:
    """Queue an enhancement job for one or more inputs.

    INPUT_URLS are storage object paths, processed in the order given.
    Files passed with --upload are stored under inputs/ first and appended
    after them.
    """
    conn = get_db_conn(ctx)

    controls: dict[str, Any] = {}
    if params_json:
        try:
            loaded = json.loads(params_json)
        except json.JSONDecodeError as e:
            raise click.BadParameter(str(e), param_hint="--params-json") from e
        if not isinstance(loaded, dict):
            raise click.BadParameter(
                "must be a JSON object", param_hint="--params-json"
            )
        controls.update(loaded)
    for raw in params:
        key, value = _parse_param(raw)
        controls[key] = value

    urls = list(input_urls)
    if uploads:
        try:
            storage = create_storage(ctx.obj["config"].storage)
            upload_id = str(uuid.uuid4())
            for path in uploads:
                object_path = input_object_path(upload_id, path.name)
                storage.upload_file(object_path, path, guess_content_type(path.name))
                logger.info("Uploaded %s to %s", path, object_path)
                urls.append(object_path)
        except (StorageError, ValueError) as e:
            raise click.ClickException(f"Upload failed: {e}") from e

    try:
        job = create_enhance_job(conn, urls, controls)
    except JobValidationError as e:
        where = f" ({e.field})" if e.field else ""
        raise click.ClickException(f"Invalid job{where}: {e.message}") from e

    if json_output:
        click.echo(json.dumps(job.to_dict(), indent=2))
    else:
        click.echo(f"Queued job {job.id} with {len(job.input_urls)} input(s).")


@jobs_group.command("list")
@click.option(
    "--status",
    "-s",
    type=click.Choice(["queued", "running", "completed", "failed", "all"]),
    default="all",
    help="Filter by job status.",
)
@click.option(
    "--limit",
    "-n",
    type=click.IntRange(min=1),
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
def list_jobs_command(
    ctx: click.Context, status: str, limit: int, json_output: bool
) -> None:
    """List jobs, newest first."""
    conn = get_db_conn(ctx)

    status_filter = None if status == "all" else JobStatus(status)
    jobs = list_jobs(conn, status=status_filter, limit=limit)

    if json_output:
        click.echo(json.dumps([job.to_dict() for job in jobs], indent=2))
        return

    if not jobs:
        click.echo("No jobs found.")
        return

    click.echo(f"{'ID':<10} {'STATUS':<11} {'INPUTS':>6}  {'CREATED':<20}")
    click.echo("-" * 50)
    for job in jobs:
        # Pad before coloring so ANSI codes do not break alignment
        status_colored = click.style(
            f"{job.status.value:<11}", fg=JOB_STATUS_COLORS[job.status]
        )
        created = job.created_at[:19].replace("T", " ")
        click.echo(
            f"{job.id[:8]:<10} {status_colored} {len(job.input_urls):>6}  {created}"
        )


@jobs_group.command("show")
@click.argument("job_id")
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output in JSON format.",
)
@click.pass_context
def show_job(ctx: click.Context, job_id: str, json_output: bool) -> None:
    """Show details for a job.

    JOB_ID can be the full UUID or a prefix (minimum 4 characters).
    """
    conn = get_db_conn(ctx)
    job = _resolve_job(conn, job_id)

    if json_output:
        click.echo(json.dumps(job.to_dict(), indent=2))
        return

    status_colored = click.style(
        job.status.value.upper(), fg=JOB_STATUS_COLORS[job.status]
    )
    click.echo(f"\nJob: {job.id}")
    click.echo("-" * 50)
    click.echo(f"  Status:      {status_colored}")
    click.echo(f"  Created:     {job.created_at}")
    if job.started_at:
        click.echo(f"  Started:     {job.started_at}")
    if job.completed_at:
        click.echo(f"  Completed:   {job.completed_at}")
    if job.worker_id:
        click.echo(f"  Worker:      {job.worker_id}")

    click.echo("")
    click.echo("  Inputs:")
    for url in job.input_urls:
        click.echo(f"    {url}")

    click.echo("")
    click.echo("  Controls:")
    for key, value in job.params.items():
        click.echo(f"    {key}: {value}")

    if job.output_urls:
        click.echo("")
        click.echo("  Outputs:")
        for url in job.output_urls:
            click.echo(f"    {url}")

    if job.error_message:
        click.echo("")
        click.echo(f"  Error:       {click.style(job.error_message, fg='red')}")

    click.echo("")


@jobs_group.command("events")
@click.argument("job_id")
@click.option(
    "--after",
    type=click.IntRange(min=0),
    default=0,
    help="Only show events with an id greater than this.",
)
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output in JSON format.",
)
@click.pass_context
def show_events(
    ctx: click.Context, job_id: str, after: int, json_output: bool
) -> None:
    """Print a job's event log in order."""
    conn = get_db_conn(ctx)
    job = _resolve_job(conn, job_id)

    events = [e for e in get_all_events(conn, job.id) if e.id > after]

    if json_output:
        click.echo(json.dumps([e.to_dict() for e in events], indent=2))
        return

    if not events:
        click.echo("No events.")
        return
    for event in events:
        click.echo(_format_event(event))


@jobs_group.command("status")
@click.pass_context
def show_status(ctx: click.Context) -> None:
    """Show queue statistics."""
    conn = get_db_conn(ctx)
    stats = get_queue_stats(conn)

    click.echo("Job Queue Status")
    click.echo("-" * 30)
    click.echo(f"  Queued:    {stats['queued']:>5}")
    click.echo(f"  Running:   {stats['running']:>5}")
    click.echo(f"  Completed: {stats['completed']:>5}")
    click.echo(f"  Failed:    {stats['failed']:>5}")
    click.echo("-" * 30)
    click.echo(f"  Total:     {stats['total']:>5}")


@jobs_group.command("reap")
@click.option(
    "--timeout",
    type=click.IntRange(min=1),
    default=DEFAULT_HEARTBEAT_TIMEOUT,
    show_default=True,
    help="Seconds without a heartbeat before a running job is failed.",
)
@click.pass_context
def reap_jobs(ctx: click.Context, timeout: int) -> None:
    """Fail running jobs whose worker stopped heartbeating."""
    conn = get_db_conn(ctx)
    reaped = reap_stale_jobs(conn, timeout)
    if not reaped:
        click.echo("No stale jobs.")
        return
    click.echo(f"Failed {len(reaped)} stale job(s):")
    for job_id in reaped:
        click.echo(f"  {job_id}")
