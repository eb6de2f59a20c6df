"""Sukudo doctor command for checking external tool health.

This module provides the 'sukudo doctor' command to check that ffmpeg,
ffprobe and the filters the enhancement graph needs are available, and
whether max quality can use source separation.
"""

import json
import shlex
import sys

import click

from sukudo.config import SukudoConfig
from sukudo.storage import create_storage
from sukudo.tools.detection import (
    OPTIONAL_FILTERS,
    REQUIRED_FILTERS,
    detect_filters,
    find_tool,
    probe_separator,
)

EXIT_OK = 0
EXIT_WARNINGS = 1
EXIT_CRITICAL = 2


def _format_status(available: bool) -> str:
    return "✓" if available else "✗"


def _collect(config: SukudoConfig) -> dict:
    """Run every check and return the findings as a plain dict."""
    ffmpeg = find_tool("ffmpeg", config.tools.ffmpeg)
    ffprobe = find_tool("ffprobe", config.tools.ffprobe)

    missing_required: list[str] = list(REQUIRED_FILTERS)
    missing_optional: list[str] = list(OPTIONAL_FILTERS)
    if ffmpeg is not None:
        support = detect_filters(ffmpeg)
        missing_required = support.missing(REQUIRED_FILTERS)
        missing_optional = support.missing(OPTIONAL_FILTERS)

    configured = shlex.split(config.tools.demucs) if config.tools.demucs else None
    separator = probe_separator(configured)

    storage_error = None
    try:
        create_storage(config.storage)
    except ValueError as e:
        storage_error = str(e)

    return {
        "ffmpeg": str(ffmpeg) if ffmpeg else None,
        "ffprobe": str(ffprobe) if ffprobe else None,
        "missing_filters": missing_required,
        "missing_optional_filters": missing_optional,
        "separator": " ".join(separator) if separator else None,
        "storage_backend": config.storage.backend,
        "storage_error": storage_error,
    }


def _exit_code(report: dict) -> int:
    if (
        report["ffmpeg"] is None
        or report["missing_filters"]
        or report["storage_error"]
    ):
        return EXIT_CRITICAL
    if (
        report["ffprobe"] is None
        or report["missing_optional_filters"]
        or report["separator"] is None
    ):
        return EXIT_WARNINGS
    return EXIT_OK


@click.command("doctor")
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output results as JSON",
)
@click.pass_context
def doctor_command(ctx: click.Context, json_output: bool) -> None:
    """Check external tool availability and capabilities.

    Verifies that ffmpeg is installed with every filter the enhancement
    graph uses, that ffprobe is available for media probing, and whether
    demucs can be run for max quality separation.

    Exit codes:
      0 - All tools available and requirements met
      1 - Some warnings (ffprobe, adeclip or separator missing)
      2 - Critical issues (ffmpeg or a required filter missing)
    """
    report = _collect(ctx.obj["config"])
    code = _exit_code(report)

    if json_output:
        click.echo(json.dumps({**report, "exit_code": code}, indent=2))
        sys.exit(code)

    click.echo("Sukudo Doctor")
    click.echo("=" * 40)
    click.echo("")

    click.echo("Tools:")
    for name in ("ffmpeg", "ffprobe"):
        path = report[name]
        status = _format_status(path is not None)
        click.echo(f"  {status} {name}: {path or 'not found'}")

    click.echo("")
    click.echo("Filters:")
    if report["ffmpeg"] is None:
        click.echo("  ✗ cannot check filters without ffmpeg")
    elif report["missing_filters"]:
        missing = ", ".join(report["missing_filters"])
        click.echo(f"  ✗ missing required filters: {missing}")
    else:
        click.echo(f"  ✓ all {len(REQUIRED_FILTERS)} required filters present")
    if report["ffmpeg"] is not None and report["missing_optional_filters"]:
        missing = ", ".join(report["missing_optional_filters"])
        click.echo(f"  ! missing optional filters: {missing} (clip repair unavailable)")

    click.echo("")
    click.echo("Source separation:")
    if report["separator"]:
        click.echo(f"  ✓ demucs: {report['separator']}")
    else:
        click.echo("  ! demucs not found (max quality falls back to single stage)")

    click.echo("")
    click.echo("Storage:")
    if report["storage_error"]:
        click.echo(f"  ✗ {report['storage_backend']}: {report['storage_error']}")
    else:
        click.echo(f"  ✓ {report['storage_backend']}")

    click.echo("")
    if code == EXIT_CRITICAL:
        click.echo(click.style("Critical issues found.", fg="red"))
    elif code == EXIT_WARNINGS:
        click.echo(click.style("Ready, with warnings.", fg="yellow"))
    else:
        click.echo(click.style("All checks passed.", fg="green"))

    sys.exit(code)
