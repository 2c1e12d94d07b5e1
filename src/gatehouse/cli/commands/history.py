"""gatehouse history -- show the dispatch audit log."""

from __future__ import annotations

import click

from gatehouse.cli.formatting import format_history, get_console


@click.command()
@click.option("--job", "job_name", default=None, help="Only show entries for this job.")
@click.option("--status", default=None, type=click.Choice(["succeeded", "failed", "skipped"]), help="Filter by job status.")
@click.option("-n", "--limit", default=20, type=int, help="Maximum number of entries to show.")
@click.pass_context
def history(ctx: click.Context, job_name: str | None, status: str | None, limit: int) -> None:
    """Show recorded job results, newest first."""
    from gatehouse.cli import _cli_errors, _run_log

    console = get_console()
    with _cli_errors(), _run_log(ctx) as run_log:
        entries = run_log.get_log(job_name=job_name, status=status, limit=limit)
        format_history(entries, console)
