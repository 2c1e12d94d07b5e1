"""Rich formatting helpers for the Gatehouse CLI.

Provides functions that format dispatch results, workflows and the audit
log for terminal display. Rich auto-detects TTY and degrades gracefully
when piped (no ANSI codes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.table import Table

if TYPE_CHECKING:
    from gatehouse.config import Workflow
    from gatehouse.models.event import EventEnvelope
    from gatehouse.models.job import DispatchReport
    from gatehouse.storage.schema import JobLogRow

_STATUS_STYLE = {
    "succeeded": "green",
    "failed": "red",
    "skipped": "dim",
    "warning": "yellow",
    "not_run": "dim",
}


def get_console() -> Console:
    """Create a Rich Console that auto-detects TTY for graceful pipe degradation."""
    return Console(stderr=False)


def _styled(status: str) -> str:
    style = _STATUS_STYLE.get(status, "")
    return f"[{style}]{status}[/{style}]" if style else status


def format_envelope(envelope: EventEnvelope, console: Console) -> None:
    """One-line summary of the event being dispatched."""
    parts = [f"[cyan]{envelope.kind.value}[/cyan]", f"by {escape(envelope.actor)}"]
    if not envelope.actor_verified:
        parts.append("[yellow](unverified)[/yellow]")
    if envelope.pull_request is not None:
        parts.append(f"on PR #{envelope.pull_request.number}")
    elif envelope.issue_number is not None:
        parts.append(f"on #{envelope.issue_number}")
    console.print("Event: " + " ".join(parts))


def format_report(report: DispatchReport, console: Console) -> None:
    """Display one row per job, plus step detail for jobs that ran."""
    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("Job", style="bold")
    table.add_column("Status")
    table.add_column("Steps")
    table.add_column("Reason")

    for result in report.results:
        steps = ", ".join(
            f"{escape(s.name)}={_styled(s.status.value)}" for s in result.steps
        )
        table.add_row(
            escape(result.job_name),
            _styled(result.status.value),
            steps or "[dim]-[/dim]",
            escape(result.reason) if result.reason else "",
        )

    console.print(table)
    failed = len(report.failed)
    ran = len(report.matched)
    console.print(
        f"\n{ran} of {len(report.results)} job(s) matched, "
        + (f"[red]{failed} failed[/red]" if failed else "[green]none failed[/green]")
    )


def format_matches(names: list[str], console: Console) -> None:
    """Display the jobs a dry run would execute."""
    if not names:
        console.print("[dim]No jobs match.[/dim]")
        return
    for name in names:
        console.print(f"  [green]match[/green]  {escape(name)}")


def format_workflow(workflow: Workflow, console: Console) -> None:
    """Display a workflow's jobs with their predicates, scopes and steps."""
    console.print(f"Workflow [bold]{escape(workflow.name)}[/bold]: {len(workflow.jobs)} job(s)")
    for job in workflow.jobs:
        console.print()
        console.print(f"[bold]{escape(job.name)}[/bold]")
        console.print(f"  If:          {escape(str(job.predicate))}")
        scope = ", ".join(f"{k}: {v}" for k, v in job.permissions.to_dict().items())
        console.print(f"  Permissions: {escape(scope) if scope else '[dim]default (read)[/dim]'}")
        for i, step in enumerate(job.steps, 1):
            flags = []
            if step.best_effort:
                flags.append("best-effort")
            if step.timeout is not None:
                flags.append(f"timeout={step.timeout:g}s")
            suffix = f" [dim]({', '.join(flags)})[/dim]" if flags else ""
            console.print(
                f"  {i}. {escape(step.display_name)} [cyan]{escape(step.action)}[/cyan]{suffix}"
            )


def format_history(entries: list[JobLogRow], console: Console) -> None:
    """Display audit log entries in compact table format."""
    if not entries:
        console.print("[dim]No dispatches recorded.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("Dispatch", style="yellow", width=8)
    table.add_column("Time", style="dim")
    table.add_column("Event", style="cyan")
    table.add_column("Actor")
    table.add_column("Job")
    table.add_column("Status")
    table.add_column("Reason")

    for entry in entries:
        table.add_row(
            entry.dispatch_id[:8],
            entry.created_at.strftime("%Y-%m-%d %H:%M"),
            entry.run.event_kind,
            escape(entry.run.actor),
            escape(entry.job_name),
            _styled(entry.status),
            escape(entry.reason) if entry.reason else "",
        )

    console.print(table)


def format_error(message: str, console: Console) -> None:
    """Display an error message."""
    console.print(f"[red]Error:[/red] {escape(message)}", highlight=False)
