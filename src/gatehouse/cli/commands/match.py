"""gatehouse match -- list the jobs an event would run, without running them."""

from __future__ import annotations

import click

from gatehouse.cli.formatting import format_envelope, format_matches, get_console


@click.command()
@click.argument("workflow", type=click.Path(exists=True, dir_okay=False))
@click.option("--event", "event_path", required=True, type=click.Path(exists=True, dir_okay=False), help="Event payload JSON file.")
@click.option("--event-name", required=True, help="Event name, e.g. pull_request_target.")
@click.option("--actor", default=None, help="Login of the identity that triggered the event.")
def match(workflow: str, event_path: str, event_name: str, actor: str | None) -> None:
    """Show which jobs in WORKFLOW match the event (dry run)."""
    from gatehouse.cli import _cli_errors, _read_envelope
    from gatehouse.config import load_workflow
    from gatehouse.predicates import evaluate

    console = get_console()
    with _cli_errors():
        wf = load_workflow(workflow)
        envelope = _read_envelope(event_path, event_name, actor)
        format_envelope(envelope, console)
        format_matches([j.name for j in wf.jobs if evaluate(j.predicate, envelope)], console)
