"""gatehouse validate -- check a workflow file and describe its jobs."""

from __future__ import annotations

import click

from gatehouse.cli.formatting import format_workflow, get_console


@click.command()
@click.argument("workflow", type=click.Path(exists=True, dir_okay=False))
def validate(workflow: str) -> None:
    """Load WORKFLOW, check every step names a known action, and list its jobs."""
    from gatehouse.actions import default_registry
    from gatehouse.cli import _cli_errors
    from gatehouse.config import load_workflow
    from gatehouse.exceptions import UnknownActionError

    console = get_console()
    with _cli_errors():
        wf = load_workflow(workflow)
        registry = default_registry()
        for job in wf.jobs:
            for step in job.steps:
                if step.action not in registry:
                    raise UnknownActionError(step.action)
        format_workflow(wf, console)
