"""gatehouse run -- dispatch an event against a workflow."""

from __future__ import annotations

import click

from gatehouse.cli.formatting import format_envelope, format_report, get_console


@click.command()
@click.argument("workflow", type=click.Path(exists=True, dir_okay=False))
@click.option("--event", "event_path", default=None, type=click.Path(exists=True, dir_okay=False), help="Event payload JSON file (default: GITHUB_EVENT_PATH).")
@click.option("--event-name", default=None, help="Event name, e.g. issue_comment (default: GITHUB_EVENT_NAME).")
@click.option("--actor", default=None, help="Login of the identity that triggered the event.")
@click.pass_context
def run(
    ctx: click.Context,
    workflow: str,
    event_path: str | None,
    event_name: str | None,
    actor: str | None,
) -> None:
    """Run every job in WORKFLOW whose predicate matches the event.

    Exits 1 if any job failed and 2 if the event payload is malformed.
    """
    from gatehouse.cli import EXIT_JOB_FAILED, _cli_errors, _read_envelope, _run_log
    from gatehouse.config import Settings, load_workflow
    from gatehouse.dispatcher import Dispatcher
    from gatehouse.host import GitHubHost

    console = get_console()
    with _cli_errors():
        wf = load_workflow(workflow)
        envelope = _read_envelope(event_path, event_name, actor)
        settings = Settings.from_env(db_path=ctx.obj["db_path"])
        format_envelope(envelope, console)

        host = GitHubHost.from_settings(settings)
        try:
            with _run_log(ctx) as run_log, Dispatcher(
                wf.jobs,
                host,
                action_timeout=settings.action_timeout,
                max_workers=settings.max_workers,
                run_log=run_log,
            ) as dispatcher:
                report = dispatcher.dispatch(envelope)
        finally:
            host.close()

        format_report(report, console)
    if not report.ok:
        raise SystemExit(EXIT_JOB_FAILED)
