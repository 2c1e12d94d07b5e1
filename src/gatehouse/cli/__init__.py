"""Gatehouse CLI -- run workflows against repository events from a terminal or CI step.

This module is NEVER imported from gatehouse/__init__.py.
It is only loaded via the ``gatehouse`` entry point defined in pyproject.toml.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

try:
    import click
except ImportError:
    raise ImportError(
        "CLI dependencies not installed. Install with: pip install gatehouse[cli]"
    ) from None

from gatehouse.cli.formatting import format_error, get_console

if TYPE_CHECKING:
    from collections.abc import Iterator

    from gatehouse.models.event import EventEnvelope
    from gatehouse.storage.sqlite import SqliteRunLogRepository

EXIT_JOB_FAILED = 1
EXIT_MALFORMED_EVENT = 2

_LOG_LEVELS = ["debug", "info", "warning", "error"]


@click.group()
@click.option(
    "--db",
    default=".gatehouse.db",
    envvar="GATEHOUSE_DB",
    help="Path to the audit log database.",
)
@click.option(
    "--log-level",
    default="warning",
    envvar="GATEHOUSE_LOG_LEVEL",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    help="Logging verbosity.",
)
@click.pass_context
def cli(ctx: click.Context, db: str, log_level: str) -> None:
    """Gatehouse: permission-scoped automation for pull request events."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db


@contextmanager
def _run_log(ctx: click.Context) -> Iterator[SqliteRunLogRepository]:
    """Open the audit log named by --db, creating tables on first use."""
    from gatehouse.storage.engine import (
        create_gatehouse_engine,
        create_session_factory,
        init_db,
    )
    from gatehouse.storage.sqlite import SqliteRunLogRepository

    engine = create_gatehouse_engine(ctx.obj["db_path"])
    try:
        init_db(engine)
        yield SqliteRunLogRepository(create_session_factory(engine))
    finally:
        engine.dispose()


def _read_envelope(
    event_path: str | None,
    event_name: str | None,
    actor: str | None,
) -> EventEnvelope:
    """Build the envelope from --event/--event-name, or the runner environment.

    An actor named on the command line comes from whoever invoked the CLI,
    so it is treated as verified the same way the runner's GITHUB_ACTOR is.

    Raises:
        click.UsageError: If only one of --event / --event-name is given.
        MalformedEventError: If the payload does not parse.
        HostError: If the runner environment does not describe an event.
    """
    from gatehouse.events import load_event_file, parse_event
    from gatehouse.host.local import EnvironmentEventSource

    if event_path or event_name:
        if not (event_path and event_name):
            raise click.UsageError("--event and --event-name must be given together")
        return load_event_file(
            event_path, event_name, actor=actor, verified=bool(actor)
        )
    raw = EnvironmentEventSource().fetch_event()
    return parse_event(
        raw.event_name,
        raw.payload,
        actor=actor or raw.actor,
        verified=bool(actor) or raw.verified,
        delivery_id=raw.delivery_id,
    )


@contextmanager
def _cli_errors() -> Iterator[None]:
    """Format exceptions as CLI errors.

    Malformed events exit with EXIT_MALFORMED_EVENT, everything else with 1.
    """
    from gatehouse.exceptions import MalformedEventError

    console = get_console()
    try:
        yield
    except (SystemExit, click.ClickException):
        raise
    except MalformedEventError as e:
        format_error(str(e), console)
        raise SystemExit(EXIT_MALFORMED_EVENT) from None
    except Exception as e:
        format_error(str(e), console)
        raise SystemExit(1) from None


# Register subcommands after cli group is defined
from gatehouse.cli.commands.run import run  # noqa: E402
from gatehouse.cli.commands.match import match  # noqa: E402
from gatehouse.cli.commands.validate import validate  # noqa: E402
from gatehouse.cli.commands.history import history  # noqa: E402

cli.add_command(run)
cli.add_command(match)
cli.add_command(validate)
cli.add_command(history)
