"""Shared test fixtures for Gatehouse.

Provides an in-memory SQLite engine and run log, a recording fake VCS
host, and payload builders for the two event families.
"""

from __future__ import annotations

import itertools
import threading
import time

import pytest

from gatehouse.events import parse_event
from gatehouse.exceptions import ActionTimeoutError
from gatehouse.protocols import CommandResult, MergeResult, RawEvent, WorkingTree
from gatehouse.storage.engine import create_gatehouse_engine, create_session_factory, init_db
from gatehouse.storage.sqlite import SqliteRunLogRepository


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created."""
    eng = create_gatehouse_engine(":memory:")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def run_log(session_factory) -> SqliteRunLogRepository:
    return SqliteRunLogRepository(session_factory)


# ------------------------------------------------------------------
# Fake VCS host
# ------------------------------------------------------------------


class FakeHost:
    """VCSHost that records every call instead of talking to a forge.

    ``failures`` maps a method name to the exception it raises,
    ``delays`` maps a method name to seconds to sleep first, and
    ``command_results`` maps a command string to its CommandResult.
    ``timeouts`` records the last timeout each method was given; with
    ``honor_timeouts`` a delayed call stops at that timeout the way a real
    host does.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.failures: dict[str, Exception] = {}
        self.delays: dict[str, float] = {}
        self.command_results: dict[str, CommandResult] = {}
        self.raw_event: RawEvent | None = None
        self.timeouts: dict[str, float | None] = {}
        self.honor_timeouts = False
        self.closed = False
        self._lock = threading.Lock()
        self._comment_ids = itertools.count(1001)

    def _record(self, method: str, timeout: float | None = None, **kwargs) -> None:
        with self._lock:
            self.calls.append((method, kwargs))
            self.timeouts[method] = timeout
        delay = self.delays.get(method)
        if delay:
            if self.honor_timeouts and timeout is not None and delay > timeout:
                time.sleep(timeout)
                raise ActionTimeoutError(method, timeout)
            time.sleep(delay)
        exc = self.failures.get(method)
        if exc is not None:
            raise exc

    def calls_to(self, method: str) -> list[dict]:
        with self._lock:
            return [kwargs for name, kwargs in self.calls if name == method]

    @property
    def methods(self) -> list[str]:
        with self._lock:
            return [name for name, _ in self.calls]

    # VCSHost ----------------------------------------------------------

    def fetch_event(self) -> RawEvent:
        self._record("fetch_event")
        if self.raw_event is None:
            raise RuntimeError("no event queued")
        return self.raw_event

    def checkout_ref(self, ref, *, writable=False, fetch_depth=None, timeout=None) -> WorkingTree:
        self._record(
            "checkout_ref", timeout, ref=ref, writable=writable, fetch_depth=fetch_depth
        )
        return WorkingTree(path="/work", ref=ref, sha="0123456789abcdef", writable=writable)

    def post_comment(self, issue_number, body) -> int:
        self._record("post_comment", issue_number=issue_number, body=body)
        return next(self._comment_ids)

    def merge_pull_request(self, number, strategy="merge", *, auto=False) -> MergeResult:
        self._record("merge_pull_request", number=number, strategy=strategy, auto=auto)
        return MergeResult(
            number=number,
            merged=not auto,
            sha=None if auto else "fedcba9876543210",
            message="auto-merge enabled" if auto else "merged",
        )

    def run_command(self, cmd, env=None, *, timeout=None) -> CommandResult:
        self._record("run_command", timeout, cmd=cmd, env=env)
        return self.command_results.get(cmd, CommandResult(exit_code=0, stdout="ok\n"))

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


# ------------------------------------------------------------------
# Payload builders
# ------------------------------------------------------------------


def comment_payload(
    body: str = "/deploy-dev",
    *,
    action: str = "created",
    login: str = "octocat",
    number: int = 42,
    on_pull_request: bool = True,
    base_ref: str | None = "main",
    state: str = "open",
) -> dict:
    """A realistic ``issue_comment`` webhook body."""
    issue: dict = {"number": number, "state": state, "title": "Add feature"}
    if on_pull_request:
        link: dict = {"url": f"https://api.github.com/repos/octo/app/pulls/{number}"}
        if base_ref is not None:
            link["base"] = {"ref": base_ref}
        issue["pull_request"] = link
    return {
        "action": action,
        "issue": issue,
        "comment": {"id": 9001, "body": body, "user": {"login": login}},
        "sender": {"login": login},
        "repository": {"full_name": "octo/app"},
    }


def pull_request_payload(
    *,
    action: str = "opened",
    login: str = "dependabot[bot]",
    number: int = 7,
    state: str = "open",
    title: str = "Bump lodash from 4.17.20 to 4.17.21",
    head_repo: str | None = "octo/app",
    base_ref: str = "main",
    head_ref: str = "dependabot/npm_and_yarn/lodash-4.17.21",
) -> dict:
    """A realistic ``pull_request_target`` webhook body."""
    head: dict = {"ref": head_ref}
    if head_repo is not None:
        head["repo"] = {"full_name": head_repo}
    return {
        "action": action,
        "number": number,
        "pull_request": {
            "number": number,
            "state": state,
            "title": title,
            "base": {"ref": base_ref, "repo": {"full_name": "octo/app"}},
            "head": head,
        },
        "sender": {"login": login},
        "repository": {"full_name": "octo/app"},
    }


@pytest.fixture
def comment_envelope():
    """``/deploy-dev`` comment on PR #42 by octocat."""
    return parse_event("issue_comment", comment_payload(), verified=True)


@pytest.fixture
def dependabot_envelope():
    """Dependabot opening PR #7."""
    return parse_event("pull_request_target", pull_request_payload(), verified=True)
