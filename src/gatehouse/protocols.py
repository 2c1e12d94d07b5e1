"""Protocol definitions for Gatehouse.

The dispatcher's only boundary is the VCS host: whatever delivers events,
checks out code, comments, merges and runs commands. VCSHost is the
pluggable interface; the frozen dataclasses are its return types.

No SQLAlchemy or httpx imports allowed in this module -- pure domain
protocols.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class RawEvent:
    """An undecoded event as delivered by the host.

    ``actor`` and ``verified`` describe the delivery context, not the
    payload; see gatehouse.events.parse_event().
    """

    event_name: str
    payload: dict
    actor: str | None = None
    verified: bool = False
    delivery_id: str | None = None


@dataclass(frozen=True)
class WorkingTree:
    """A checked-out ref."""

    path: str
    ref: str
    sha: str | None = None
    writable: bool = False


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured output of a command."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class MergeResult:
    """Outcome of a merge request accepted by the host.

    ``merged`` is False when the host only queued an auto-merge.
    """

    number: int
    merged: bool
    sha: str | None = None
    message: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class VCSHost(Protocol):
    """Protocol for the version-control hosting collaborator.

    Every call may block; the dispatcher wraps each one in a timeout and
    passes the limit to the calls that accept one, which should stop their
    own work when it expires.
    Implementations own any retry policy -- the dispatcher never retries.
    """

    def fetch_event(self) -> RawEvent:
        """Return the event that triggered this run."""
        ...

    def checkout_ref(
        self,
        ref: str,
        *,
        writable: bool = False,
        fetch_depth: int | None = None,
        timeout: float | None = None,
    ) -> WorkingTree:
        """Check out ``ref``; read-only unless ``writable``.

        ``fetch_depth`` 0 means full history; ``timeout`` bounds the work.
        """
        ...

    def post_comment(self, issue_number: int, body: str) -> int:
        """Comment on an issue or pull request, returning the comment id."""
        ...

    def merge_pull_request(
        self,
        number: int,
        strategy: str = "merge",
        *,
        auto: bool = False,
    ) -> MergeResult:
        """Merge (or queue auto-merge for) a pull request.

        Raises:
            MergeConflictError: The branches conflict.
            ChecksNotPassedError: Required checks block the merge.
        """
        ...

    def run_command(
        self,
        cmd: str,
        env: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a shell command in the current working tree.

        Raises:
            ActionTimeoutError: The command ran past ``timeout`` and was killed.
        """
        ...
