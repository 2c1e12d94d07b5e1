"""Concrete VCS host implementations.

GitHubHost composes the GitHub REST client (comments, merges), a local
git workspace (checkouts, commands) and an event source into a single
object satisfying the VCSHost protocol.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from gatehouse.host.github import GitHubClient
from gatehouse.host.local import EnvironmentEventSource, LocalWorkspace

# Per-request HTTP timeout; never longer than the step limit.
HTTP_TIMEOUT = 30.0

if TYPE_CHECKING:
    from collections.abc import Mapping

    from gatehouse.config import Settings
    from gatehouse.protocols import CommandResult, MergeResult, RawEvent, WorkingTree


class GitHubHost:
    """VCSHost backed by GitHub and a local checkout."""

    def __init__(
        self,
        client: GitHubClient,
        workspace: LocalWorkspace,
        events: EnvironmentEventSource | None = None,
    ) -> None:
        self._client = client
        self._workspace = workspace
        self._events = events or EnvironmentEventSource()

    @classmethod
    def from_settings(cls, settings: Settings) -> GitHubHost:
        from gatehouse.exceptions import HostError

        if not settings.repository:
            raise HostError(
                "No repository configured. Set GITHUB_REPOSITORY or GATEHOUSE_REPOSITORY."
            )
        client = GitHubClient(
            settings.repository,
            settings.github_token,
            api_url=settings.api_url,
            timeout=min(HTTP_TIMEOUT, settings.action_timeout),
        )
        return cls(client, LocalWorkspace(settings.workdir))

    def fetch_event(self) -> RawEvent:
        return self._events.fetch_event()

    def checkout_ref(
        self,
        ref: str,
        *,
        writable: bool = False,
        fetch_depth: int | None = None,
        timeout: float | None = None,
    ) -> WorkingTree:
        return self._workspace.checkout_ref(
            ref, writable=writable, fetch_depth=fetch_depth, timeout=timeout
        )

    def post_comment(self, issue_number: int, body: str) -> int:
        return self._client.post_comment(issue_number, body)

    def merge_pull_request(
        self,
        number: int,
        strategy: str = "merge",
        *,
        auto: bool = False,
    ) -> MergeResult:
        return self._client.merge_pull_request(number, strategy, auto=auto)

    def run_command(
        self,
        cmd: str,
        env: Mapping[str, str] | None = None,
        *,
        timeout: float | None = None,
    ) -> CommandResult:
        return self._workspace.run_command(cmd, env, timeout=timeout)

    def close(self) -> None:
        self._client.close()


__all__ = [
    "EnvironmentEventSource",
    "GitHubClient",
    "GitHubHost",
    "LocalWorkspace",
]
