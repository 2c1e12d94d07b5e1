"""GitHub REST client with tenacity retry.

Covers the API side of the VCS host: posting comments and merging pull
requests. Retry on transient failures (429, 5xx, connection errors)
lives here, in the collaborator; the dispatcher itself never retries.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx
import tenacity

from gatehouse.exceptions import (
    ChecksNotPassedError,
    HostAuthError,
    HostError,
    MergeConflictError,
)
from gatehouse.protocols import MergeResult

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_AUTH_ERROR_STATUS_CODES = {401, 403}

_ENABLE_AUTO_MERGE = """
mutation($id: ID!, $method: PullRequestMergeMethod!) {
  enablePullRequestAutoMerge(input: {pullRequestId: $id, mergeMethod: $method}) {
    pullRequest { number autoMergeRequest { enabledAt } }
  }
}
"""


def _is_retryable(exc: BaseException) -> bool:
    """Retryable: 429, 500, 502, 503, 504, connection errors."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _RETRYABLE_STATUS_CODES
    return isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout))


class GitHubClient:
    """Sync httpx client for the GitHub REST API.

    Usage::

        with GitHubClient("octo/repo", token="ghp_...") as gh:
            gh.post_comment(12, "Deployed")
    """

    def __init__(
        self,
        repository: str,
        token: str | None = None,
        *,
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
        max_retries: int = 3,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            repository: ``owner/repo`` the client acts on.
            token: API token. Falls back to the GITHUB_TOKEN env var.
            api_url: REST API root.
            timeout: Per-request timeout in seconds.
            max_retries: Maximum attempts for retryable errors.
            transport: Optional httpx transport (tests use MockTransport).

        Raises:
            HostAuthError: If no token is provided or found in environment.
        """
        self._token = token or os.environ.get("GITHUB_TOKEN", "")
        if not self._token:
            raise HostAuthError(
                "No GitHub token provided. Pass token= or set GITHUB_TOKEN."
            )
        if "/" not in repository:
            raise HostError(f"Repository must be 'owner/repo', got '{repository}'")
        self._repository = repository
        self._api_url = api_url.rstrip("/")
        self._max_retries = max_retries
        self._client = httpx.Client(
            base_url=self._api_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {self._token}",
                "X-GitHub-Api-Version": "2022-11-28",
            },
        )

    @property
    def repository(self) -> str:
        return self._repository

    # ------------------------------------------------------------------
    # API operations
    # ------------------------------------------------------------------

    def post_comment(self, issue_number: int, body: str) -> int:
        """Create a comment on an issue or pull request. Returns its id."""
        data = self._request(
            "POST",
            f"/repos/{self._repository}/issues/{issue_number}/comments",
            json={"body": body},
        )
        return int(data["id"])

    def merge_pull_request(
        self,
        number: int,
        strategy: str = "merge",
        *,
        auto: bool = False,
    ) -> MergeResult:
        """Merge a pull request, or enable auto-merge when ``auto``.

        Raises:
            MergeConflictError: HTTP 409 (head moved or conflicts).
            ChecksNotPassedError: HTTP 405 (not mergeable yet).
        """
        if auto:
            return self._enable_auto_merge(number, strategy)
        try:
            data = self._request(
                "PUT",
                f"/repos/{self._repository}/pulls/{number}/merge",
                json={"merge_method": strategy},
            )
        except httpx.HTTPStatusError as exc:
            message = _error_message(exc.response)
            if exc.response.status_code == 409:
                raise MergeConflictError(number, message) from exc
            if exc.response.status_code == 405:
                raise ChecksNotPassedError(number, message) from exc
            raise
        return MergeResult(
            number=number,
            merged=bool(data.get("merged")),
            sha=data.get("sha"),
            message=data.get("message", ""),
        )

    def get_pull_request(self, number: int) -> dict:
        """Fetch a pull request's REST representation."""
        return self._request("GET", f"/repos/{self._repository}/pulls/{number}")

    def _enable_auto_merge(self, number: int, strategy: str) -> MergeResult:
        node_id = self.get_pull_request(number)["node_id"]
        data = self._request(
            "POST",
            "/graphql",
            json={
                "query": _ENABLE_AUTO_MERGE,
                "variables": {"id": node_id, "method": strategy.upper()},
            },
        )
        errors = data.get("errors")
        if errors:
            message = "; ".join(e.get("message", "") for e in errors)
            if "clean status" in message or "protected branch" in message:
                raise ChecksNotPassedError(number, message)
            raise HostError(f"Enabling auto-merge for #{number} failed: {message}")
        return MergeResult(number=number, merged=False, message="auto-merge enabled")

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        """Send a request with retry on transient failures."""
        retryer = tenacity.Retrying(
            retry=tenacity.retry_if_exception(_is_retryable),
            wait=(
                tenacity.wait_exponential(multiplier=1, min=1, max=30)
                + tenacity.wait_random(0, 2)
            ),
            stop=tenacity.stop_after_attempt(self._max_retries),
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retryer(self._do_request, method, path, **kwargs)

    def _do_request(self, method: str, path: str, **kwargs: Any) -> dict:
        """Execute a single request (no retry)."""
        response = self._client.request(method, path, **kwargs)
        if response.status_code in _AUTH_ERROR_STATUS_CODES:
            raise HostAuthError(
                f"GitHub authentication failed: HTTP {response.status_code} - "
                f"{_error_message(response)}"
            )
        response.raise_for_status()
        if not response.content:
            return {}
        return response.json()

    def close(self) -> None:
        """Close the underlying httpx client."""
        self._client.close()

    def __enter__(self) -> GitHubClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def _error_message(response: httpx.Response) -> str:
    try:
        return str(response.json().get("message", response.text))
    except ValueError:
        return response.text
