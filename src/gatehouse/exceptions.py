"""Gatehouse exception hierarchy.

All Gatehouse-specific exceptions inherit from GatehouseError.
"""

from __future__ import annotations


class GatehouseError(Exception):
    """Base exception for all Gatehouse errors."""


class MalformedEventError(GatehouseError):
    """Raised when a raw event payload cannot be turned into an envelope.

    The envelope is discarded; the error is surfaced to the caller.
    """

    def __init__(self, message: str, event_name: str | None = None) -> None:
        self.event_name = event_name
        if event_name:
            message = f"Malformed '{event_name}' event: {message}"
        super().__init__(message)


class PermissionDeniedError(GatehouseError):
    """Raised when an action needs more access than its job declares."""

    def __init__(
        self,
        job_name: str,
        action: str,
        missing: list[tuple[str, str, str]],
    ) -> None:
        self.job_name = job_name
        self.action = action
        self.missing = missing
        detail = ", ".join(
            f"{resource}: needs {needed}, has {granted}"
            for resource, needed, granted in missing
        )
        super().__init__(
            f"Job '{job_name}' may not run action '{action}' ({detail})"
        )


class ActionExecutionError(GatehouseError):
    """Raised when a host call behind an action fails."""

    def __init__(self, action: str, message: str) -> None:
        self.action = action
        super().__init__(f"Action '{action}' failed: {message}")


class ActionTimeoutError(ActionExecutionError):
    """Raised when an action does not return within its timeout.

    ``still_running`` is True when the host call could not be stopped and
    was abandoned while still in progress.
    """

    def __init__(self, action: str, timeout: float, *, still_running: bool = False) -> None:
        self.timeout = timeout
        self.still_running = still_running
        msg = f"timed out after {timeout:g}s"
        if still_running:
            msg += " (call still running, abandoned)"
        super().__init__(action, msg)


class MergeConflictError(ActionExecutionError):
    """Raised by a host when a pull request cannot merge cleanly."""

    def __init__(self, number: int, details: str = "") -> None:
        self.number = number
        msg = f"pull request #{number} has merge conflicts"
        if details:
            msg += f": {details}"
        super().__init__("merge_pull_request", msg)


class ChecksNotPassedError(ActionExecutionError):
    """Raised by a host when required status checks block a merge."""

    def __init__(self, number: int, details: str = "") -> None:
        self.number = number
        msg = f"pull request #{number} is not mergeable yet"
        if details:
            msg += f": {details}"
        super().__init__("merge_pull_request", msg)


class UnknownActionError(GatehouseError):
    """Raised when a step names an action the registry does not know."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown action: {name}")


class JobConfigError(GatehouseError):
    """Raised when job or workflow configuration is invalid."""


class InvalidTransitionError(GatehouseError):
    """Raised when a job run is moved along an illegal state edge."""

    def __init__(self, job_name: str, current: str, target: str) -> None:
        self.job_name = job_name
        self.current = current
        self.target = target
        super().__init__(
            f"Job '{job_name}' cannot move from {current} to {target}"
        )


class HostError(GatehouseError):
    """Raised when the VCS host cannot be reached or misbehaves."""


class HostAuthError(HostError):
    """Authentication with the VCS host failed (401/403)."""
