"""Domain models for jobs and their execution results.

JobDefinition and ActionStep are static: they are built once at startup
and never mutated. JobRun tracks one execution of a job through the
state machine below; ExecutionResult and DispatchReport are the frozen
records it produces.

State machine::

    pending --> matched --> running --> succeeded
       |                       \\-----> failed
       \\------> skipped

Terminal states: skipped, succeeded, failed.
"""

from __future__ import annotations

import enum
import types
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from gatehouse.exceptions import InvalidTransitionError
from gatehouse.permissions import PermissionScope

if TYPE_CHECKING:
    from gatehouse.models.event import EventEnvelope
    from gatehouse.predicates import Predicate


@dataclass(frozen=True)
class ActionStep:
    """One step of a job: a named action plus its parameters.

    Attributes:
        action: Registry name of the action (e.g. ``"checkout"``).
        params: Parameters; string values may hold ``${{ ... }}`` references.
        name: Display name. Defaults to the action name.
        id: Optional id so later steps can read ``steps.<id>.<key>``.
        best_effort: A failure becomes a warning and the job continues.
        timeout: Seconds before the host call is abandoned. None uses the
            dispatcher default.
    """

    action: str
    params: Mapping[str, Any] = field(default_factory=dict)
    name: str = ""
    id: str | None = None
    best_effort: bool = False
    timeout: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", types.MappingProxyType(dict(self.params)))
        if not self.name:
            object.__setattr__(self, "name", self.action)

    @property
    def display_name(self) -> str:
        return self.name or self.action


@dataclass(frozen=True)
class JobDefinition:
    """A named predicate, its ordered steps, and the scope they run under."""

    name: str
    predicate: Predicate
    steps: tuple[ActionStep, ...] = ()
    permissions: PermissionScope = field(default_factory=PermissionScope)

    def __post_init__(self) -> None:
        from gatehouse.predicates import check_predicate

        if not self.name:
            raise ValueError("JobDefinition needs a name")
        check_predicate(self.predicate)
        object.__setattr__(self, "steps", tuple(self.steps))
        if not isinstance(self.permissions, PermissionScope):
            object.__setattr__(
                self, "permissions", PermissionScope.from_config(self.permissions)
            )


class JobState(str, enum.Enum):
    """States of a single job execution."""

    PENDING = "pending"
    MATCHED = "matched"
    SKIPPED = "skipped"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SKIPPED, JobState.SUCCEEDED, JobState.FAILED)


_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.PENDING: frozenset({JobState.MATCHED, JobState.SKIPPED}),
    JobState.MATCHED: frozenset({JobState.RUNNING, JobState.SKIPPED}),
    JobState.RUNNING: frozenset({JobState.SUCCEEDED, JobState.FAILED}),
    JobState.SKIPPED: frozenset(),
    JobState.SUCCEEDED: frozenset(),
    JobState.FAILED: frozenset(),
}


class JobStatus(str, enum.Enum):
    """Final outcome of a job for one envelope."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepStatus(str, enum.Enum):
    """Outcome of a single step."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    WARNING = "warning"  # best-effort step failed, job continued
    NOT_RUN = "not_run"  # abandoned after an earlier failure or shutdown


@dataclass(frozen=True)
class StepOutcome:
    """Record of one step's execution. Immutable."""

    name: str
    action: str
    status: StepStatus
    output: Mapping[str, Any] = field(default_factory=dict)
    error: str | None = None
    duration: float = 0.0


@dataclass(frozen=True)
class ExecutionResult:
    """Per-job outcome: succeeded, failed(reason) or skipped.

    ``steps`` lists every declared step in order, including the ones that
    never ran.
    """

    job_name: str
    status: JobStatus
    reason: str | None = None
    steps: tuple[StepOutcome, ...] = ()
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.status == JobStatus.FAILED

    @property
    def skipped(self) -> bool:
        return self.status == JobStatus.SKIPPED

    @property
    def warnings(self) -> list[StepOutcome]:
        return [s for s in self.steps if s.status == StepStatus.WARNING]

    def step(self, name: str) -> StepOutcome | None:
        """Find a step outcome by its display name."""
        for s in self.steps:
            if s.name == name:
                return s
        return None


@dataclass(frozen=True)
class DispatchReport:
    """Aggregated results for one envelope, in job registration order."""

    dispatch_id: str
    envelope: EventEnvelope
    results: tuple[ExecutionResult, ...] = ()
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def matched(self) -> list[ExecutionResult]:
        return [r for r in self.results if not r.skipped]

    @property
    def failed(self) -> list[ExecutionResult]:
        return [r for r in self.results if r.failed]

    @property
    def ok(self) -> bool:
        """True when no job failed."""
        return not self.failed

    def result_for(self, job_name: str) -> ExecutionResult | None:
        for r in self.results:
            if r.job_name == job_name:
                return r
        return None


class JobRun:
    """Mutable tracker for one job execution.

    Only the worker running the job touches its JobRun, so no locking.
    """

    def __init__(self, job: JobDefinition) -> None:
        self.job = job
        self.state = JobState.PENDING
        self.steps: list[StepOutcome] = []
        self.outputs: dict[str, dict[str, Any]] = {}
        self.reason: str | None = None
        self.started_at: datetime | None = None
        self.finished_at: datetime | None = None

    def advance(self, target: JobState) -> None:
        """Move to ``target``.

        Raises:
            InvalidTransitionError: If the edge is not in the state machine.
        """
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                self.job.name, self.state.value, target.value
            )
        if target == JobState.RUNNING:
            self.started_at = datetime.now()
        if target.is_terminal:
            self.finished_at = datetime.now()
        self.state = target

    def to_result(self) -> ExecutionResult:
        """Freeze a terminal run into an ExecutionResult."""
        status = {
            JobState.SUCCEEDED: JobStatus.SUCCEEDED,
            JobState.FAILED: JobStatus.FAILED,
            JobState.SKIPPED: JobStatus.SKIPPED,
        }.get(self.state)
        if status is None:
            raise InvalidTransitionError(self.job.name, self.state.value, "result")
        return ExecutionResult(
            job_name=self.job.name,
            status=status,
            reason=self.reason,
            steps=tuple(self.steps),
            started_at=self.started_at,
            finished_at=self.finished_at,
        )
