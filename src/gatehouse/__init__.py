"""Gatehouse: event-driven, permission-scoped automation for pull requests.

Gatehouse turns repository events into envelopes, matches them against
declarative jobs and runs the matching jobs' steps under the least
privilege each job declares.
"""

from gatehouse._version import __version__

# Core entry point
from gatehouse.dispatcher import Dispatcher

# Events
from gatehouse.events import load_event_file, parse_event, verify_signature
from gatehouse.models.event import EventEnvelope, EventKind, PullRequestInfo

# Predicates
from gatehouse.predicates import (
    ActorIn,
    Always,
    And,
    Contains,
    Equals,
    KindMatch,
    Not,
    Or,
    Predicate,
    Present,
    Verified,
    evaluate,
    predicate_from_config,
)

# Permissions
from gatehouse.permissions import AccessLevel, PermissionScope

# Jobs and results
from gatehouse.models.job import (
    ActionStep,
    DispatchReport,
    ExecutionResult,
    JobDefinition,
    JobState,
    JobStatus,
    StepOutcome,
    StepStatus,
)

# Actions
from gatehouse.actions import ActionContext, ActionRegistry, ActionSpec, default_registry

# Host protocol and value types
from gatehouse.protocols import CommandResult, MergeResult, RawEvent, VCSHost, WorkingTree

# Configuration
from gatehouse.config import Settings, Workflow, load_workflow, workflow_from_dict
from gatehouse.presets import secure_comment_workflow

# Exceptions
from gatehouse.exceptions import (
    ActionExecutionError,
    ActionTimeoutError,
    ChecksNotPassedError,
    GatehouseError,
    HostAuthError,
    HostError,
    InvalidTransitionError,
    JobConfigError,
    MalformedEventError,
    MergeConflictError,
    PermissionDeniedError,
    UnknownActionError,
)

__all__ = [
    "__version__",
    # Core
    "Dispatcher",
    # Events
    "EventEnvelope",
    "EventKind",
    "PullRequestInfo",
    "load_event_file",
    "parse_event",
    "verify_signature",
    # Predicates
    "ActorIn",
    "Always",
    "And",
    "Contains",
    "Equals",
    "KindMatch",
    "Not",
    "Or",
    "Predicate",
    "Present",
    "Verified",
    "evaluate",
    "predicate_from_config",
    # Permissions
    "AccessLevel",
    "PermissionScope",
    # Jobs
    "ActionStep",
    "DispatchReport",
    "ExecutionResult",
    "JobDefinition",
    "JobState",
    "JobStatus",
    "StepOutcome",
    "StepStatus",
    # Actions
    "ActionContext",
    "ActionRegistry",
    "ActionSpec",
    "default_registry",
    # Host
    "CommandResult",
    "MergeResult",
    "RawEvent",
    "VCSHost",
    "WorkingTree",
    # Configuration
    "Settings",
    "Workflow",
    "load_workflow",
    "workflow_from_dict",
    "secure_comment_workflow",
    # Exceptions
    "ActionExecutionError",
    "ActionTimeoutError",
    "ChecksNotPassedError",
    "GatehouseError",
    "HostAuthError",
    "HostError",
    "InvalidTransitionError",
    "JobConfigError",
    "MalformedEventError",
    "MergeConflictError",
    "PermissionDeniedError",
    "UnknownActionError",
]
