"""Domain models for inbound repository events.

EventEnvelope is the normalized, transport-independent representation
that predicates and actions see. Raw payload parsing lives in
gatehouse.events.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class EventKind(str, enum.Enum):
    """Repository event kinds the dispatcher understands."""

    COMMENT_CREATED = "comment_created"
    COMMENT_EDITED = "comment_edited"
    PULL_REQUEST_OPENED = "pull_request_opened"
    PULL_REQUEST_SYNCHRONIZED = "pull_request_synchronized"
    PULL_REQUEST_REOPENED = "pull_request_reopened"

    @property
    def is_comment(self) -> bool:
        return self in (EventKind.COMMENT_CREATED, EventKind.COMMENT_EDITED)


@dataclass(frozen=True)
class PullRequestInfo:
    """The pull request an event refers to.

    Comment events only carry what the issue payload exposes, so every
    field except ``number`` may be None.
    """

    number: int
    base_ref: str | None = None
    head_ref: str | None = None
    state: str | None = None
    title: str | None = None
    is_fork: bool | None = None
    base_repo: str | None = None
    head_repo: str | None = None


@dataclass(frozen=True)
class EventEnvelope:
    """A normalized repository event.

    Immutable: predicates may evaluate the same envelope any number of
    times and always see the same values.

    Attributes:
        kind: What happened.
        actor: Login of the identity that caused the event.
        comment_body: Comment text for comment events, else None.
        pull_request: Pull request details, if the event concerns one.
        issue_number: Issue or pull request number comments go to.
        repository: Full repository name (``owner/repo``).
        actor_verified: True only when the delivery was authenticated by
            the caller (e.g. a valid webhook signature or a trusted runner
            environment). Never derived from the payload itself.
        delivery_id: Transport-level delivery identifier, if any.
        event_name: Transport event name the envelope was parsed from
            (e.g. ``pull_request_target``), if known.
    """

    kind: EventKind
    actor: str
    comment_body: str | None = None
    pull_request: PullRequestInfo | None = None
    issue_number: int | None = None
    repository: str | None = None
    actor_verified: bool = False
    delivery_id: str | None = None
    event_name: str | None = None
