"""Raw event payload parsing.

Turns a transport payload (the JSON body GitHub delivers for
``issue_comment`` and ``pull_request_target`` events) into an
EventEnvelope. The raw shapes are validated with Pydantic; anything that
does not fit raises MalformedEventError and no envelope is produced.

Trust is never inferred from the payload: the actor comes from the
caller's delivery context when given, and ``actor_verified`` is set only
when the caller vouches for the delivery.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from gatehouse.exceptions import MalformedEventError
from gatehouse.models.event import EventEnvelope, EventKind, PullRequestInfo

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Raw payload schemas (only the fields the envelope needs)
# ---------------------------------------------------------------------------


class _User(BaseModel):
    login: str


class _Repo(BaseModel):
    full_name: str | None = None


class _Branch(BaseModel):
    ref: str | None = None
    repo: _Repo | None = None


class _PullRequest(BaseModel):
    number: int
    state: str | None = None
    title: str | None = None
    base: _Branch | None = None
    head: _Branch | None = None


class _IssuePullRequestLink(BaseModel):
    """``issue.pull_request`` marker; present only for PR comments."""

    url: str | None = None
    base: _Branch | None = None


class _Issue(BaseModel):
    number: int
    state: str | None = None
    title: str | None = None
    pull_request: _IssuePullRequestLink | None = None


class _Comment(BaseModel):
    body: str | None = None
    user: _User | None = None


class IssueCommentPayload(BaseModel):
    """``issue_comment`` webhook body."""

    action: str
    issue: _Issue
    comment: _Comment
    sender: _User | None = None
    repository: _Repo | None = None


class PullRequestPayload(BaseModel):
    """``pull_request`` / ``pull_request_target`` webhook body."""

    action: str
    pull_request: _PullRequest
    sender: _User | None = None
    repository: _Repo | None = None


_COMMENT_ACTIONS: dict[str, EventKind] = {
    "created": EventKind.COMMENT_CREATED,
    "edited": EventKind.COMMENT_EDITED,
}

_PULL_REQUEST_ACTIONS: dict[str, EventKind] = {
    "opened": EventKind.PULL_REQUEST_OPENED,
    "synchronize": EventKind.PULL_REQUEST_SYNCHRONIZED,
    "reopened": EventKind.PULL_REQUEST_REOPENED,
}

PULL_REQUEST_EVENTS = frozenset({"pull_request", "pull_request_target"})
COMMENT_EVENTS = frozenset({"issue_comment"})


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_event(
    event_name: str,
    payload: Any,
    *,
    actor: str | None = None,
    verified: bool = False,
    delivery_id: str | None = None,
) -> EventEnvelope:
    """Build an EventEnvelope from a raw event payload.

    Args:
        event_name: Transport discriminator, e.g. ``"issue_comment"`` or
            ``"pull_request_target"``.
        payload: Decoded JSON body.
        actor: Identity from the delivery context (e.g. ``GITHUB_ACTOR``).
            Falls back to ``sender.login`` when omitted.
        verified: Whether the caller authenticated the delivery.
        delivery_id: Optional transport delivery identifier.

    Returns:
        The normalized, immutable envelope.

    Raises:
        MalformedEventError: If the event name or action is unknown, or
            the payload does not match the expected shape.
    """
    if not event_name:
        raise MalformedEventError("missing event name")
    if not isinstance(payload, dict):
        raise MalformedEventError(
            f"payload must be a JSON object, got {type(payload).__name__}",
            event_name,
        )

    if event_name in COMMENT_EVENTS:
        envelope = _from_issue_comment(event_name, payload, actor, verified)
    elif event_name in PULL_REQUEST_EVENTS:
        envelope = _from_pull_request(event_name, payload, actor, verified)
    else:
        raise MalformedEventError(f"unsupported event '{event_name}'")

    envelope = replace(envelope, event_name=event_name, delivery_id=delivery_id)

    logger.debug(
        "Parsed %s event (kind=%s, actor=%s, verified=%s)",
        event_name,
        envelope.kind.value,
        envelope.actor,
        envelope.actor_verified,
    )
    return envelope


def load_event_file(
    path: str | Path,
    event_name: str,
    **kwargs: Any,
) -> EventEnvelope:
    """Read a JSON event payload from disk and parse it.

    Follows the ``GITHUB_EVENT_PATH`` convention of the Actions runner.
    Extra keyword arguments are passed to parse_event().
    """
    try:
        with open(path, encoding="utf-8") as f:
            payload = json.load(f)
    except json.JSONDecodeError as exc:
        raise MalformedEventError(f"invalid JSON in {path}: {exc}", event_name) from exc
    return parse_event(event_name, payload, **kwargs)


def verify_signature(
    secret: str | bytes,
    body: bytes,
    signature_header: str | None,
) -> bool:
    """Check a webhook ``X-Hub-Signature-256`` header against the body.

    Returns False for a missing or malformed header rather than raising.
    """
    if not signature_header or not signature_header.startswith("sha256="):
        return False
    key = secret.encode("utf-8") if isinstance(secret, str) else secret
    expected = hmac.new(key, body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature_header[len("sha256="):])


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def _validate(model: type[BaseModel], event_name: str, payload: dict) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise MalformedEventError(
            f"{exc.error_count()} validation error(s): {exc.errors()[0]['msg']} "
            f"at {'.'.join(str(p) for p in exc.errors()[0]['loc'])}",
            event_name,
        ) from exc


def _action_kind(
    event_name: str,
    payload: dict,
    table: dict[str, EventKind],
) -> EventKind:
    action = payload.get("action")
    if not isinstance(action, str):
        raise MalformedEventError("missing 'action'", event_name)
    kind = table.get(action)
    if kind is None:
        raise MalformedEventError(f"unsupported action '{action}'", event_name)
    return kind


def _resolve_actor(
    event_name: str,
    actor: str | None,
    *candidates: _User | None,
) -> str:
    if actor:
        return actor
    for user in candidates:
        if user is not None and user.login:
            return user.login
    raise MalformedEventError("no actor in delivery context or payload", event_name)


def _from_issue_comment(
    event_name: str,
    payload: dict,
    actor: str | None,
    verified: bool,
) -> EventEnvelope:
    kind = _action_kind(event_name, payload, _COMMENT_ACTIONS)
    raw: IssueCommentPayload = _validate(IssueCommentPayload, event_name, payload)

    pull_request = None
    link = raw.issue.pull_request
    if link is not None:
        pull_request = PullRequestInfo(
            number=raw.issue.number,
            base_ref=link.base.ref if link.base else None,
            state=raw.issue.state,
            title=raw.issue.title,
        )

    return EventEnvelope(
        kind=kind,
        actor=_resolve_actor(event_name, actor, raw.sender, raw.comment.user),
        comment_body=raw.comment.body or "",
        pull_request=pull_request,
        issue_number=raw.issue.number,
        repository=raw.repository.full_name if raw.repository else None,
        actor_verified=verified,
    )


def _from_pull_request(
    event_name: str,
    payload: dict,
    actor: str | None,
    verified: bool,
) -> EventEnvelope:
    kind = _action_kind(event_name, payload, _PULL_REQUEST_ACTIONS)
    raw: PullRequestPayload = _validate(PullRequestPayload, event_name, payload)
    pr = raw.pull_request

    base_repo = pr.base.repo.full_name if pr.base and pr.base.repo else None
    head_repo = pr.head.repo.full_name if pr.head and pr.head.repo else None
    is_fork = None
    if base_repo is not None and head_repo is not None:
        is_fork = base_repo != head_repo

    return EventEnvelope(
        kind=kind,
        actor=_resolve_actor(event_name, actor, raw.sender),
        pull_request=PullRequestInfo(
            number=pr.number,
            base_ref=pr.base.ref if pr.base else None,
            head_ref=pr.head.ref if pr.head else None,
            state=pr.state,
            title=pr.title,
            is_fork=is_fork,
            base_repo=base_repo,
            head_repo=head_repo,
        ),
        issue_number=pr.number,
        repository=raw.repository.full_name if raw.repository else base_repo,
        actor_verified=verified,
    )
