"""Predicates over EventEnvelopes and their evaluator.

A predicate is a small immutable value (KindMatch, Contains, Equals,
ActorIn, Present, Verified, And, Or, Not, Always) interpreted by
``evaluate()``. Predicates are pure and total: a reference to a field the
envelope does not carry evaluates to False, never raises.

Predicates compose with ``&``, ``|`` and ``~``::

    deploy = (
        KindMatch(EventKind.COMMENT_CREATED)
        & Present("pull_request")
        & Contains("comment_body", "/deploy-dev")
    )
    evaluate(deploy, envelope)

Configuration files describe predicates as nested mappings; see
``predicate_from_config()``.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from gatehouse.exceptions import JobConfigError
from gatehouse.models.event import EventEnvelope, EventKind

logger = logging.getLogger(__name__)


class _Missing:
    """Sentinel for a field path that does not resolve."""

    def __repr__(self) -> str:
        return "<missing>"


MISSING: Any = _Missing()


def resolve_field(envelope: EventEnvelope, path: str) -> Any:
    """Look up a dotted field path on an envelope.

    Returns MISSING when any segment is absent, None, or private.
    Enum values resolve to their string value.
    """
    value: Any = envelope
    for part in path.split("."):
        if not part or part.startswith("_") or value is None:
            return MISSING
        value = getattr(value, part, MISSING)
        if value is MISSING:
            return MISSING
    if value is None:
        return MISSING
    if isinstance(value, enum.Enum):
        return value.value
    return value


# ---------------------------------------------------------------------------
# Predicate values
# ---------------------------------------------------------------------------


class Predicate:
    """Base class for predicate values. Supports ``&``, ``|`` and ``~``."""

    def __and__(self, other: Predicate) -> And:
        return And(self, other)

    def __or__(self, other: Predicate) -> Or:
        return Or(self, other)

    def __invert__(self) -> Not:
        return Not(self)


@dataclass(frozen=True)
class Always(Predicate):
    """Matches every envelope."""

    def __str__(self) -> str:
        return "always"


@dataclass(frozen=True, init=False)
class KindMatch(Predicate):
    """Matches envelopes whose kind is one of ``kinds``."""

    kinds: frozenset[EventKind]

    def __init__(self, *kinds: EventKind | str) -> None:
        object.__setattr__(self, "kinds", frozenset(EventKind(k) for k in kinds))

    def __str__(self) -> str:
        return "kind in [" + ", ".join(sorted(k.value for k in self.kinds)) + "]"


@dataclass(frozen=True)
class Contains(Predicate):
    """Matches when a string field contains ``substring``."""

    field: str
    substring: str

    def __str__(self) -> str:
        return f"{self.field} contains {self.substring!r}"


@dataclass(frozen=True)
class Equals(Predicate):
    """Matches when a field equals ``value``."""

    field: str
    value: Any

    def __str__(self) -> str:
        return f"{self.field} == {self.value!r}"


@dataclass(frozen=True, init=False)
class ActorIn(Predicate):
    """Matches when the envelope actor is one of ``actors``.

    A single actor gives plain equality.
    """

    actors: frozenset[str]

    def __init__(self, *actors: str) -> None:
        object.__setattr__(self, "actors", frozenset(actors))

    def __str__(self) -> str:
        return "actor in [" + ", ".join(sorted(self.actors)) + "]"


@dataclass(frozen=True)
class Present(Predicate):
    """Matches when a field is present and truthy."""

    field: str

    def __str__(self) -> str:
        return f"{self.field} present"


@dataclass(frozen=True)
class Verified(Predicate):
    """Matches when the caller authenticated the event delivery."""

    def __str__(self) -> str:
        return "actor verified"


@dataclass(frozen=True, init=False)
class And(Predicate):
    """All sub-predicates match. Evaluated left to right, short-circuits."""

    predicates: tuple[Predicate, ...]

    def __init__(self, *predicates: Predicate) -> None:
        object.__setattr__(self, "predicates", _flatten(And, predicates))

    def __str__(self) -> str:
        return "(" + " and ".join(str(p) for p in self.predicates) + ")"


@dataclass(frozen=True, init=False)
class Or(Predicate):
    """Any sub-predicate matches. Evaluated left to right, short-circuits."""

    predicates: tuple[Predicate, ...]

    def __init__(self, *predicates: Predicate) -> None:
        object.__setattr__(self, "predicates", _flatten(Or, predicates))

    def __str__(self) -> str:
        return "(" + " or ".join(str(p) for p in self.predicates) + ")"


@dataclass(frozen=True)
class Not(Predicate):
    """Negates a predicate."""

    predicate: Predicate

    def __str__(self) -> str:
        return f"not {self.predicate}"


def _flatten(kind: type, predicates: Iterable[Predicate]) -> tuple[Predicate, ...]:
    out: list[Predicate] = []
    for p in predicates:
        if not isinstance(p, Predicate):
            raise TypeError(f"Expected a Predicate, got {type(p).__name__}")
        if type(p) is kind:
            out.extend(p.predicates)  # type: ignore[attr-defined]
        else:
            out.append(p)
    return tuple(out)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def _eval_always(p: Always, env: EventEnvelope) -> bool:
    return True


def _eval_kind(p: KindMatch, env: EventEnvelope) -> bool:
    return env.kind in p.kinds


def _eval_contains(p: Contains, env: EventEnvelope) -> bool:
    value = resolve_field(env, p.field)
    return isinstance(value, str) and p.substring in value


def _eval_equals(p: Equals, env: EventEnvelope) -> bool:
    value = resolve_field(env, p.field)
    if value is MISSING:
        return False
    expected = p.value.value if isinstance(p.value, enum.Enum) else p.value
    return type(value) is type(expected) and value == expected


def _eval_actor(p: ActorIn, env: EventEnvelope) -> bool:
    return env.actor in p.actors


def _eval_present(p: Present, env: EventEnvelope) -> bool:
    value = resolve_field(env, p.field)
    return value is not MISSING and bool(value)


def _eval_verified(p: Verified, env: EventEnvelope) -> bool:
    return env.actor_verified


_LEAF_EVALUATORS: dict[type, Callable[[Any, EventEnvelope], bool]] = {
    Always: _eval_always,
    KindMatch: _eval_kind,
    Contains: _eval_contains,
    Equals: _eval_equals,
    ActorIn: _eval_actor,
    Present: _eval_present,
    Verified: _eval_verified,
}


def evaluate(predicate: Predicate, envelope: EventEnvelope) -> bool:
    """Evaluate ``predicate`` against ``envelope``.

    And/Or evaluate their operands left to right and stop as soon as the
    result is decided.

    Raises:
        TypeError: If ``predicate`` is not a known predicate type. This is
            a programming error, caught when jobs are constructed.
    """
    if isinstance(predicate, And):
        return all(evaluate(p, envelope) for p in predicate.predicates)
    if isinstance(predicate, Or):
        return any(evaluate(p, envelope) for p in predicate.predicates)
    if isinstance(predicate, Not):
        return not evaluate(predicate.predicate, envelope)
    fn = _LEAF_EVALUATORS.get(type(predicate))
    if fn is None:
        raise TypeError(f"Unknown predicate type: {type(predicate).__name__}")
    return fn(predicate, envelope)


def check_predicate(predicate: Any) -> None:
    """Raise TypeError unless ``predicate`` is a well-formed predicate tree."""
    if isinstance(predicate, (And, Or)):
        for p in predicate.predicates:
            check_predicate(p)
    elif isinstance(predicate, Not):
        check_predicate(predicate.predicate)
    elif type(predicate) not in _LEAF_EVALUATORS:
        raise TypeError(f"Unknown predicate type: {type(predicate).__name__}")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def predicate_from_config(spec: Any) -> Predicate:
    """Build a predicate from its configuration-file form.

    Accepted forms (each a single-key mapping, or a list meaning "all")::

        {"all": [...]}            {"any": [...]}            {"not": {...}}
        {"kind": "comment_created"} or {"kind": [...]}
        {"contains": {"field": "comment_body", "value": "/deploy"}}
        {"equals": {"field": "pull_request.state", "value": "open"}}
        {"actor": "dependabot[bot]"} or {"actor": [...]}
        {"present": "pull_request"}
        {"verified": true}
        {"always": true}

    Raises:
        JobConfigError: On any unknown key or malformed operand.
    """
    if spec is None or spec is True:
        return Always()
    if isinstance(spec, list):
        return And(*(predicate_from_config(s) for s in spec)) if spec else Always()
    if not isinstance(spec, Mapping) or len(spec) != 1:
        raise JobConfigError(
            f"Predicate must be a single-key mapping or a list, got {spec!r}"
        )

    (key, operand), = spec.items()
    try:
        if key == "all":
            return And(*(predicate_from_config(s) for s in _as_list(operand)))
        if key == "any":
            return Or(*(predicate_from_config(s) for s in _as_list(operand)))
        if key == "not":
            return Not(predicate_from_config(operand))
        if key == "kind":
            return KindMatch(*_as_list(operand))
        if key == "contains":
            return Contains(_str(operand, "field"), _str(operand, "value"))
        if key == "equals":
            if not isinstance(operand, Mapping) or "value" not in operand:
                raise JobConfigError("'equals' needs 'field' and 'value'")
            return Equals(_str(operand, "field"), operand["value"])
        if key == "actor":
            actors = _as_list(operand)
            if not actors or not all(isinstance(a, str) for a in actors):
                raise JobConfigError("'actor' needs one or more login strings")
            return ActorIn(*actors)
        if key == "present":
            if not isinstance(operand, str):
                raise JobConfigError("'present' needs a field path")
            return Present(operand)
        if key == "verified":
            return Verified() if operand else Not(Verified())
        if key == "always":
            return Always() if operand else Not(Always())
    except ValueError as exc:
        # EventKind(...) on an unknown kind name
        raise JobConfigError(f"Invalid '{key}' predicate: {exc}") from exc
    raise JobConfigError(f"Unknown predicate '{key}'")


def _as_list(value: Any) -> list:
    return list(value) if isinstance(value, (list, tuple)) else [value]


def _str(operand: Any, key: str) -> str:
    if not isinstance(operand, Mapping) or not isinstance(operand.get(key), str):
        raise JobConfigError(f"Predicate operand needs a string '{key}'")
    return operand[key]
