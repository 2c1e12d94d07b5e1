"""Permission scopes for jobs and actions.

A PermissionScope maps resources (``contents``, ``pull-requests``,
``issues``, ``deployments``, ...) to an AccessLevel. Resources a scope
does not mention are readable: the default scope is read-only on
everything, and only an explicit entry widens (``write``) or lowers
(``none``) a resource.

Scopes are immutable. A job's scope is fixed when the job is defined and
the dispatcher only ever compares scopes, it never builds a wider one.
"""

from __future__ import annotations

import enum
import types
from collections.abc import Iterator, Mapping
from typing import Any

from gatehouse.exceptions import JobConfigError


class AccessLevel(str, enum.Enum):
    """Access to a resource, ordered ``none < read < write``."""

    NONE = "none"
    READ = "read"
    WRITE = "write"

    @property
    def rank(self) -> int:
        return _RANK[self]

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank >= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank < other.rank


_RANK: dict[AccessLevel, int] = {
    AccessLevel.NONE: 0,
    AccessLevel.READ: 1,
    AccessLevel.WRITE: 2,
}

DEFAULT_LEVEL = AccessLevel.READ


class PermissionScope(Mapping[str, AccessLevel]):
    """Immutable resource -> AccessLevel mapping.

    Behaves as a read-only Mapping over the explicitly declared entries;
    ``level()`` also answers for undeclared resources (``read``).

    Example::

        scope = PermissionScope({"contents": "write", "pull-requests": "write"})
        scope.level("contents")      # AccessLevel.WRITE
        scope.level("deployments")   # AccessLevel.READ (default)
        scope.covers(PermissionScope({"contents": "read"}))  # True
    """

    __slots__ = ("_levels", "_all")

    def __init__(
        self,
        levels: Mapping[str, AccessLevel | str] | None = None,
        *,
        all_resources: AccessLevel | str | None = None,
    ) -> None:
        parsed: dict[str, AccessLevel] = {}
        for resource, level in (levels or {}).items():
            parsed[_normalize_resource(resource)] = _parse_level(resource, level)
        self._levels = types.MappingProxyType(parsed)
        self._all = _parse_level("*", all_resources) if all_resources else None

    # Mapping protocol ---------------------------------------------------

    def __getitem__(self, resource: str) -> AccessLevel:
        return self._levels[_normalize_resource(resource)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._levels)

    def __len__(self) -> int:
        return len(self._levels)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PermissionScope):
            return NotImplemented
        return dict(self._levels) == dict(other._levels) and self._all == other._all

    def __hash__(self) -> int:
        return hash((tuple(sorted(self._levels.items())), self._all))

    def __repr__(self) -> str:
        items = ", ".join(f"{k}: {v.value}" for k, v in sorted(self._levels.items()))
        if self._all is not None:
            items = f"*: {self._all.value}" + (f", {items}" if items else "")
        return f"PermissionScope({{{items}}})"

    # Queries ------------------------------------------------------------

    def level(self, resource: str) -> AccessLevel:
        """Effective access to ``resource``."""
        explicit = self._levels.get(_normalize_resource(resource))
        if explicit is not None:
            return explicit
        return self._all if self._all is not None else DEFAULT_LEVEL

    def allows(self, resource: str, level: AccessLevel | str) -> bool:
        """Whether this scope grants at least ``level`` on ``resource``."""
        return self.level(resource) >= _parse_level(resource, level)

    def missing(self, required: PermissionScope) -> list[tuple[str, str, str]]:
        """List ``(resource, needed, granted)`` for every unmet requirement."""
        gaps: list[tuple[str, str, str]] = []
        for resource, needed in sorted(required.items()):
            granted = self.level(resource)
            if granted < needed:
                gaps.append((resource, needed.value, granted.value))
        return gaps

    def covers(self, required: PermissionScope) -> bool:
        """Whether every declared requirement in ``required`` is granted."""
        return not self.missing(required)

    def merged(self, overrides: PermissionScope | Mapping[str, Any]) -> PermissionScope:
        """Return a new scope with ``overrides`` replacing matching resources."""
        if not isinstance(overrides, PermissionScope):
            overrides = PermissionScope(overrides)
        combined: dict[str, AccessLevel] = dict(self._levels)
        combined.update(overrides._levels)
        all_level = overrides._all if overrides._all is not None else self._all
        return PermissionScope(combined, all_resources=all_level)

    def to_dict(self) -> dict[str, str]:
        """Plain ``{resource: level}`` dict of the declared entries."""
        out = {k: v.value for k, v in sorted(self._levels.items())}
        if self._all is not None:
            out = {"*": self._all.value, **out}
        return out

    # Constructors -------------------------------------------------------

    @classmethod
    def read_all(cls) -> PermissionScope:
        return cls(all_resources=AccessLevel.READ)

    @classmethod
    def write_all(cls) -> PermissionScope:
        return cls(all_resources=AccessLevel.WRITE)

    @classmethod
    def from_config(cls, value: Any) -> PermissionScope:
        """Parse a configuration value.

        Accepts ``None`` (default scope), ``"read-all"``, ``"write-all"``,
        or a ``{resource: level}`` mapping.

        Raises:
            JobConfigError: On an unknown shorthand or level.
        """
        if value is None:
            return cls()
        if isinstance(value, PermissionScope):
            return value
        if value == "read-all":
            return cls.read_all()
        if value == "write-all":
            return cls.write_all()
        if isinstance(value, Mapping):
            return cls(value)
        raise JobConfigError(f"Invalid permissions block: {value!r}")


def _normalize_resource(resource: str) -> str:
    return resource.strip().lower().replace("_", "-")


def _parse_level(resource: str, level: AccessLevel | str) -> AccessLevel:
    if isinstance(level, AccessLevel):
        return level
    try:
        return AccessLevel(str(level).strip().lower())
    except ValueError:
        raise JobConfigError(
            f"Invalid access level {level!r} for '{resource}' "
            f"(expected none, read or write)"
        ) from None
