"""Action registry and built-in actions.

An action is a named capability a job step can invoke. Each one declares
the minimum PermissionScope it needs; the dispatcher refuses to call an
action whose requirement the job's scope does not cover. Apart from
``fetch_metadata``, the built-ins are thin adapters over the VCS host.

The registry is filled at startup and frozen by the Dispatcher, after
which it is read-only and shared between worker threads without locks.
"""

from __future__ import annotations

import logging
import re
import shlex
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from gatehouse.exceptions import ActionExecutionError, JobConfigError, UnknownActionError
from gatehouse.permissions import AccessLevel, PermissionScope
from gatehouse.predicates import MISSING, resolve_field

if TYPE_CHECKING:
    from gatehouse.models.event import EventEnvelope
    from gatehouse.models.job import JobDefinition
    from gatehouse.protocols import VCSHost

logger = logging.getLogger(__name__)


@dataclass
class ActionContext:
    """What an action handler can see while it runs.

    ``outputs`` maps step ids to the outputs of earlier steps in the same
    job. It belongs to a single job run. ``timeout`` is the current step's
    limit in seconds; handlers pass it on to host calls that accept one.
    """

    envelope: EventEnvelope
    job: JobDefinition
    host: VCSHost
    outputs: dict[str, dict[str, Any]] = field(default_factory=dict)
    timeout: float | None = None


ActionHandler = Callable[[ActionContext, Mapping[str, Any]], "Mapping[str, Any] | None"]


@dataclass(frozen=True)
class ActionSpec:
    """A registered action.

    Attributes:
        name: Registry key used by ``ActionStep.action``.
        handler: ``handler(ctx, params) -> outputs | None``.
        requires: Minimum scope the invoking job must hold.
        description: One-line summary for listings.
        calls_host: Whether the handler talks to the VCS host (and so runs
            under the step timeout).
        shell_params: Parameters interpreted by a shell. References
            substituted into them are shell-quoted.
    """

    name: str
    handler: ActionHandler
    requires: PermissionScope = field(default_factory=PermissionScope)
    description: str = ""
    calls_host: bool = True
    shell_params: frozenset[str] = frozenset()


class ActionRegistry:
    """Named, side-effecting operations invocable by jobs."""

    def __init__(self) -> None:
        self._actions: dict[str, ActionSpec] = {}
        self._frozen = False

    def register(
        self,
        name: str,
        handler: ActionHandler,
        *,
        requires: PermissionScope | Mapping[str, str] | None = None,
        description: str = "",
        calls_host: bool = True,
        shell_params: Iterable[str] = (),
    ) -> ActionSpec:
        """Register an action under ``name``.

        Raises:
            JobConfigError: If the registry is frozen or the name is taken.
        """
        if self._frozen:
            raise JobConfigError(
                f"Cannot register action '{name}': registry is frozen"
            )
        if name in self._actions:
            raise JobConfigError(f"Action already registered: {name}")
        spec = ActionSpec(
            name=name,
            handler=handler,
            requires=PermissionScope.from_config(requires) if requires else PermissionScope(),
            description=description,
            calls_host=calls_host,
            shell_params=frozenset(shell_params),
        )
        self._actions[name] = spec
        return spec

    def get(self, name: str) -> ActionSpec:
        """Look up an action.

        Raises:
            UnknownActionError: If no action is registered under ``name``.
        """
        try:
            return self._actions[name]
        except KeyError:
            raise UnknownActionError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._actions

    def names(self) -> list[str]:
        return sorted(self._actions)

    def freeze(self) -> None:
        """Make the registry read-only."""
        self._frozen = True

    @property
    def is_frozen(self) -> bool:
        return self._frozen


# ---------------------------------------------------------------------------
# Parameter rendering
# ---------------------------------------------------------------------------

_REFERENCE = re.compile(r"\$\{\{\s*([A-Za-z0-9_.\-\[\]]+)\s*\}\}")


def resolve_reference(ref: str, ctx: ActionContext) -> Any:
    """Resolve ``event.<path>``, ``steps.<id>.<key>`` or ``job.name``.

    Returns MISSING for anything that does not resolve.
    """
    head, _, rest = ref.partition(".")
    if head == "event":
        return resolve_field(ctx.envelope, rest) if rest else MISSING
    if head == "steps":
        step_id, _, key = rest.partition(".")
        value = ctx.outputs.get(step_id, {}).get(key, MISSING) if key else MISSING
        return MISSING if value is None else value
    if ref == "job.name":
        return ctx.job.name
    return MISSING


def render_value(value: Any, ctx: ActionContext, *, quote: bool = False) -> Any:
    """Substitute ``${{ ... }}`` references in a parameter value.

    A string that is exactly one reference keeps the referenced value's
    type (so ``${{ event.issue_number }}`` stays an int). Unresolved
    references render as the empty string. With ``quote``, every
    substituted value is shell-quoted, so event data such as an actor
    login or comment text reaches a shell as one literal word.
    """
    if isinstance(value, str):
        whole = _REFERENCE.fullmatch(value.strip())
        if whole and not quote:
            resolved = resolve_reference(whole.group(1), ctx)
            return "" if resolved is MISSING else resolved

        def _sub(m: re.Match[str]) -> str:
            resolved = resolve_reference(m.group(1), ctx)
            text = "" if resolved is MISSING else str(resolved)
            return shlex.quote(text) if quote else text

        return _REFERENCE.sub(_sub, value)
    if isinstance(value, Mapping):
        return {k: render_value(v, ctx, quote=quote) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [render_value(v, ctx, quote=quote) for v in value]
    return value


def render_params(
    params: Mapping[str, Any],
    ctx: ActionContext,
    *,
    shell_keys: Iterable[str] = (),
) -> dict[str, Any]:
    """Render every parameter; those named in ``shell_keys`` are shell-quoted."""
    shell_keys = frozenset(shell_keys)
    return {k: render_value(v, ctx, quote=k in shell_keys) for k, v in params.items()}


# ---------------------------------------------------------------------------
# Built-in actions
# ---------------------------------------------------------------------------


def _checkout(ctx: ActionContext, params: Mapping[str, Any]) -> dict[str, Any]:
    ref = params.get("ref") or "HEAD"
    fetch_depth = params.get("fetch_depth")
    writable = ctx.job.permissions.allows("contents", AccessLevel.WRITE)
    tree = ctx.host.checkout_ref(
        str(ref),
        writable=writable,
        fetch_depth=int(fetch_depth) if fetch_depth is not None else None,
        timeout=ctx.timeout,
    )
    return {"path": tree.path, "ref": tree.ref, "sha": tree.sha, "writable": tree.writable}


def _post_comment(ctx: ActionContext, params: Mapping[str, Any]) -> dict[str, Any]:
    issue_number = params.get("issue_number") or ctx.envelope.issue_number
    if not issue_number:
        raise ActionExecutionError("post_comment", "event has no issue to comment on")
    body = params.get("body")
    if not body:
        raise ActionExecutionError("post_comment", "missing 'body'")
    comment_id = ctx.host.post_comment(int(issue_number), str(body))
    return {"comment_id": comment_id}


def _run_command(ctx: ActionContext, params: Mapping[str, Any]) -> dict[str, Any]:
    cmd = params.get("cmd")
    if not cmd:
        raise ActionExecutionError("run_command", "missing 'cmd'")
    env = params.get("env")
    env = {str(k): str(v) for k, v in env.items()} if env else None
    result = ctx.host.run_command(str(cmd), env, timeout=ctx.timeout)
    if not result.ok:
        tail = (result.stderr or result.stdout or "").strip().splitlines()[-5:]
        raise ActionExecutionError(
            "run_command",
            f"exit code {result.exit_code}" + (": " + " | ".join(tail) if tail else ""),
        )
    return {"exit_code": result.exit_code, "stdout": result.stdout, "stderr": result.stderr}


MERGE_STRATEGIES = ("merge", "squash", "rebase")


def _merge_pull_request(ctx: ActionContext, params: Mapping[str, Any]) -> dict[str, Any]:
    number = params.get("number")
    if not number and ctx.envelope.pull_request is not None:
        number = ctx.envelope.pull_request.number
    if not number:
        raise ActionExecutionError("merge_pull_request", "event has no pull request")
    strategy = params.get("strategy", "merge")
    if strategy not in MERGE_STRATEGIES:
        raise ActionExecutionError(
            "merge_pull_request", f"unknown strategy '{strategy}'"
        )
    result = ctx.host.merge_pull_request(
        int(number), strategy, auto=bool(params.get("auto", False))
    )
    return {"merged": result.merged, "sha": result.sha, "message": result.message}


# Dependabot titles: "Bump lodash from 4.17.20 to 4.17.21",
# optionally prefixed ("build(deps): bump ...") and suffixed ("... in /web").
_DEPENDABOT_TITLE = re.compile(
    r"^(?:[\w\-]+(?:\([\w\-/]+\))?!?:\s*)?bump\s+(?P<name>\S+)\s+"
    r"from\s+(?P<prev>\S+)\s+to\s+(?P<new>\S+)(?:\s+in\s+(?P<dir>\S+))?",
    re.IGNORECASE,
)


def classify_update(previous: str, new: str) -> str:
    """Classify a version bump the way dependabot/fetch-metadata does."""
    def parts(v: str) -> list[str]:
        return re.split(r"[.\-+]", v.lstrip("vV"))

    old, cur = parts(previous), parts(new)
    for idx, label in enumerate(("major", "minor", "patch")):
        a = old[idx] if idx < len(old) else "0"
        b = cur[idx] if idx < len(cur) else "0"
        if a != b:
            return f"version-update:semver-{label}"
    return "version-update:semver-patch"


def _fetch_metadata(ctx: ActionContext, params: Mapping[str, Any]) -> dict[str, Any]:
    pr = ctx.envelope.pull_request
    title = params.get("title") or (pr.title if pr is not None else None)
    if not title:
        raise ActionExecutionError("fetch_metadata", "pull request has no title")
    m = _DEPENDABOT_TITLE.match(str(title).strip())
    if m is None:
        raise ActionExecutionError(
            "fetch_metadata", f"not a dependency update title: {title!r}"
        )
    return {
        "dependency_name": m.group("name"),
        "previous_version": m.group("prev"),
        "new_version": m.group("new"),
        "directory": m.group("dir") or "/",
        "update_type": classify_update(m.group("prev"), m.group("new")),
    }


def register_builtin_actions(registry: ActionRegistry) -> ActionRegistry:
    """Register checkout, post_comment, run_command, merge_pull_request and
    fetch_metadata on ``registry``."""
    registry.register(
        "checkout",
        _checkout,
        requires={"contents": "read"},
        description="Check out a ref (writable only with contents: write)",
    )
    registry.register(
        "post_comment",
        _post_comment,
        requires={"issues": "write"},
        description="Comment on the event's issue or pull request",
    )
    registry.register(
        "run_command",
        _run_command,
        requires={"contents": "read"},
        description="Run a shell command in the working tree",
        shell_params=("cmd",),
    )
    registry.register(
        "merge_pull_request",
        _merge_pull_request,
        requires={"contents": "write", "pull-requests": "write"},
        description="Merge or queue auto-merge for the event's pull request",
    )
    registry.register(
        "fetch_metadata",
        _fetch_metadata,
        requires={"pull-requests": "read"},
        description="Parse dependency update metadata from the PR title",
        calls_host=False,
    )
    return registry


def default_registry() -> ActionRegistry:
    """A fresh, unfrozen registry holding the built-in actions."""
    return register_builtin_actions(ActionRegistry())
