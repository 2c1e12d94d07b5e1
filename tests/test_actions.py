"""Tests for the action registry, parameter rendering and built-in actions."""

from __future__ import annotations

import re

import pytest

from gatehouse.actions import (
    ActionContext,
    ActionRegistry,
    classify_update,
    default_registry,
    render_params,
    render_value,
    resolve_reference,
)
from gatehouse.exceptions import ActionExecutionError, JobConfigError, UnknownActionError
from gatehouse.models.event import EventEnvelope, EventKind
from gatehouse.models.job import ActionStep, JobDefinition
from gatehouse.permissions import AccessLevel, PermissionScope
from gatehouse.predicates import MISSING, Always
from gatehouse.protocols import CommandResult


def _ctx(envelope, host, *, permissions=None, outputs=None) -> ActionContext:
    job = JobDefinition(
        name="job",
        predicate=Always(),
        permissions=permissions or PermissionScope({"contents": "read"}),
    )
    return ActionContext(envelope=envelope, job=job, host=host, outputs=outputs or {})


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    def test_builtins(self):
        registry = default_registry()
        assert registry.names() == [
            "checkout",
            "fetch_metadata",
            "merge_pull_request",
            "post_comment",
            "run_command",
        ]

    @pytest.mark.parametrize(
        "name,resource,level",
        [
            ("checkout", "contents", AccessLevel.READ),
            ("post_comment", "issues", AccessLevel.WRITE),
            ("run_command", "contents", AccessLevel.READ),
            ("merge_pull_request", "contents", AccessLevel.WRITE),
            ("merge_pull_request", "pull-requests", AccessLevel.WRITE),
            ("fetch_metadata", "pull-requests", AccessLevel.READ),
        ],
    )
    def test_builtin_requirements(self, name, resource, level):
        assert default_registry().get(name).requires[resource] == level

    def test_fetch_metadata_does_not_call_host(self):
        assert default_registry().get("fetch_metadata").calls_host is False
        assert default_registry().get("checkout").calls_host is True

    def test_register_custom(self):
        registry = ActionRegistry()
        spec = registry.register(
            "label", lambda ctx, params: None, requires={"issues": "write"}, description="Add a label"
        )
        assert "label" in registry
        assert registry.get("label") is spec
        assert spec.requires.level("issues") == AccessLevel.WRITE

    def test_register_without_requirements(self):
        spec = ActionRegistry().register("noop", lambda ctx, params: None)
        assert len(spec.requires) == 0

    def test_duplicate_name(self):
        registry = default_registry()
        with pytest.raises(JobConfigError, match="already registered"):
            registry.register("checkout", lambda ctx, params: None)

    def test_frozen(self):
        registry = default_registry()
        registry.freeze()
        assert registry.is_frozen
        with pytest.raises(JobConfigError, match="frozen"):
            registry.register("late", lambda ctx, params: None)

    def test_unknown(self):
        with pytest.raises(UnknownActionError, match="Unknown action: deploy"):
            default_registry().get("deploy")


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


class TestRendering:
    def test_event_reference(self, comment_envelope, host):
        ctx = _ctx(comment_envelope, host)
        assert render_value("${{ event.pull_request.base_ref }}", ctx) == "main"

    def test_whole_reference_keeps_type(self, comment_envelope, host):
        ctx = _ctx(comment_envelope, host)
        assert render_value("${{ event.issue_number }}", ctx) == 42

    def test_interpolation(self, comment_envelope, host):
        ctx = _ctx(comment_envelope, host)
        assert (
            render_value("refs/pull/${{ event.pull_request.number }}/head", ctx)
            == "refs/pull/42/head"
        )

    def test_step_outputs(self, comment_envelope, host):
        ctx = _ctx(comment_envelope, host, outputs={"metadata": {"update_type": "version-update:semver-patch"}})
        assert render_value("type=${{steps.metadata.update_type}}", ctx) == "type=version-update:semver-patch"

    def test_job_name(self, comment_envelope, host):
        assert render_value("${{ job.name }}", _ctx(comment_envelope, host)) == "job"

    def test_missing_renders_empty(self, comment_envelope, host):
        ctx = _ctx(comment_envelope, host)
        assert render_value("${{ event.pull_request.head_ref }}", ctx) == ""
        assert render_value("x${{ steps.nope.key }}y", ctx) == "xy"
        assert render_value("${{ secrets.TOKEN }}", ctx) == ""

    def test_resolve_reference_missing(self, comment_envelope, host):
        ctx = _ctx(comment_envelope, host)
        assert resolve_reference("event", ctx) is MISSING
        assert resolve_reference("steps.metadata", ctx) is MISSING

    def test_nested_containers(self, comment_envelope, host):
        ctx = _ctx(comment_envelope, host)
        params = {
            "env": {"PR": "${{ event.pull_request.number }}"},
            "args": ["${{ event.actor }}", 3],
            "flag": True,
        }
        assert render_params(params, ctx) == {
            "env": {"PR": 42},
            "args": ["octocat", 3],
            "flag": True,
        }

    def test_shell_quoting(self, host):
        env = EventEnvelope(kind=EventKind.COMMENT_CREATED, actor="it's; rm -rf /", comment_body="$(id)")
        ctx = _ctx(env, host)
        assert render_value("echo ${{ event.actor }}", ctx, quote=True) == "echo 'it'\"'\"'s; rm -rf /'"
        assert render_value("${{ event.comment_body }}", ctx, quote=True) == "'$(id)'"
        assert render_value("${{ event.issue_number }}", ctx, quote=True) == "''"

    def test_only_shell_keys_are_quoted(self, comment_envelope, host):
        ctx = _ctx(comment_envelope, host)
        params = {"cmd": "deploy ${{ event.actor }}", "env": {"WHO": "${{ event.actor }}"}}
        assert render_params(params, ctx, shell_keys={"cmd"}) == {
            "cmd": "deploy octocat",
            "env": {"WHO": "octocat"},
        }

    def test_run_command_declares_cmd_as_shell(self):
        assert default_registry().get("run_command").shell_params == frozenset({"cmd"})
        assert default_registry().get("post_comment").shell_params == frozenset()


# ---------------------------------------------------------------------------
# Built-in actions
# ---------------------------------------------------------------------------


def _call(name, ctx, **params):
    return default_registry().get(name).handler(ctx, params)


class TestCheckout:
    def test_read_only_by_default(self, comment_envelope, host):
        out = _call("checkout", _ctx(comment_envelope, host), ref="main")
        assert host.calls_to("checkout_ref") == [{"ref": "main", "writable": False, "fetch_depth": None}]
        assert out["writable"] is False
        assert out["sha"] == "0123456789abcdef"

    def test_writable_with_contents_write(self, comment_envelope, host):
        ctx = _ctx(comment_envelope, host, permissions=PermissionScope({"contents": "write"}))
        _call("checkout", ctx, ref="main", fetch_depth=0)
        assert host.calls_to("checkout_ref") == [{"ref": "main", "writable": True, "fetch_depth": 0}]

    def test_empty_ref_means_head(self, comment_envelope, host):
        _call("checkout", _ctx(comment_envelope, host), ref="")
        assert host.calls_to("checkout_ref")[0]["ref"] == "HEAD"


class TestPostComment:
    def test_comments_on_event_issue(self, comment_envelope, host):
        out = _call("post_comment", _ctx(comment_envelope, host), body="hello")
        assert host.calls_to("post_comment") == [{"issue_number": 42, "body": "hello"}]
        assert out == {"comment_id": 1001}

    def test_explicit_issue_number(self, comment_envelope, host):
        _call("post_comment", _ctx(comment_envelope, host), body="hi", issue_number=5)
        assert host.calls_to("post_comment")[0]["issue_number"] == 5

    def test_missing_body(self, comment_envelope, host):
        with pytest.raises(ActionExecutionError, match="missing 'body'"):
            _call("post_comment", _ctx(comment_envelope, host))

    def test_no_issue(self, host):
        env = EventEnvelope(kind=EventKind.COMMENT_CREATED, actor="octocat", comment_body="x")
        with pytest.raises(ActionExecutionError, match="no issue"):
            _call("post_comment", _ctx(env, host), body="hi")


class TestRunCommand:
    def test_success(self, comment_envelope, host):
        out = _call("run_command", _ctx(comment_envelope, host), cmd="npm test", env={"CI": 1})
        assert host.calls_to("run_command") == [{"cmd": "npm test", "env": {"CI": "1"}}]
        assert out["exit_code"] == 0

    def test_non_zero_exit(self, comment_envelope, host):
        host.command_results["npm test"] = CommandResult(1, stdout="", stderr="line1\n3 tests failed\n")
        with pytest.raises(ActionExecutionError, match=re.escape("exit code 1: line1 | 3 tests failed")):
            _call("run_command", _ctx(comment_envelope, host), cmd="npm test")

    def test_missing_cmd(self, comment_envelope, host):
        with pytest.raises(ActionExecutionError, match="missing 'cmd'"):
            _call("run_command", _ctx(comment_envelope, host))


class TestMergePullRequest:
    def test_auto_merge(self, dependabot_envelope, host):
        out = _call(
            "merge_pull_request", _ctx(dependabot_envelope, host), strategy="squash", auto=True
        )
        assert host.calls_to("merge_pull_request") == [{"number": 7, "strategy": "squash", "auto": True}]
        assert out["merged"] is False

    def test_default_strategy(self, dependabot_envelope, host):
        _call("merge_pull_request", _ctx(dependabot_envelope, host))
        assert host.calls_to("merge_pull_request")[0]["strategy"] == "merge"

    def test_unknown_strategy(self, dependabot_envelope, host):
        with pytest.raises(ActionExecutionError, match="unknown strategy"):
            _call("merge_pull_request", _ctx(dependabot_envelope, host), strategy="octopus")
        assert host.calls_to("merge_pull_request") == []

    def test_no_pull_request(self, host):
        env = EventEnvelope(kind=EventKind.COMMENT_CREATED, actor="octocat", comment_body="x")
        with pytest.raises(ActionExecutionError, match="no pull request"):
            _call("merge_pull_request", _ctx(env, host))


class TestFetchMetadata:
    def test_from_title(self, dependabot_envelope, host):
        out = _call("fetch_metadata", _ctx(dependabot_envelope, host))
        assert out == {
            "dependency_name": "lodash",
            "previous_version": "4.17.20",
            "new_version": "4.17.21",
            "directory": "/",
            "update_type": "version-update:semver-patch",
        }
        assert host.calls == []

    def test_prefixed_title_with_directory(self, dependabot_envelope, host):
        out = _call(
            "fetch_metadata",
            _ctx(dependabot_envelope, host),
            title="build(deps): bump requests from 2.31.0 to 3.0.0 in /api",
        )
        assert out["dependency_name"] == "requests"
        assert out["directory"] == "/api"
        assert out["update_type"] == "version-update:semver-major"

    def test_not_a_dependency_title(self, dependabot_envelope, host):
        with pytest.raises(ActionExecutionError, match="not a dependency update"):
            _call("fetch_metadata", _ctx(dependabot_envelope, host), title="Fix typo")

    @pytest.mark.parametrize(
        "prev,new,expected",
        [
            ("1.2.3", "2.0.0", "version-update:semver-major"),
            ("1.2.3", "1.3.0", "version-update:semver-minor"),
            ("1.2.3", "1.2.4", "version-update:semver-patch"),
            ("v1.2", "v1.2.1", "version-update:semver-patch"),
            ("1.2.3", "1.2.3", "version-update:semver-patch"),
        ],
    )
    def test_classify_update(self, prev, new, expected):
        assert classify_update(prev, new) == expected


def test_action_step_defaults():
    step = ActionStep("checkout", {"ref": "main"})
    assert step.name == "checkout"
    assert step.display_name == "checkout"
    with pytest.raises(TypeError):
        step.params["ref"] = "other"  # type: ignore[index]
