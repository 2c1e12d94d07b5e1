"""Ready-made workflows.

``secure_comment_workflow()`` builds the three-job workflow for comment
driven deployments, Dependabot auto-merge and trusted full test runs on
pull requests. It is the programmatic twin of
``workflows/secure-comment.yml``.
"""

from __future__ import annotations

from collections.abc import Iterable

from gatehouse.config import Workflow
from gatehouse.exceptions import JobConfigError
from gatehouse.models.event import EventKind
from gatehouse.models.job import ActionStep, JobDefinition
from gatehouse.permissions import PermissionScope
from gatehouse.predicates import ActorIn, Contains, Equals, KindMatch, Present

DEPENDABOT_LOGIN = "dependabot[bot]"

DEPLOY_COMMAND = "/deploy-dev"
FULL_TESTS_COMMAND = "/run-full-pr-tests"

DEPLOY_MESSAGE = (
    "✅ Deployment to Development environment triggered successfully by manual command."
)
AUTO_MERGE_MESSAGE = "🤖 Dependabot PR is being set for auto-merge once all checks pass."
FULL_TESTS_MESSAGE = "✅ Full PR tests completed. Check workflow run for details."

WORKFLOW_PERMISSIONS = PermissionScope(
    {"contents": "read", "pull-requests": "write", "issues": "write"}
)


def manual_deploy_dev(
    defaults: PermissionScope = WORKFLOW_PERMISSIONS,
    deploy_command: str | None = None,
) -> JobDefinition:
    """Deploy when someone comments ``/deploy-dev`` on a pull request.

    The base branch is checked out, never the PR head, so the deploy runs
    code that has already been reviewed.
    """
    steps = [
        ActionStep(
            "checkout",
            {"ref": "${{ event.pull_request.base_ref }}"},
            name="Checkout base branch",
        )
    ]
    if deploy_command:
        steps.append(
            ActionStep("run_command", {"cmd": deploy_command}, name="Deploy to development")
        )
    steps.append(
        ActionStep("post_comment", {"body": DEPLOY_MESSAGE}, name="Report deployment")
    )
    return JobDefinition(
        name="manual_deploy_dev",
        predicate=(
            KindMatch(EventKind.COMMENT_CREATED, EventKind.COMMENT_EDITED)
            & Present("pull_request")
            & Contains("comment_body", DEPLOY_COMMAND)
        ),
        steps=tuple(steps),
        permissions=defaults.merged({"contents": "read", "deployments": "write"}),
    )


def dependabot_auto_merge(
    defaults: PermissionScope = WORKFLOW_PERMISSIONS,
) -> JobDefinition:
    """Queue Dependabot pull requests for auto-merge once checks pass.

    The merge step is best-effort: a PR that cannot be queued yet still
    gets its status comment.
    """
    return JobDefinition(
        name="dependabot_auto_merge",
        predicate=(
            KindMatch(
                EventKind.PULL_REQUEST_OPENED,
                EventKind.PULL_REQUEST_SYNCHRONIZED,
                EventKind.PULL_REQUEST_REOPENED,
            )
            & Equals("event_name", "pull_request_target")
            & ActorIn(DEPENDABOT_LOGIN)
            & Equals("pull_request.state", "open")
        ),
        steps=(
            ActionStep(
                "checkout",
                {"ref": "${{ event.pull_request.base_ref }}"},
                name="Checkout base branch",
            ),
            ActionStep("fetch_metadata", name="Dependabot metadata", id="metadata"),
            ActionStep(
                "merge_pull_request",
                {"strategy": "squash", "auto": True},
                name="Enable auto-merge",
                best_effort=True,
            ),
            ActionStep(
                "post_comment", {"body": AUTO_MERGE_MESSAGE}, name="Report auto-merge"
            ),
        ),
        permissions=defaults.merged({"contents": "write", "pull-requests": "write"}),
    )


def run_specific_tests_on_pr(
    trusted_actors: Iterable[str],
    defaults: PermissionScope = WORKFLOW_PERMISSIONS,
) -> JobDefinition:
    """Run the full test suite on a PR head when a trusted user asks.

    This is the only job that checks out contributor code, so it is gated
    on an explicit allow-list and its checkout is read-only.
    """
    actors = [a for a in trusted_actors if a]
    if not actors:
        raise JobConfigError("run_specific_tests_on_pr needs at least one trusted actor")
    return JobDefinition(
        name="run_specific_tests_on_pr",
        predicate=(
            KindMatch(EventKind.COMMENT_CREATED)
            & Present("pull_request")
            & Contains("comment_body", FULL_TESTS_COMMAND)
            & ActorIn(*actors)
        ),
        steps=(
            ActionStep(
                "checkout",
                {
                    "ref": "refs/pull/${{ event.pull_request.number }}/head",
                    "fetch_depth": 0,
                },
                name="Checkout PR head",
            ),
            ActionStep("run_command", {"cmd": "npm install"}, name="Install dependencies"),
            ActionStep("run_command", {"cmd": "npm test -- --all"}, name="Run full tests"),
            ActionStep(
                "post_comment", {"body": FULL_TESTS_MESSAGE}, name="Report test run"
            ),
        ),
        permissions=defaults.merged({"contents": "read", "pull-requests": "write"}),
    )


def secure_comment_workflow(
    trusted_actors: Iterable[str],
    *,
    deploy_command: str | None = None,
) -> Workflow:
    """Build the secure comment workflow.

    Args:
        trusted_actors: Logins allowed to trigger full test runs on PR code.
        deploy_command: Optional shell command the deploy job runs after
            checking out the base branch.

    Raises:
        JobConfigError: If ``trusted_actors`` is empty.
    """
    return Workflow(
        name="secure-comment",
        permissions=WORKFLOW_PERMISSIONS,
        jobs=(
            manual_deploy_dev(WORKFLOW_PERMISSIONS, deploy_command),
            dependabot_auto_merge(WORKFLOW_PERMISSIONS),
            run_specific_tests_on_pr(trusted_actors, WORKFLOW_PERMISSIONS),
        ),
    )
