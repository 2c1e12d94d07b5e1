"""Configuration for Gatehouse.

Settings holds process-level options (database, timeouts, host access).
The workflow models describe the job configuration file: a workflow-wide
permissions block plus named jobs, each with a trigger, a predicate
(``if``), optional permission overrides and ordered steps::

    name: secure-comment
    permissions: {contents: read, pull-requests: write, issues: write}
    jobs:
      manual_deploy_dev:
        trigger: [comment_created, comment_edited]
        if:
          all:
            - present: pull_request
            - contains: {field: comment_body, value: /deploy-dev}
        permissions: {deployments: write}
        steps:
          - uses: checkout
            with: {ref: "${{ event.pull_request.base_ref }}"}

Files are YAML (PyYAML) or JSON. Everything is validated up front; any
problem raises JobConfigError before a single event is dispatched.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gatehouse.exceptions import JobConfigError
from gatehouse.models.event import EventKind
from gatehouse.models.job import ActionStep, JobDefinition
from gatehouse.permissions import PermissionScope
from gatehouse.predicates import And, KindMatch, predicate_from_config


class Settings(BaseModel):
    """Process-level settings.

    ``from_env()`` reads ``GATEHOUSE_*`` variables, falling back to the
    Actions runner's ``GITHUB_TOKEN``, ``GITHUB_API_URL`` and
    ``GITHUB_REPOSITORY``.
    """

    model_config = ConfigDict(extra="forbid")

    db_path: str = ".gatehouse.db"
    action_timeout: float = Field(300.0, gt=0)
    max_workers: Optional[int] = Field(None, ge=1)
    github_token: Optional[str] = Field(None, repr=False)
    api_url: str = "https://api.github.com"
    repository: Optional[str] = None
    workdir: str = "."

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> Settings:
        """Build settings from environment variables plus explicit overrides.

        Explicit keyword overrides that are None are ignored.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        mapping = {
            "db_path": ("GATEHOUSE_DB",),
            "action_timeout": ("GATEHOUSE_ACTION_TIMEOUT",),
            "max_workers": ("GATEHOUSE_MAX_WORKERS",),
            "github_token": ("GATEHOUSE_GITHUB_TOKEN", "GITHUB_TOKEN"),
            "api_url": ("GATEHOUSE_API_URL", "GITHUB_API_URL"),
            "repository": ("GATEHOUSE_REPOSITORY", "GITHUB_REPOSITORY"),
            "workdir": ("GATEHOUSE_WORKDIR", "GITHUB_WORKSPACE"),
        }
        for field_name, names in mapping.items():
            for name in names:
                if env.get(name):
                    values[field_name] = env[name]
                    break
        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls(**values)
        except ValidationError as exc:
            raise JobConfigError(f"Invalid settings: {exc}") from exc


# ---------------------------------------------------------------------------
# Workflow file schema
# ---------------------------------------------------------------------------


PermissionsBlock = Optional[Union[str, dict[str, str]]]


class StepConfig(BaseModel):
    """One entry in a job's ``steps`` list."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    uses: str
    with_: dict[str, Any] = Field(default_factory=dict, alias="with")
    name: str = ""
    id: Optional[str] = None
    best_effort: bool = Field(False, alias="continue-on-error")
    timeout: Optional[float] = Field(None, gt=0)


class JobConfig(BaseModel):
    """One entry in the workflow's ``jobs`` mapping."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    trigger: Optional[Union[EventKind, list[EventKind]]] = None
    if_: Any = Field(None, alias="if")
    permissions: PermissionsBlock = None
    steps: list[StepConfig] = Field(default_factory=list)


class WorkflowConfig(BaseModel):
    """Top level of a workflow file."""

    model_config = ConfigDict(extra="forbid")

    name: str = ""
    permissions: PermissionsBlock = None
    jobs: dict[str, JobConfig]


@dataclass(frozen=True)
class Workflow:
    """A loaded workflow: its name, default scope and job definitions."""

    name: str
    permissions: PermissionScope
    jobs: tuple[JobDefinition, ...]

    def job(self, name: str) -> JobDefinition | None:
        for j in self.jobs:
            if j.name == name:
                return j
        return None


def workflow_from_dict(data: Any) -> Workflow:
    """Validate a decoded workflow document and build its jobs.

    Raises:
        JobConfigError: On any schema, predicate or permission error.
    """
    if not isinstance(data, Mapping):
        raise JobConfigError("Workflow must be a mapping with a 'jobs' key")
    try:
        config = WorkflowConfig.model_validate(data)
    except ValidationError as exc:
        raise JobConfigError(f"Invalid workflow: {exc}") from exc

    defaults = PermissionScope.from_config(config.permissions)
    jobs: list[JobDefinition] = []
    for job_name, job_config in config.jobs.items():
        try:
            jobs.append(_build_job(job_name, job_config, defaults))
        except JobConfigError as exc:
            raise JobConfigError(f"Job '{job_name}': {exc}") from exc
    return Workflow(name=config.name, permissions=defaults, jobs=tuple(jobs))


def load_workflow(path: str | Path) -> Workflow:
    """Load a workflow from a YAML or JSON file.

    Raises:
        JobConfigError: If the file cannot be parsed or is invalid.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise JobConfigError(f"Cannot read workflow {path}: {exc}") from exc
    try:
        if path.suffix == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise JobConfigError(f"Cannot parse workflow {path}: {exc}") from exc
    workflow = workflow_from_dict(data)
    if not workflow.name:
        workflow = Workflow(name=path.stem, permissions=workflow.permissions, jobs=workflow.jobs)
    return workflow


def _build_job(
    name: str,
    config: JobConfig,
    defaults: PermissionScope,
) -> JobDefinition:
    predicate = predicate_from_config(config.if_)
    if config.trigger is not None:
        kinds = config.trigger if isinstance(config.trigger, list) else [config.trigger]
        if not kinds:
            raise JobConfigError("'trigger' must name at least one event kind")
        predicate = And(KindMatch(*kinds), predicate)

    # Shorthands replace the workflow block; mappings override it per resource.
    if isinstance(config.permissions, str):
        scope = PermissionScope.from_config(config.permissions)
    elif config.permissions is not None:
        scope = defaults.merged(PermissionScope.from_config(config.permissions))
    else:
        scope = defaults

    steps = tuple(
        ActionStep(
            action=s.uses,
            params=s.with_,
            name=s.name,
            id=s.id,
            best_effort=s.best_effort,
            timeout=s.timeout,
        )
        for s in config.steps
    )
    ids = [s.id for s in steps if s.id]
    if len(ids) != len(set(ids)):
        raise JobConfigError("step ids must be unique within a job")
    return JobDefinition(name=name, predicate=predicate, steps=steps, permissions=scope)
