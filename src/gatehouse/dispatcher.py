"""Dispatcher -- matches envelopes against jobs and runs the matches.

For every envelope the dispatcher evaluates every registered job's
predicate, independently and without early exit. Matching jobs run
concurrently on a thread pool; inside a job, steps run strictly in
order. Failure isolation is per job:

- a failing step abandons the rest of its job (fail-fast) unless the
  step is best-effort, in which case it is recorded as a warning;
- a failing job never affects its siblings, and ``dispatch()`` never
  raises because of one job's fault.

Permission checks happen before any side effect: a job whose steps need
more than its declared scope fails before its first step runs.

Host calls run under a timeout (the step's own, else the dispatcher
default). The limit is also handed to the host through
``ActionContext.timeout`` so it can stop the work itself. A timed-out
call fails its step; the core never retries. A call that is still
running TIMEOUT_GRACE seconds after its limit is abandoned on its daemon
thread and fails the job even for a best-effort step, since the next
step would overlap it.

``shutdown()`` lets in-flight steps finish but starts no new step or job.
It never waits on abandoned calls.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from gatehouse.actions import ActionContext, ActionRegistry, ActionSpec, default_registry, render_params
from gatehouse.exceptions import (
    ActionExecutionError,
    ActionTimeoutError,
    JobConfigError,
    PermissionDeniedError,
    UnknownActionError,
)
from gatehouse.models.job import (
    DispatchReport,
    ExecutionResult,
    JobDefinition,
    JobRun,
    JobState,
    StepOutcome,
    StepStatus,
)
from gatehouse.predicates import evaluate

if TYPE_CHECKING:
    from gatehouse.models.event import EventEnvelope
    from gatehouse.models.job import ActionStep
    from gatehouse.protocols import VCSHost
    from gatehouse.storage.repositories import RunLogRepository

logger = logging.getLogger(__name__)

SHUTDOWN_REASON = "shutdown"

# Seconds a timed-out host call gets to stop on its own before it is abandoned.
TIMEOUT_GRACE = 1.0


class Dispatcher:
    """Runs registered jobs for incoming envelopes.

    Jobs and the action registry are fixed at construction: the registry
    is frozen and the job tuple is never modified, so worker threads
    share them without locking.

    Usage::

        dispatcher = Dispatcher(jobs, host, action_timeout=60)
        report = dispatcher.dispatch(envelope)
        for result in report.results:
            print(result.job_name, result.status.value)
    """

    def __init__(
        self,
        jobs: Iterable[JobDefinition],
        host: VCSHost,
        *,
        registry: ActionRegistry | None = None,
        action_timeout: float | None = 300.0,
        max_workers: int | None = None,
        run_log: RunLogRepository | None = None,
        on_result: Callable[[ExecutionResult], None] | None = None,
    ) -> None:
        self._jobs: tuple[JobDefinition, ...] = tuple(jobs)
        names = [j.name for j in self._jobs]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise JobConfigError(f"Duplicate job names: {', '.join(dupes)}")

        self._registry = registry if registry is not None else default_registry()
        self._registry.freeze()
        for job in self._jobs:
            for step in job.steps:
                if step.action not in self._registry:
                    raise UnknownActionError(step.action)

        self._host = host
        self._action_timeout = action_timeout
        self._max_workers = max_workers
        self._run_log = run_log
        self._on_result = on_result
        self._stopping = threading.Event()
        # Host calls a step is still waiting on; abandoned calls are not counted.
        self._active_calls = 0
        self._calls_done = threading.Condition()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def jobs(self) -> tuple[JobDefinition, ...]:
        return self._jobs

    @property
    def registry(self) -> ActionRegistry:
        return self._registry

    @property
    def is_shutting_down(self) -> bool:
        return self._stopping.is_set()

    def match(self, envelope: EventEnvelope) -> list[str]:
        """Names of the jobs whose predicates match ``envelope``. No side effects."""
        return [job.name for job in self._jobs if evaluate(job.predicate, envelope)]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, envelope: EventEnvelope) -> DispatchReport:
        """Evaluate every job against ``envelope`` and run the matches.

        Returns:
            A DispatchReport with one ExecutionResult per registered job,
            in registration order.
        """
        dispatch_id = uuid.uuid4().hex
        runs = [JobRun(job) for job in self._jobs]

        # Every predicate is evaluated, no early exit across jobs.
        for run in runs:
            matched = evaluate(run.job.predicate, envelope)
            logger.debug(
                "Job '%s' [%s]: %s",
                run.job.name,
                envelope.kind.value,
                "matched" if matched else "skipped",
            )
            if matched:
                run.advance(JobState.MATCHED)
            else:
                run.reason = "predicate did not match"
                run.advance(JobState.SKIPPED)

        matched_runs = [r for r in runs if r.state == JobState.MATCHED]
        if matched_runs:
            workers = self._max_workers or len(matched_runs)
            with ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix="gatehouse-job"
            ) as pool:
                futures = [
                    pool.submit(self._run_job, run, envelope) for run in matched_runs
                ]
                for future in futures:
                    # _run_job handles its own errors; this surfaces bugs only.
                    future.result()

        results = tuple(run.to_result() for run in runs)
        report = DispatchReport(
            dispatch_id=dispatch_id, envelope=envelope, results=results
        )
        for result in results:
            self._report(result)
        if self._run_log is not None:
            self._run_log.save_report(report)
        return report

    def shutdown(self, wait: bool = True) -> None:
        """Stop starting new jobs and steps; in-flight steps may finish.

        With ``wait``, blocks until no step is waiting on a host call.
        Abandoned calls are never waited for.
        """
        self._stopping.set()
        if wait:
            with self._calls_done:
                self._calls_done.wait_for(lambda: self._active_calls == 0)

    def __enter__(self) -> Dispatcher:
        return self

    def __exit__(self, *args: object) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    def _run_job(self, run: JobRun, envelope: EventEnvelope) -> None:
        job = run.job
        if self._stopping.is_set():
            run.reason = SHUTDOWN_REASON
            run.advance(JobState.SKIPPED)
            return

        run.advance(JobState.RUNNING)
        ctx = ActionContext(envelope=envelope, job=job, host=self._host, outputs=run.outputs)

        try:
            specs = [self._authorize(job, step) for step in job.steps]
        except PermissionDeniedError as exc:
            logger.error("%s", exc)
            run.reason = str(exc)
            run.steps.extend(self._not_run(job.steps))
            run.advance(JobState.FAILED)
            return

        for index, (step, spec) in enumerate(zip(job.steps, specs)):
            if self._stopping.is_set():
                logger.warning(
                    "Job '%s' stopped before step '%s': shutting down",
                    job.name,
                    step.display_name,
                )
                run.reason = SHUTDOWN_REASON
                run.steps.extend(self._not_run(job.steps[index:]))
                run.advance(JobState.FAILED)
                return

            outcome = self._run_step(ctx, step, spec)
            run.steps.append(outcome)
            if outcome.status == StepStatus.SUCCEEDED and step.id:
                run.outputs[step.id] = dict(outcome.output)
            if outcome.status == StepStatus.FAILED:
                run.reason = f"step '{step.display_name}' failed: {outcome.error}"
                run.steps.extend(self._not_run(job.steps[index + 1:]))
                run.advance(JobState.FAILED)
                return

        run.advance(JobState.SUCCEEDED)

    def _authorize(self, job: JobDefinition, step: ActionStep) -> ActionSpec:
        """Return the step's action, or raise if the job's scope is too narrow."""
        spec = self._registry.get(step.action)
        missing = job.permissions.missing(spec.requires)
        if missing:
            raise PermissionDeniedError(job.name, step.action, missing)
        return spec

    def _run_step(
        self, ctx: ActionContext, step: ActionStep, spec: ActionSpec
    ) -> StepOutcome:
        start = time.monotonic()
        limit = step.timeout if step.timeout is not None else self._action_timeout
        step_ctx = replace(ctx, timeout=limit if spec.calls_host else None)
        try:
            params = render_params(step.params, step_ctx, shell_keys=spec.shell_params)
            output = self._invoke(spec, step_ctx, params, limit)
        except ActionTimeoutError as exc:
            # An abandoned call may still have side effects pending.
            return self._failed_step(
                ctx.job, step, str(exc), time.monotonic() - start,
                best_effort=step.best_effort and not exc.still_running,
            )
        except ActionExecutionError as exc:
            return self._failed_step(ctx.job, step, str(exc), time.monotonic() - start)
        except Exception as exc:
            message = f"{type(exc).__name__}: {exc}"
            return self._failed_step(ctx.job, step, message, time.monotonic() - start)

        logger.debug("Job '%s' step '%s' succeeded", ctx.job.name, step.display_name)
        return StepOutcome(
            name=step.display_name,
            action=step.action,
            status=StepStatus.SUCCEEDED,
            output=dict(output or {}),
            duration=time.monotonic() - start,
        )

    def _invoke(
        self,
        spec: ActionSpec,
        ctx: ActionContext,
        params: dict[str, Any],
        limit: float | None,
    ) -> Any:
        if not spec.calls_host:
            return spec.handler(ctx, params)

        with self._calls_done:
            self._active_calls += 1
        try:
            future = _call_in_thread(spec.handler, ctx, params, name=f"gatehouse-{spec.name}")
            try:
                return future.result(timeout=limit)
            except FutureTimeoutError:
                pass
            # Hosts given ctx.timeout usually stop on their own right after the limit.
            try:
                future.exception(timeout=TIMEOUT_GRACE)
            except FutureTimeoutError:
                logger.warning(
                    "Job '%s' abandoned '%s' after %gs; the call is still running",
                    ctx.job.name,
                    spec.name,
                    limit,
                )
                raise ActionTimeoutError(spec.name, limit, still_running=True) from None
            raise ActionTimeoutError(spec.name, limit)
        finally:
            with self._calls_done:
                self._active_calls -= 1
                self._calls_done.notify_all()

    def _failed_step(
        self,
        job: JobDefinition,
        step: ActionStep,
        error: str,
        duration: float,
        *,
        best_effort: bool | None = None,
    ) -> StepOutcome:
        if best_effort is None:
            best_effort = step.best_effort
        if best_effort:
            logger.warning(
                "Job '%s' best-effort step '%s' failed, continuing: %s",
                job.name,
                step.display_name,
                error,
            )
            status = StepStatus.WARNING
        else:
            logger.error(
                "Job '%s' step '%s' failed: %s", job.name, step.display_name, error
            )
            status = StepStatus.FAILED
        return StepOutcome(
            name=step.display_name,
            action=step.action,
            status=status,
            error=error,
            duration=duration,
        )

    @staticmethod
    def _not_run(steps: Iterable[ActionStep]) -> list[StepOutcome]:
        return [
            StepOutcome(name=s.display_name, action=s.action, status=StepStatus.NOT_RUN)
            for s in steps
        ]

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _report(self, result: ExecutionResult) -> None:
        if result.failed:
            logger.error("Job '%s' failed: %s", result.job_name, result.reason)
        elif result.succeeded:
            logger.info(
                "Job '%s' succeeded (%d warning(s))",
                result.job_name,
                len(result.warnings),
            )
        if self._on_result is not None:
            try:
                self._on_result(result)
            except Exception:
                logger.exception("on_result callback failed for '%s'", result.job_name)


def _call_in_thread(fn: Callable[..., Any], *args: Any, name: str) -> Future:
    """Run ``fn(*args)`` on a fresh daemon thread and return its Future.

    A daemon thread never holds up interpreter exit, so a call that is
    abandoned after a timeout cannot block ``shutdown()`` or the process.
    """
    future: Future = Future()

    def _target() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = fn(*args)
        except BaseException as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)

    threading.Thread(target=_target, name=name, daemon=True).start()
    return future
