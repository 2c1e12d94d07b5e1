"""Tests for the SQLite run log repository.

Covers:
- save_report persists the run and one row per job, skipped ones included
- get_run / get_log filters, ordering and limits
- delete_log_entries removes old dispatches and their job rows
- Concurrent saves from several threads
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta

from gatehouse.models.event import EventEnvelope, EventKind
from gatehouse.models.job import (
    DispatchReport,
    ExecutionResult,
    JobStatus,
    StepOutcome,
    StepStatus,
)


def _report(
    dispatch_id: str,
    *,
    created_at: datetime | None = None,
    statuses: dict[str, JobStatus] | None = None,
) -> DispatchReport:
    statuses = statuses or {"deploy": JobStatus.SUCCEEDED, "merge": JobStatus.SKIPPED}
    results = []
    for name, status in statuses.items():
        steps = ()
        if status != JobStatus.SKIPPED:
            steps = (
                StepOutcome(name="Checkout", action="checkout", status=StepStatus.SUCCEEDED, duration=0.01234567),
                StepOutcome(
                    name="Report",
                    action="post_comment",
                    status=StepStatus.FAILED if status == JobStatus.FAILED else StepStatus.SUCCEEDED,
                    error="boom" if status == JobStatus.FAILED else None,
                ),
            )
        results.append(
            ExecutionResult(
                job_name=name,
                status=status,
                reason="predicate did not match" if status == JobStatus.SKIPPED else None,
                steps=steps,
            )
        )
    envelope = EventEnvelope(
        kind=EventKind.COMMENT_CREATED,
        actor="octocat",
        comment_body="/deploy-dev",
        issue_number=42,
        repository="octo/app",
        actor_verified=True,
        delivery_id="run-1",
    )
    return DispatchReport(
        dispatch_id=dispatch_id,
        envelope=envelope,
        results=tuple(results),
        created_at=created_at or datetime.now(),
    )


class TestSaveReport:
    def test_run_row(self, run_log):
        run_log.save_report(_report("d1"))
        run = run_log.get_run("d1")

        assert run.event_kind == "comment_created"
        assert run.actor == "octocat"
        assert run.actor_verified is True
        assert run.repository == "octo/app"
        assert run.issue_number == 42
        assert run.delivery_id == "run-1"

    def test_job_rows(self, run_log):
        run_log.save_report(_report("d1"))
        jobs = run_log.get_run("d1").jobs

        assert [(j.position, j.job_name, j.status) for j in jobs] == [
            (0, "deploy", "succeeded"),
            (1, "merge", "skipped"),
        ]
        assert jobs[0].steps_json[0] == {
            "name": "Checkout",
            "action": "checkout",
            "status": "succeeded",
            "error": None,
            "duration": 0.0123,
        }
        assert jobs[1].steps_json is None
        assert jobs[1].reason == "predicate did not match"

    def test_get_run_unknown(self, run_log):
        assert run_log.get_run("nope") is None


class TestGetLog:
    def test_newest_first(self, run_log):
        base = datetime(2026, 3, 1, 9, 0)
        run_log.save_report(_report("old", created_at=base))
        run_log.save_report(_report("new", created_at=base + timedelta(hours=1)))

        entries = run_log.get_log()
        assert [e.dispatch_id for e in entries] == ["new", "new", "old", "old"]
        assert entries[0].run.actor == "octocat"

    def test_filters(self, run_log):
        base = datetime(2026, 3, 1, 9, 0)
        run_log.save_report(_report("a", created_at=base, statuses={"deploy": JobStatus.FAILED}))
        run_log.save_report(_report("b", created_at=base + timedelta(days=1)))

        assert [e.dispatch_id for e in run_log.get_log(job_name="merge")] == ["b"]
        assert [e.dispatch_id for e in run_log.get_log(status="failed")] == ["a"]
        assert {e.dispatch_id for e in run_log.get_log(since=base + timedelta(hours=1))} == {"b"}

    def test_limit(self, run_log):
        for i in range(5):
            run_log.save_report(_report(f"d{i}"))
        assert len(run_log.get_log(limit=3)) == 3


class TestDeleteLogEntries:
    def test_delete_before(self, run_log):
        base = datetime(2026, 3, 1, 9, 0)
        run_log.save_report(_report("old", created_at=base - timedelta(days=30)))
        run_log.save_report(_report("recent", created_at=base))

        assert run_log.delete_log_entries(base - timedelta(days=1)) == 1
        assert run_log.get_run("old") is None
        assert run_log.get_run("recent") is not None
        assert {e.dispatch_id for e in run_log.get_log()} == {"recent"}

    def test_nothing_to_delete(self, run_log):
        assert run_log.delete_log_entries(datetime(2000, 1, 1)) == 0


def test_concurrent_saves(run_log):
    errors: list[BaseException] = []

    def save(i: int) -> None:
        try:
            run_log.save_report(_report(f"t{i}"))
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=save, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(run_log.get_log(limit=100)) == 16
