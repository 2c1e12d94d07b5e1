"""SQLite implementation of the run log repository.

Uses SQLAlchemy 2.0-style queries (select() + session.execute()).
The repository takes a session factory rather than a Session because
reports are saved from whichever thread finished the dispatch.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import and_, select
from sqlalchemy.orm import Session, selectinload, sessionmaker

from gatehouse.storage.repositories import RunLogRepository
from gatehouse.storage.schema import DispatchRunRow, JobLogRow

if TYPE_CHECKING:
    from gatehouse.models.job import DispatchReport, ExecutionResult


class SqliteRunLogRepository(RunLogRepository):
    """SQLite implementation of the dispatch audit log."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self._write_lock = threading.Lock()

    def save_report(self, report: DispatchReport) -> None:
        env = report.envelope
        run = DispatchRunRow(
            dispatch_id=report.dispatch_id,
            event_kind=env.kind.value,
            actor=env.actor,
            actor_verified=env.actor_verified,
            repository=env.repository,
            issue_number=env.issue_number,
            delivery_id=env.delivery_id,
            created_at=report.created_at,
        )
        for position, result in enumerate(report.results):
            run.jobs.append(_job_row(result, position, report.created_at))
        with self._write_lock, self._session_factory() as session:
            session.add(run)
            session.commit()

    def get_run(self, dispatch_id: str) -> DispatchRunRow | None:
        stmt = (
            select(DispatchRunRow)
            .where(DispatchRunRow.dispatch_id == dispatch_id)
            .options(selectinload(DispatchRunRow.jobs))
        )
        with self._session_factory() as session:
            return session.execute(stmt).scalar_one_or_none()

    def get_log(
        self,
        *,
        job_name: str | None = None,
        status: str | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[JobLogRow]:
        conditions = []
        if job_name is not None:
            conditions.append(JobLogRow.job_name == job_name)
        if status is not None:
            conditions.append(JobLogRow.status == status)
        if since is not None:
            conditions.append(JobLogRow.created_at >= since)

        stmt = select(JobLogRow).options(selectinload(JobLogRow.run))
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(JobLogRow.created_at.desc(), JobLogRow.id.desc()).limit(limit)
        with self._session_factory() as session:
            return list(session.execute(stmt).scalars().all())

    def delete_log_entries(self, before: datetime) -> int:
        with self._write_lock, self._session_factory() as session:
            rows = session.execute(
                select(DispatchRunRow).where(DispatchRunRow.created_at < before)
            ).scalars().all()
            count = len(rows)
            for row in rows:
                session.delete(row)
            session.commit()
            return count


def _job_row(result: ExecutionResult, position: int, created_at: datetime) -> JobLogRow:
    return JobLogRow(
        position=position,
        job_name=result.job_name,
        status=result.status.value,
        reason=result.reason,
        steps_json=[
            {
                "name": s.name,
                "action": s.action,
                "status": s.status.value,
                "error": s.error,
                "duration": round(s.duration, 4),
            }
            for s in result.steps
        ]
        or None,
        started_at=result.started_at,
        finished_at=result.finished_at,
        created_at=created_at,
    )
