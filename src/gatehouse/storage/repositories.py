"""Abstract repository interfaces for Gatehouse storage.

No SQLAlchemy imports here -- pure abstract contracts.
Concrete implementations are in sqlite.py.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from gatehouse.models.job import DispatchReport
    from gatehouse.storage.schema import DispatchRunRow, JobLogRow


class RunLogRepository(ABC):
    """Abstract interface for the dispatch audit log."""

    @abstractmethod
    def save_report(self, report: DispatchReport) -> None:
        """Persist a dispatch and every job result in it."""
        ...

    @abstractmethod
    def get_run(self, dispatch_id: str) -> DispatchRunRow | None:
        """Get a dispatch by id. Returns None if not found."""
        ...

    @abstractmethod
    def get_log(
        self,
        *,
        job_name: str | None = None,
        status: str | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[JobLogRow]:
        """Get job log entries, newest first."""
        ...

    @abstractmethod
    def delete_log_entries(self, before: datetime) -> int:
        """Delete dispatches older than ``before``. Returns the number removed."""
        ...
