"""SQLAlchemy ORM schema for Gatehouse.

Defines the audit tables: dispatch_runs, job_log, _gatehouse_meta.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all Gatehouse ORM models."""

    pass


class DispatchRunRow(Base):
    """One dispatched envelope."""

    __tablename__ = "dispatch_runs"

    dispatch_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    event_kind: Mapped[str] = mapped_column(String(50), nullable=False)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    actor_verified: Mapped[bool] = mapped_column(nullable=False, default=False)
    repository: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    issue_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    delivery_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    jobs: Mapped[list["JobLogRow"]] = relationship(
        "JobLogRow",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="JobLogRow.position",
    )

    __table_args__ = (
        Index("ix_dispatch_runs_time", "created_at"),
    )


class JobLogRow(Base):
    """Audit log entry for one job's result within a dispatch.

    Skipped jobs are logged too, so every predicate evaluation is on
    record.
    """

    __tablename__ = "job_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    dispatch_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("dispatch_runs.dispatch_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # "succeeded", "failed", "skipped"
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    steps_json: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    run: Mapped["DispatchRunRow"] = relationship("DispatchRunRow", back_populates="jobs")

    __table_args__ = (
        Index("ix_job_log_name_time", "job_name", "created_at"),
    )


class GatehouseMetaRow(Base):
    """Key-value metadata (schema version)."""

    __tablename__ = "_gatehouse_meta"

    key: Mapped[str] = mapped_column(String(50), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
