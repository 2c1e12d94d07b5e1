"""Tests for SQLAlchemy ORM schema.

Covers:
- All tables are created
- Schema version recorded once by init_db
- Dispatch run / job log relationship and ordering
- Cascading delete from a run to its job rows
- Indexes exist on expected columns
"""

from datetime import datetime

from sqlalchemy import func, inspect, select

from gatehouse.storage.engine import SCHEMA_VERSION, create_gatehouse_engine, init_db
from gatehouse.storage.schema import DispatchRunRow, GatehouseMetaRow, JobLogRow


def _run(dispatch_id: str = "d1") -> DispatchRunRow:
    return DispatchRunRow(
        dispatch_id=dispatch_id,
        event_kind="comment_created",
        actor="octocat",
        actor_verified=True,
        repository="octo/app",
        issue_number=42,
        created_at=datetime(2026, 1, 1, 12, 0),
    )


def _job(position: int, name: str, status: str = "succeeded") -> JobLogRow:
    return JobLogRow(
        position=position,
        job_name=name,
        status=status,
        steps_json=[{"name": "checkout", "status": "succeeded"}],
        created_at=datetime(2026, 1, 1, 12, 0),
    )


class TestTableCreation:
    def test_all_tables_exist(self, engine):
        table_names = set(inspect(engine).get_table_names())
        expected = {"dispatch_runs", "job_log", "_gatehouse_meta"}
        assert expected <= table_names, f"Missing tables: {expected - table_names}"

    def test_schema_version(self, session_factory):
        with session_factory() as session:
            row = session.execute(
                select(GatehouseMetaRow).where(GatehouseMetaRow.key == "schema_version")
            ).scalar_one()
        assert row.value == SCHEMA_VERSION

    def test_init_db_is_idempotent(self, engine, session_factory):
        init_db(engine)
        with session_factory() as session:
            count = session.execute(select(func.count()).select_from(GatehouseMetaRow)).scalar()
        assert count == 1

    def test_file_database(self, tmp_path):
        eng = create_gatehouse_engine(str(tmp_path / "audit.db"))
        try:
            init_db(eng)
            assert "job_log" in inspect(eng).get_table_names()
        finally:
            eng.dispose()
        assert (tmp_path / "audit.db").exists()


class TestRelationships:
    def test_jobs_ordered_by_position(self, session_factory):
        with session_factory() as session:
            run = _run()
            run.jobs.extend([_job(1, "second"), _job(0, "first")])
            session.add(run)
            session.commit()

        with session_factory() as session:
            run = session.get(DispatchRunRow, "d1")
            assert [j.job_name for j in run.jobs] == ["first", "second"]
            assert run.jobs[0].steps_json == [{"name": "checkout", "status": "succeeded"}]
            assert run.jobs[0].run is run

    def test_delete_cascades(self, session_factory):
        with session_factory() as session:
            run = _run()
            run.jobs.append(_job(0, "only"))
            session.add(run)
            session.commit()
            session.delete(run)
            session.commit()
            assert session.execute(select(func.count()).select_from(JobLogRow)).scalar() == 0


class TestIndexes:
    def test_indexes(self, engine):
        inspector = inspect(engine)
        job_log = {ix["name"] for ix in inspector.get_indexes("job_log")}
        runs = {ix["name"] for ix in inspector.get_indexes("dispatch_runs")}
        assert "ix_job_log_name_time" in job_log
        assert "ix_dispatch_runs_time" in runs
