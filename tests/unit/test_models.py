"""Tests for DB models and settings defaults."""
from datetime import date

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from adsync.config import Settings
from adsync.models.project import Project
from adsync.models.sync import MonthlyImportRecord, SyncLogEntry, SyncProgressRecord


class TestProject:
    def test_defaults(self):
        project = Project(name="Acme", ad_account_id="act_1")
        assert project.archived is False
        assert project.last_sync_at is None
        assert project.webhook_status == "idle"
        assert project.sync_progress_json is None
        assert project.id

    def test_persists_and_retrieves_from_db(self, test_session: Session):
        test_session.add(Project(name="Acme", ad_account_id="act_1"))
        test_session.commit()
        result = test_session.exec(select(Project)).first()
        assert result.name == "Acme"


class TestSyncProgressRecord:
    def test_defaults(self):
        record = SyncProgressRecord(
            project_id="p1", period_start=date(2025, 1, 1), period_end=date(2025, 1, 31), total_chunks=2,
        )
        assert record.status == "pending"
        assert record.completed_chunks == 0
        assert record.sync_type == "historical_backfill"
        assert not record.is_terminal

    def test_terminal_flag(self):
        record = SyncProgressRecord(
            project_id="p1", period_start=date(2025, 1, 1), period_end=date(2025, 1, 31),
            total_chunks=2, status="failed",
        )
        assert record.is_terminal

    def test_terminal_records_do_not_block_each_other(self, test_session, seeded_project):
        for _ in range(2):
            test_session.add(SyncProgressRecord(
                project_id=seeded_project.id, period_start=date(2025, 1, 1),
                period_end=date(2025, 1, 31), total_chunks=1, status="completed",
            ))
        test_session.commit()
        assert len(test_session.exec(select(SyncProgressRecord)).all()) == 2


class TestMonthlyImportRecord:
    def test_natural_key_is_unique(self, test_session, seeded_project):
        test_session.add(MonthlyImportRecord(project_id=seeded_project.id, year=2025, month=1))
        test_session.commit()
        test_session.add(MonthlyImportRecord(project_id=seeded_project.id, year=2025, month=1))
        with pytest.raises(IntegrityError):
            test_session.commit()
        test_session.rollback()


class TestSyncLogEntry:
    def test_created_at_stamped(self):
        entry = SyncLogEntry(project_id="p1", status="success")
        assert entry.created_at is not None
        assert entry.message is None


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.executor_function == "meta-ads-sync"
        assert settings.default_date_preset == "last_90d"
        assert settings.resync_pacing_seconds == 2.0
        assert settings.health_sweep_interval_minutes == 60

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("RESYNC_PACING_SECONDS", "0.5")
        monkeypatch.setenv("TELEGRAM_CHAT_ID", "42")
        settings = Settings(_env_file=None)
        assert settings.resync_pacing_seconds == 0.5
        assert settings.telegram_chat_id == 42


class TestGetEngine:
    @pytest.fixture
    def fresh_engine(self, tmp_path, monkeypatch):
        from adsync.db import engine as engine_module
        settings = Settings(_env_file=None, database_url=f"sqlite:///{tmp_path / 'adsync.db'}")
        monkeypatch.setattr(engine_module, "_engine", None)
        monkeypatch.setattr(engine_module, "get_settings", lambda: settings)
        engine = engine_module.get_engine()
        yield engine
        engine.dispose()

    def test_creates_every_table_column(self, fresh_engine):
        columns = {
            table: {c["name"] for c in inspect(fresh_engine).get_columns(table)}
            for table in ("project", "syncprogressrecord", "monthlyimportrecord", "synclogentry")
        }
        assert {"archived", "sync_progress_json", "webhook_status"} <= columns["project"]
        assert {"current_chunk_json", "updated_at"} <= columns["syncprogressrecord"]
        assert "retry_count" in columns["monthlyimportrecord"]

    def test_creates_active_record_index(self, fresh_engine):
        indexes = {i["name"] for i in inspect(fresh_engine).get_indexes("syncprogressrecord")}
        assert "uq_syncprogress_active_project" in indexes

    def test_returns_singleton(self, fresh_engine):
        from adsync.db.engine import get_engine
        assert get_engine() is fresh_engine
