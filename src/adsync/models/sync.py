"""Sync state models: chunked progress records, monthly import ledger, audit log."""
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from adsync.models.project import generate_uuid


class ProgressStatus(str, Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_PROGRESS_STATUSES = (ProgressStatus.PENDING.value, ProgressStatus.SYNCING.value)
TERMINAL_PROGRESS_STATUSES = (ProgressStatus.COMPLETED.value, ProgressStatus.FAILED.value)

_ACTIVE_WHERE = text("status IN ('pending', 'syncing')")


class SyncProgressRecord(SQLModel, table=True):
    """One chunked backfill (or single-chunk resync) job for a project."""

    # At most one active record per project. Enforced by the store so that
    # two sessions racing on start_backfill cannot both insert.
    __table_args__ = (
        Index(
            "uq_syncprogress_active_project",
            "project_id",
            unique=True,
            sqlite_where=_ACTIVE_WHERE,
            postgresql_where=_ACTIVE_WHERE,
        ),
    )

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    project_id: str = Field(foreign_key="project.id", index=True)
    sync_type: str = "historical_backfill"
    period_start: date
    period_end: date

    total_chunks: int
    completed_chunks: int = 0
    current_chunk_json: Optional[str] = None  # encoded ChunkMarker

    status: str = Field(default=ProgressStatus.PENDING.value, index=True)
    records_synced: int = 0
    error_message: Optional[str] = None

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PROGRESS_STATUSES


class MonthStatus(str, Enum):
    PENDING = "pending"
    IMPORTING = "importing"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_MONTH_STATUSES = (MonthStatus.COMPLETED.value, MonthStatus.ERROR.value)


class MonthlyImportRecord(SQLModel, table=True):
    """Whole-month historical import bookkeeping, one row per (project, year, month)."""

    __table_args__ = (
        UniqueConstraint("project_id", "year", "month", name="uq_monthlyimport_key"),
    )

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    project_id: str = Field(foreign_key="project.id", index=True)
    year: int
    month: int  # 1-12

    status: str = Field(default=MonthStatus.PENDING.value, index=True)
    records_count: Optional[int] = None
    retry_count: int = 0
    error_message: Optional[str] = None

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_MONTH_STATUSES


class SyncLogStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class SyncLogEntry(SQLModel, table=True):
    """Append-only record of one sync attempt (not one per chunk)."""

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    project_id: str = Field(foreign_key="project.id", index=True)
    status: str  # "success" | "error"
    message: Optional[str] = None  # usually JSON: {type, records, elapsed, error}
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
