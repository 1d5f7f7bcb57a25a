"""
ProgressTracker — lifecycle of chunked SyncProgressRecords.

Lifecycle of one record:
  1. start_backfill()   → status="pending", completed_chunks=0
  2. claim()            → status="syncing", started_at stamped
  3. advance_chunk() ×N → completed_chunks += 1, records_synced += n
  4. last chunk         → status="completed", completed_at stamped
     or fail_backfill() → status="failed", error_message stamped

Terminal records are never reopened; a retry starts a fresh record.

One active (pending/syncing) record per project. The pre-check gives a clear
error in the common case; the partial unique index on the table makes the
insert itself atomic, so a concurrent writer that slips past the pre-check
gets an IntegrityError that is reported as the same ConflictError.

Every mutation recomputes Project.sync_progress_json and
Project.webhook_status in the same transaction. No other code writes them.
"""
import logging
from datetime import date, datetime
from typing import List, Optional, Union

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from adsync.errors import (
    ConflictError,
    InvalidArgumentError,
    InvalidRangeError,
    NotFoundError,
    TerminalStateError,
)
from adsync.models.project import Project, WebhookStatus
from adsync.models.sync import (
    ACTIVE_PROGRESS_STATUSES,
    ProgressStatus,
    SyncProgressRecord,
)
from adsync.sync.markers import DateRangeChunk, EntityChunk, encode_marker

logger = logging.getLogger(__name__)

HISTORICAL_BACKFILL = "historical_backfill"


class SyncProgressSummary(BaseModel):
    """Display-ready view of the active progress record (cached on Project)."""
    record_id: str
    sync_type: str
    status: str
    completed_chunks: int
    total_chunks: int
    records_synced: int
    message: str
    started_at: Optional[datetime] = None


def summarize_record(record: SyncProgressRecord) -> SyncProgressSummary:
    return SyncProgressSummary(
        record_id=record.id,
        sync_type=record.sync_type,
        status=record.status,
        completed_chunks=record.completed_chunks,
        total_chunks=record.total_chunks,
        records_synced=record.records_synced,
        message=f"{record.completed_chunks}/{record.total_chunks} chunks",
        started_at=record.started_at,
    )


class ProgressTracker:
    """Owns SyncProgressRecord transitions and the Project progress cache."""

    def __init__(self, engine):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
        """
        self.engine = engine

    # ─── Mutations ────────────────────────────────────────────────────────────

    def start_backfill(
        self,
        project_id: str,
        period_start: date,
        period_end: date,
        total_chunks: int,
        sync_type: str = HISTORICAL_BACKFILL,
    ) -> str:
        """
        Create a pending progress record and return its id.

        Does not contact the executor; dispatch is a separate step.

        Raises:
            InvalidRangeError: period_end < period_start or total_chunks < 1.
            ConflictError: the project already has an active record.
        """
        if period_end < period_start:
            raise InvalidRangeError(
                f"period_end {period_end} is before period_start {period_start}"
            )
        if total_chunks < 1:
            raise InvalidRangeError(f"total_chunks must be >= 1, got {total_chunks}")

        record = SyncProgressRecord(
            project_id=project_id,
            sync_type=sync_type,
            period_start=period_start,
            period_end=period_end,
            total_chunks=total_chunks,
        )
        record_id = record.id

        with Session(self.engine) as s:
            if self._active_record(s, project_id) is not None:
                raise ConflictError(f"Project {project_id} already has an active sync")
            s.add(record)
            try:
                s.flush()
            except IntegrityError as exc:
                s.rollback()
                raise ConflictError(
                    f"Project {project_id} already has an active sync"
                ) from exc
            self._refresh_project_cache(s, project_id)
            s.commit()

        logger.info(
            "Started %s %s for project %s (%s → %s, %d chunks)",
            sync_type, record_id, project_id, period_start, period_end, total_chunks,
        )
        return record_id

    def claim(self, record_id: str) -> SyncProgressRecord:
        """Mark a pending record as syncing. No-op for a record already syncing."""
        with Session(self.engine) as s:
            record = self._load_mutable(s, record_id)
            if record.status == ProgressStatus.PENDING.value:
                self._begin(record)
                s.add(record)
                self._refresh_project_cache(s, record.project_id)
                s.commit()
                s.refresh(record)
            return record

    def set_current_chunk(
        self,
        record_id: str,
        marker: Optional[Union[DateRangeChunk, EntityChunk]],
    ) -> SyncProgressRecord:
        """Record which chunk is in flight."""
        with Session(self.engine) as s:
            record = self._load_mutable(s, record_id)
            record.current_chunk_json = encode_marker(marker)
            record.updated_at = datetime.utcnow()
            s.add(record)
            s.commit()
            s.refresh(record)
            return record

    def advance_chunk(self, record_id: str, records_in_chunk: int) -> SyncProgressRecord:
        """
        Count one finished chunk.

        A pending record is claimed implicitly. completed_chunks is clamped to
        total_chunks; reaching it completes the record.

        Raises:
            NotFoundError: no such record.
            TerminalStateError: record already completed or failed.
            InvalidArgumentError: negative records_in_chunk.
        """
        if records_in_chunk < 0:
            raise InvalidArgumentError("records_in_chunk must be >= 0")

        with Session(self.engine) as s:
            record = self._load_mutable(s, record_id)
            now = datetime.utcnow()
            if record.status == ProgressStatus.PENDING.value:
                self._begin(record, now)

            record.completed_chunks = min(record.completed_chunks + 1, record.total_chunks)
            record.records_synced += records_in_chunk
            record.current_chunk_json = None
            record.updated_at = now

            if record.completed_chunks >= record.total_chunks:
                record.status = ProgressStatus.COMPLETED.value
                record.completed_at = now
                logger.info(
                    "Progress %s completed (%d records)", record.id, record.records_synced
                )

            s.add(record)
            s.flush()
            self._refresh_project_cache(s, record.project_id)
            s.commit()
            s.refresh(record)
            return record

    def fail_backfill(self, record_id: str, error_message: str) -> SyncProgressRecord:
        """
        Move a record to failed.

        Idempotent when the record already failed with the same message.

        Raises:
            NotFoundError: no such record.
            TerminalStateError: completed, or failed with a different message.
        """
        with Session(self.engine) as s:
            record = s.get(SyncProgressRecord, record_id)
            if record is None:
                raise NotFoundError(f"Sync progress record {record_id} not found")
            if record.status == ProgressStatus.FAILED.value:
                if record.error_message == error_message:
                    return record
                raise TerminalStateError(
                    f"Sync progress record {record_id} already failed: {record.error_message}"
                )
            if record.is_terminal:
                raise TerminalStateError(
                    f"Sync progress record {record_id} is already {record.status}"
                )

            now = datetime.utcnow()
            record.status = ProgressStatus.FAILED.value
            record.error_message = error_message
            record.completed_at = now
            record.updated_at = now
            s.add(record)
            s.flush()
            self._refresh_project_cache(s, record.project_id)
            s.commit()
            s.refresh(record)

        logger.warning("Progress %s failed: %s", record_id, error_message)
        return record

    # ─── Reads ────────────────────────────────────────────────────────────────

    def get(self, record_id: str) -> SyncProgressRecord:
        with Session(self.engine) as s:
            record = s.get(SyncProgressRecord, record_id)
            if record is None:
                raise NotFoundError(f"Sync progress record {record_id} not found")
            return record

    def has_active(self, project_id: str) -> bool:
        with Session(self.engine) as s:
            return self._active_record(s, project_id) is not None

    def current_progress(self, project_id: str) -> Optional[SyncProgressSummary]:
        """Summary of the project's active record, or None when nothing is running."""
        with Session(self.engine) as s:
            record = self._active_record(s, project_id)
            return summarize_record(record) if record else None

    def history(self, project_id: str, limit: int = 20) -> List[SyncProgressRecord]:
        """Most recent records first, terminal ones included."""
        with Session(self.engine) as s:
            return list(s.exec(
                select(SyncProgressRecord)
                .where(SyncProgressRecord.project_id == project_id)
                .order_by(SyncProgressRecord.created_at.desc())
                .limit(limit)
            ).all())

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _active_record(self, s: Session, project_id: str) -> Optional[SyncProgressRecord]:
        return s.exec(
            select(SyncProgressRecord)
            .where(SyncProgressRecord.project_id == project_id)
            .where(SyncProgressRecord.status.in_(ACTIVE_PROGRESS_STATUSES))
            .order_by(SyncProgressRecord.created_at.desc())
        ).first()

    def _load_mutable(self, s: Session, record_id: str) -> SyncProgressRecord:
        record = s.get(SyncProgressRecord, record_id)
        if record is None:
            raise NotFoundError(f"Sync progress record {record_id} not found")
        if record.is_terminal:
            raise TerminalStateError(
                f"Sync progress record {record_id} is already {record.status}"
            )
        return record

    @staticmethod
    def _begin(record: SyncProgressRecord, now: Optional[datetime] = None) -> None:
        now = now or datetime.utcnow()
        record.status = ProgressStatus.SYNCING.value
        record.started_at = record.started_at or now
        record.updated_at = now

    def _refresh_project_cache(self, s: Session, project_id: str) -> None:
        """Recompute the denormalized progress fields on Project."""
        project = s.get(Project, project_id)
        if project is None:
            return

        record = self._active_record(s, project_id)
        if record is None:
            project.sync_progress_json = None
            project.webhook_status = WebhookStatus.IDLE.value
        else:
            project.sync_progress_json = summarize_record(record).model_dump_json()
            project.webhook_status = (
                WebhookStatus.IMPORTING_HISTORY.value
                if record.sync_type == HISTORICAL_BACKFILL
                else WebhookStatus.SYNCING.value
            )
        s.add(project)
