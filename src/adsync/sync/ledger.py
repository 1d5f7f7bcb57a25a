"""
MonthlyImportLedger — per (project, year, month) historical import bookkeeping.

Independent of chunked backfills: each calendar month is imported whole by
the executor, and this ledger records whether that happened.

Idempotency: (project_id, year, month) is the natural key with a unique
constraint. Re-scheduling a month updates the existing row in place:
  - absent             → new row, status="pending"
  - pending/importing  → returned unchanged (no duplicate work)
  - completed/error    → reset to "pending", retry_count += 1
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from adsync.errors import InvalidArgumentError, NotFoundError, TerminalStateError
from adsync.models.sync import MonthlyImportRecord, MonthStatus

logger = logging.getLogger(__name__)


@dataclass
class LedgerSummary:
    completed_months: int
    total_months: int


@dataclass
class LedgerStats:
    """Per-status month counts for one project."""
    total: int = 0
    pending: int = 0
    importing: int = 0
    completed: int = 0
    error: int = 0
    total_records: int = 0

    @property
    def progress_pct(self) -> float:
        return (self.completed / self.total) * 100 if self.total else 0.0


def validate_month(year: int, month: int) -> None:
    if not 1 <= month <= 12:
        raise InvalidArgumentError(f"month must be in [1, 12], got {month}")
    if year < 1:
        raise InvalidArgumentError(f"year must be positive, got {year}")


def next_month(year: int, month: int, today: date) -> Optional[Tuple[int, int]]:
    """The calendar month after (year, month), or None once past today's month."""
    validate_month(year, month)
    year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    if (year, month) > (today.year, today.month):
        return None
    return year, month


class MonthlyImportLedger:
    """Owns MonthlyImportRecord rows."""

    def __init__(self, engine):
        self.engine = engine

    def schedule_month(self, project_id: str, year: int, month: int) -> MonthlyImportRecord:
        """Create or re-arm the ledger row for a month. See module docstring."""
        validate_month(year, month)

        with Session(self.engine) as s:
            record = self._find(s, project_id, year, month)

            if record is None:
                record = MonthlyImportRecord(project_id=project_id, year=year, month=month)
                s.add(record)
                try:
                    s.commit()
                except IntegrityError:
                    # Another writer created the row first; use theirs.
                    s.rollback()
                    record = self._find(s, project_id, year, month)
                    return record
                s.refresh(record)
                logger.info("Scheduled %04d-%02d for project %s", year, month, project_id)
                return record

            if record.is_terminal:
                record.status = MonthStatus.PENDING.value
                record.retry_count += 1
                record.error_message = None
                record.started_at = None
                record.completed_at = None
                s.add(record)
                s.commit()
                s.refresh(record)
                logger.info(
                    "Re-scheduled %04d-%02d for project %s (retry %d)",
                    year, month, project_id, record.retry_count,
                )
            return record

    def mark_started(self, record_id: str) -> MonthlyImportRecord:
        with Session(self.engine) as s:
            record = self._load_mutable(s, record_id)
            record.status = MonthStatus.IMPORTING.value
            record.started_at = datetime.utcnow()
            s.add(record)
            s.commit()
            s.refresh(record)
            return record

    def mark_completed(self, record_id: str, records_count: int) -> MonthlyImportRecord:
        if records_count < 0:
            raise InvalidArgumentError("records_count must be >= 0")
        with Session(self.engine) as s:
            record = self._load_mutable(s, record_id)
            record.status = MonthStatus.COMPLETED.value
            record.records_count = records_count
            record.error_message = None
            record.completed_at = datetime.utcnow()
            s.add(record)
            s.commit()
            s.refresh(record)
            return record

    def mark_error(self, record_id: str, error_message: str) -> MonthlyImportRecord:
        with Session(self.engine) as s:
            record = self._load_mutable(s, record_id)
            record.status = MonthStatus.ERROR.value
            record.error_message = error_message
            record.completed_at = datetime.utcnow()
            s.add(record)
            s.commit()
            s.refresh(record)
        logger.warning(
            "Month %04d-%02d for project %s failed: %s",
            record.year, record.month, record.project_id, error_message,
        )
        return record

    # ─── Reads ────────────────────────────────────────────────────────────────

    def get(self, record_id: str) -> MonthlyImportRecord:
        with Session(self.engine) as s:
            record = s.get(MonthlyImportRecord, record_id)
            if record is None:
                raise NotFoundError(f"Monthly import record {record_id} not found")
            return record

    def months(self, project_id: str) -> List[MonthlyImportRecord]:
        """All ledger rows for a project, oldest month first."""
        with Session(self.engine) as s:
            return list(s.exec(
                select(MonthlyImportRecord)
                .where(MonthlyImportRecord.project_id == project_id)
                .order_by(MonthlyImportRecord.year, MonthlyImportRecord.month)
            ).all())

    def months_by_year(self, project_id: str) -> Dict[int, List[MonthlyImportRecord]]:
        grouped: Dict[int, List[MonthlyImportRecord]] = {}
        for record in self.months(project_id):
            grouped.setdefault(record.year, []).append(record)
        return grouped

    def failed_months(self, project_id: str) -> List[MonthlyImportRecord]:
        return [m for m in self.months(project_id) if m.status == MonthStatus.ERROR.value]

    def summary(self, project_id: str) -> LedgerSummary:
        """Completed vs scheduled months. Months never scheduled are not counted."""
        stats = self.stats(project_id)
        return LedgerSummary(completed_months=stats.completed, total_months=stats.total)

    def stats(self, project_id: str) -> LedgerStats:
        stats = LedgerStats()
        for record in self.months(project_id):
            stats.total += 1
            setattr(stats, record.status, getattr(stats, record.status) + 1)
            stats.total_records += record.records_count or 0
        return stats

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _find(self, s: Session, project_id: str, year: int, month: int) -> Optional[MonthlyImportRecord]:
        return s.exec(
            select(MonthlyImportRecord).where(
                MonthlyImportRecord.project_id == project_id,
                MonthlyImportRecord.year == year,
                MonthlyImportRecord.month == month,
            )
        ).first()

    def _load_mutable(self, s: Session, record_id: str) -> MonthlyImportRecord:
        record = s.get(MonthlyImportRecord, record_id)
        if record is None:
            raise NotFoundError(f"Monthly import record {record_id} not found")
        if record.is_terminal:
            raise TerminalStateError(
                f"Monthly import record {record_id} is already {record.status}"
            )
        return record
