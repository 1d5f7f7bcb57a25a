"""
SyncLog — append-only audit trail of sync attempts, plus statistics over it.

Entries are never updated or deleted here. The ``message`` column usually
holds JSON metadata written by encode_message():

    {"type": "resync", "records": 120, "elapsed": 3.2, "error": null}

but free-text messages from older writers are tolerated on read.
"""
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlmodel import Session, select

from adsync.errors import InvalidArgumentError
from adsync.models.project import Project
from adsync.models.sync import SyncLogEntry, SyncLogStatus
from adsync.sync.health import to_naive_utc

logger = logging.getLogger(__name__)


@dataclass
class RollingStats:
    success_count: int
    error_count: int
    success_rate: float  # 0.0 when there are no entries


@dataclass
class DayBucket:
    day: date
    success: int = 0
    error: int = 0

    @property
    def total(self) -> int:
        return self.success + self.error


def encode_message(
    sync_type: str,
    records: Optional[int] = None,
    elapsed: Optional[float] = None,
    error: Optional[str] = None,
) -> str:
    return json.dumps({
        "type": sync_type,
        "records": records,
        "elapsed": round(elapsed, 3) if elapsed is not None else None,
        "error": error,
    })


def decode_message(message: Optional[str]) -> Dict[str, Any]:
    """Parse a log message. Non-JSON text comes back as {"text": message}."""
    if not message:
        return {}
    try:
        data = json.loads(message)
    except ValueError:
        return {"text": message}
    return data if isinstance(data, dict) else {"text": message}


class SyncLog:
    """Reads and appends SyncLogEntry rows."""

    def __init__(self, engine):
        self.engine = engine

    def append(self, project_id: str, status: str, message: Optional[str] = None) -> SyncLogEntry:
        """Append one entry. Storage errors propagate to the caller."""
        try:
            status = SyncLogStatus(status).value
        except ValueError as exc:
            raise InvalidArgumentError(f"Unknown sync log status {status!r}") from exc

        entry = SyncLogEntry(project_id=project_id, status=status, message=message)
        with Session(self.engine) as s:
            s.add(entry)
            s.commit()
            s.refresh(entry)
        return entry

    def recent_entries(self, project_id: str, limit: int = 20) -> List[SyncLogEntry]:
        """Most recent first."""
        if limit < 1:
            raise InvalidArgumentError("limit must be >= 1")
        with Session(self.engine) as s:
            return list(s.exec(
                select(SyncLogEntry)
                .where(SyncLogEntry.project_id == project_id)
                .order_by(SyncLogEntry.created_at.desc())
                .limit(limit)
            ).all())

    def rolling_stats(
        self,
        project_id: str,
        window_days: int,
        now: Optional[datetime] = None,
    ) -> RollingStats:
        """Success/error counts over the last window_days."""
        now = to_naive_utc(now or datetime.utcnow())
        entries = self._entries_since(project_id, now - timedelta(days=window_days))

        success = sum(1 for e in entries if e.status == SyncLogStatus.SUCCESS.value)
        error = sum(1 for e in entries if e.status == SyncLogStatus.ERROR.value)
        total = success + error
        return RollingStats(
            success_count=success,
            error_count=error,
            success_rate=success / total if total else 0.0,
        )

    def daily_histogram(
        self,
        project_id: Optional[str],
        window_days: int,
        now: Optional[datetime] = None,
    ) -> List[DayBucket]:
        """
        One bucket per UTC day from (now - window_days) through today, inclusive.

        Days without entries are present with zero counts. With project_id=None
        entries from every non-archived project are aggregated.
        """
        if window_days < 0:
            raise InvalidArgumentError("window_days must be >= 0")
        now = to_naive_utc(now or datetime.utcnow())
        start = now - timedelta(days=window_days)

        first_day = start.date()
        buckets = [
            DayBucket(day=first_day + timedelta(days=i))
            for i in range((now.date() - first_day).days + 1)
        ]
        by_day = {b.day: b for b in buckets}

        # Window is whole calendar days, so include all of the first day.
        since = datetime.combine(first_day, datetime.min.time())
        for entry in self._entries_since(project_id, since):
            bucket = by_day.get(entry.created_at.date())
            if bucket is None:
                continue
            if entry.status == SyncLogStatus.SUCCESS.value:
                bucket.success += 1
            elif entry.status == SyncLogStatus.ERROR.value:
                bucket.error += 1
        return buckets

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _entries_since(self, project_id: Optional[str], since: datetime) -> List[SyncLogEntry]:
        stmt = select(SyncLogEntry).where(SyncLogEntry.created_at >= since)
        if project_id is not None:
            stmt = stmt.where(SyncLogEntry.project_id == project_id)
        else:
            stmt = stmt.join(Project, Project.id == SyncLogEntry.project_id).where(
                Project.archived == False  # noqa: E712
            )
        with Session(self.engine) as s:
            return list(s.exec(stmt.order_by(SyncLogEntry.created_at)).all())
