"""
Sync health classification from a project's last successful sync time.

Public API:
  classify(last_sync_at, now)       → HealthStatus
  hours_since_sync(last_sync_at, now) → Optional[int]
  rank_projects(projects, now)      → List[ProjectHealth]
  summarize(health)                 → HealthCounts

HealthStatus:
  HEALTHY       — synced within the last 24h (exactly 24h still counts)
  WARNING       — more than 24h, at most 48h
  CRITICAL      — more than 48h
  NEVER_SYNCED  — last_sync_at is None

Ranking puts NEVER_SYNCED above HEALTHY: a project that has never imported
anything needs an operator before one that is merely fine.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable, List, Optional

HEALTHY_MAX = timedelta(hours=24)
WARNING_MAX = timedelta(hours=48)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    NEVER_SYNCED = "never_synced"


# Lower value = triaged first
SEVERITY_ORDER = {
    HealthStatus.CRITICAL: 0,
    HealthStatus.WARNING: 1,
    HealthStatus.NEVER_SYNCED: 2,
    HealthStatus.HEALTHY: 3,
}

NEEDS_ATTENTION = (HealthStatus.CRITICAL, HealthStatus.WARNING, HealthStatus.NEVER_SYNCED)


@dataclass
class ProjectHealth:
    """Health of one project at a point in time."""
    project: Any
    status: HealthStatus
    hours_since_sync: Optional[int]


@dataclass
class HealthCounts:
    healthy: int = 0
    warning: int = 0
    critical: int = 0
    never_synced: int = 0

    @property
    def needs_attention(self) -> int:
        return self.warning + self.critical + self.never_synced


def to_naive_utc(value: datetime) -> datetime:
    """Drop tzinfo after converting to UTC. SQLite hands back naive values."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def classify(last_sync_at: Optional[datetime], now: datetime) -> HealthStatus:
    """Map a last-sync timestamp to a HealthStatus. Pure and total."""
    if last_sync_at is None:
        return HealthStatus.NEVER_SYNCED

    gap = to_naive_utc(now) - to_naive_utc(last_sync_at)
    if gap <= HEALTHY_MAX:
        return HealthStatus.HEALTHY
    if gap <= WARNING_MAX:
        return HealthStatus.WARNING
    return HealthStatus.CRITICAL


def hours_since_sync(last_sync_at: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole hours elapsed since the last sync (floored), or None if never synced."""
    if last_sync_at is None:
        return None
    gap = to_naive_utc(now) - to_naive_utc(last_sync_at)
    return int(gap.total_seconds() * 1000) // 3_600_000


def rank_projects(projects: Iterable[Any], now: datetime) -> List[ProjectHealth]:
    """Classify every project and order them critical → warning → never_synced → healthy.

    Projects only need a ``last_sync_at`` attribute. The sort is stable, so
    projects with the same status keep their input order.
    """
    health = [
        ProjectHealth(
            project=p,
            status=classify(p.last_sync_at, now),
            hours_since_sync=hours_since_sync(p.last_sync_at, now),
        )
        for p in projects
    ]
    health.sort(key=lambda h: SEVERITY_ORDER[h.status])
    return health


def summarize(health: Iterable[ProjectHealth]) -> HealthCounts:
    counts = HealthCounts()
    for h in health:
        setattr(counts, h.status.value, getattr(counts, h.status.value) + 1)
    return counts
