"""
ResyncOrchestrator — on-demand and bulk re-synchronization of projects.

Flow for resync_one(project):
  1. Guard: open a one-chunk "resync" progress record. Fails with
     AlreadySyncingError if the project already has an active record.
  2. Dispatch: build the payload, invoke the executor, await the reply
     (bounded by dispatch_timeout_seconds).
  3. Success → advance the progress record, append a "success" log entry,
     set Project.last_sync_at = now.
     Failure → fail the progress record, append an "error" log entry,
     raise SyncError.

Each dispatch is a single attempt. Retrying is the user's call.

resync_many() runs projects strictly one after another with a fixed pause
between jobs, so this orchestrator never has more than one job in flight.
Per-project failures are collected and the batch moves on; only
InvalidArgumentError aborts it, because it means the caller passed
something bad. Whatever ends a job early, its progress record is failed
first so the project is never left locked.
"""
import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional, Tuple

from sqlmodel import Session, select

from adsync.config import Settings, get_settings
from adsync.errors import AlreadySyncingError, ConflictError, InvalidArgumentError, SyncError
from adsync.models.project import Project
from adsync.models.sync import SyncLogStatus
from adsync.notify import LogNotifier, Notifier, Severity
from adsync.sync.audit import SyncLog, encode_message
from adsync.sync.executor import ExecutorResponse, SyncExecutor, build_payload, parse_response
from adsync.sync.health import NEEDS_ATTENTION, rank_projects, to_naive_utc
from adsync.sync.progress import ProgressTracker

logger = logging.getLogger(__name__)

RESYNC_SYNC_TYPE = "resync"
DEFAULT_LOOKBACK_DAYS = 90
_PRESET_RE = re.compile(r"^last_(\d+)d$")


class JobState(str, Enum):
    IDLE = "idle"
    DISPATCHING = "dispatching"
    AWAITING_RESULT = "awaiting_result"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_ALLOWED = {
    JobState.IDLE: {JobState.DISPATCHING},
    JobState.DISPATCHING: {JobState.AWAITING_RESULT, JobState.FAILED},
    JobState.AWAITING_RESULT: {JobState.SUCCEEDED, JobState.FAILED},
    JobState.SUCCEEDED: set(),
    JobState.FAILED: set(),
}


@dataclass
class DispatchJob:
    """One executor dispatch and the states it went through."""
    project_id: str
    payload: dict = field(default_factory=dict)
    state: JobState = JobState.IDLE
    history: List[JobState] = field(default_factory=lambda: [JobState.IDLE])
    records_imported: int = 0
    error_message: Optional[str] = None

    def move_to(self, state: JobState) -> None:
        if state not in _ALLOWED[self.state]:
            raise RuntimeError(f"Illegal dispatch transition {self.state.value} → {state.value}")
        self.state = state
        self.history.append(state)

    def fail(self, message: str) -> None:
        self.error_message = message
        self.move_to(JobState.FAILED)


@dataclass
class ResyncResult:
    project_id: str
    records_imported: int
    elapsed_seconds: float
    progress_record_id: Optional[str] = None


@dataclass
class BatchFailure:
    project_id: str
    error: str


@dataclass
class BatchResult:
    succeeded: List[ResyncResult] = field(default_factory=list)
    failed: List[BatchFailure] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)  # already syncing

    @property
    def attempted(self) -> int:
        return len(self.succeeded) + len(self.failed) + len(self.skipped)


def preset_period(date_preset: Optional[str], today: date) -> Tuple[date, date]:
    """Calendar range covered by a "last_Nd" preset (inclusive of today)."""
    days = DEFAULT_LOOKBACK_DAYS
    match = _PRESET_RE.match(date_preset or "")
    if match:
        days = max(int(match.group(1)), 1)
    return today - timedelta(days=days - 1), today


def load_projects(engine, include_archived: bool = False) -> List[Project]:
    with Session(engine) as s:
        stmt = select(Project)
        if not include_archived:
            stmt = stmt.where(Project.archived == False)  # noqa: E712
        return list(s.exec(stmt.order_by(Project.name)).all())


class ResyncOrchestrator:
    """Sequences resync dispatches and feeds results back into the store."""

    def __init__(
        self,
        engine,
        executor: SyncExecutor,
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
            executor: SyncExecutor (HttpSyncExecutor, or AsyncMock in tests).
            notifier: Where user-facing messages go. Defaults to LogNotifier.
            settings: Defaults to get_settings().
            clock: Returns "now" (UTC). Defaults to datetime.utcnow.
        """
        self.engine = engine
        self.executor = executor
        self.notifier = notifier or LogNotifier()
        self.settings = settings or get_settings()
        self._clock = clock or datetime.utcnow
        self.tracker = ProgressTracker(engine)
        self.sync_log = SyncLog(engine)

    # ─── Public API ───────────────────────────────────────────────────────────

    async def resync_one(self, project: Any, date_preset: Optional[str] = None) -> ResyncResult:
        """
        Resync a single project.

        Raises:
            InvalidArgumentError: project without id or ad account.
            AlreadySyncingError: a sync for this project is already active.
            SyncError: the executor failed, timed out, or was unreachable.
        """
        project_id = getattr(project, "id", None)
        ad_account_id = getattr(project, "ad_account_id", None)
        if not project_id:
            raise InvalidArgumentError("Project has no id")
        if not ad_account_id:
            raise InvalidArgumentError(f"Project {project_id} has no ad account")
        name = getattr(project, "name", None) or project_id
        date_preset = date_preset or self.settings.default_date_preset

        record_id = self._open_progress(project_id, name, date_preset)

        self.notifier.notify(f"Syncing {name}...", Severity.INFO)
        job = DispatchJob(project_id=project_id)
        started = time.monotonic()
        try:
            await self._dispatch(job, ad_account_id, date_preset)
            records = job.records_imported
            self.tracker.advance_chunk(record_id, records)
        except SyncError as exc:
            elapsed = time.monotonic() - started
            self._record_failure(project_id, record_id, exc.message, elapsed)
            self.notifier.notify(f"Error syncing {name}: {exc.message}", Severity.ERROR)
            raise
        except BaseException as exc:
            # Cancelled or crashed mid-job: the record must not stay active.
            elapsed = time.monotonic() - started
            self._release(project_id, record_id, str(exc) or exc.__class__.__name__, elapsed)
            raise

        elapsed = time.monotonic() - started
        self.sync_log.append(
            project_id,
            SyncLogStatus.SUCCESS.value,
            encode_message(RESYNC_SYNC_TYPE, records=records, elapsed=elapsed),
        )
        self._mark_synced(project_id)

        logger.info("Resynced project %s: %d records in %.1fs", project_id, records, elapsed)
        self.notifier.notify(f"{name}: sync complete, {records} records", Severity.SUCCESS)
        return ResyncResult(
            project_id=project_id,
            records_imported=records,
            elapsed_seconds=elapsed,
            progress_record_id=record_id,
        )

    async def resync_many(self, projects: Iterable[Any]) -> BatchResult:
        """Resync each project once, in order, pausing between jobs."""
        projects = list(projects)
        result = BatchResult()
        pacing = self.settings.resync_pacing_seconds

        for index, project in enumerate(projects):
            if index > 0 and pacing > 0:
                await asyncio.sleep(pacing)

            project_id = getattr(project, "id", None)
            try:
                outcome = await self.resync_one(project)
            except AlreadySyncingError:
                result.skipped.append(project_id)
            except InvalidArgumentError:
                raise
            except (SyncError, ConflictError) as exc:
                result.failed.append(BatchFailure(project_id=project_id, error=str(exc)))
            except Exception as exc:
                logger.exception("Unexpected error resyncing project %s", project_id)
                result.failed.append(
                    BatchFailure(project_id=project_id, error=str(exc) or exc.__class__.__name__)
                )
            else:
                result.succeeded.append(outcome)

        logger.info(
            "Batch resync finished: %d succeeded, %d failed, %d skipped",
            len(result.succeeded), len(result.failed), len(result.skipped),
        )
        if projects:
            severity = Severity.ERROR if result.failed else Severity.SUCCESS
            self.notifier.notify(
                f"Batch sync finished: {len(result.succeeded)} ok, "
                f"{len(result.failed)} failed, {len(result.skipped)} already running",
                severity,
            )
        return result

    def triage_queue(self, projects: Iterable[Any], now: Optional[datetime] = None) -> List[Any]:
        """Projects that need a resync, most severe first."""
        now = now or self._now()
        return [h.project for h in rank_projects(projects, now) if h.status in NEEDS_ATTENTION]

    async def resync_triage(self, projects: Iterable[Any], now: Optional[datetime] = None) -> BatchResult:
        """Triage, then resync everything that needs attention."""
        queue = self.triage_queue(projects, now)
        if not queue:
            self.notifier.notify("All projects are in sync", Severity.INFO)
            return BatchResult()
        self.notifier.notify(f"Syncing {len(queue)} projects...", Severity.INFO)
        return await self.resync_many(queue)

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _now(self) -> datetime:
        return to_naive_utc(self._clock())

    def _open_progress(self, project_id: str, name: str, date_preset: str) -> str:
        """Create and claim the single-chunk record that marks this resync as active."""
        if self.tracker.has_active(project_id):
            self.notifier.notify(f"{name} is already syncing", Severity.INFO)
            raise AlreadySyncingError(project_id)

        period_start, period_end = preset_period(date_preset, self._now().date())
        try:
            record_id = self.tracker.start_backfill(
                project_id, period_start, period_end, 1, sync_type=RESYNC_SYNC_TYPE,
            )
        except ConflictError as exc:
            # Lost the race to another session between the check and the insert.
            self.notifier.notify(f"{name} is already syncing", Severity.INFO)
            raise AlreadySyncingError(project_id) from exc
        self.tracker.claim(record_id)
        return record_id

    async def _dispatch(self, job: DispatchJob, ad_account_id: str, date_preset: str) -> ExecutorResponse:
        job.move_to(JobState.DISPATCHING)
        job.payload = build_payload(job.project_id, ad_account_id, date_preset)
        call = self.executor.invoke(self.settings.executor_function, job.payload)
        job.move_to(JobState.AWAITING_RESULT)

        try:
            raw = await asyncio.wait_for(call, timeout=self.settings.dispatch_timeout_seconds)
        except asyncio.TimeoutError:
            job.fail("timeout")
            raise SyncError("timeout")
        except SyncError as exc:
            job.fail(exc.message)
            raise
        except Exception as exc:
            # Transport failures count the same as success=false.
            job.fail(str(exc) or exc.__class__.__name__)
            raise SyncError(job.error_message) from exc

        response = parse_response(raw)
        if not response.success:
            message = response.error or "Unknown executor error"
            job.fail(message)
            raise SyncError(message)

        try:
            records = response.records_imported
        except (TypeError, ValueError):
            records = -1
        if records < 0:
            job.fail("Malformed executor response")
            raise SyncError(job.error_message)

        job.records_imported = records
        job.move_to(JobState.SUCCEEDED)
        return response

    def _record_failure(self, project_id: str, record_id: str, message: str, elapsed: float) -> None:
        self.tracker.fail_backfill(record_id, message)
        self.sync_log.append(
            project_id,
            SyncLogStatus.ERROR.value,
            encode_message(RESYNC_SYNC_TYPE, elapsed=elapsed, error=message),
        )
        logger.warning("Resync of project %s failed: %s", project_id, message)

    def _release(self, project_id: str, record_id: str, message: str, elapsed: float) -> None:
        """Fail the progress record after an unexpected error, without masking that error."""
        try:
            self._record_failure(project_id, record_id, message, elapsed)
        except Exception:
            logger.exception("Could not release progress record %s", record_id)

    def _mark_synced(self, project_id: str) -> None:
        with Session(self.engine) as s:
            project = s.get(Project, project_id)
            if project is None:
                return
            project.last_sync_at = self._now()
            s.add(project)
            s.commit()
