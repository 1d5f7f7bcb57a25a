"""Resync triggers, progress callbacks and audit-log reads."""
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session

from adsync.config import get_settings
from adsync.db.engine import get_engine
from adsync.errors import AlreadySyncingError
from adsync.models.project import Project
from adsync.models.sync import SyncLogEntry, SyncProgressRecord
from adsync.notify import build_notifier
from adsync.sync.audit import SyncLog
from adsync.sync.executor import HttpSyncExecutor
from adsync.sync.markers import DEFAULT_CHUNK_DAYS, ChunkMarker, plan_chunks
from adsync.sync.orchestrator import ResyncOrchestrator, load_projects
from adsync.sync.progress import ProgressTracker, SyncProgressSummary

router = APIRouter()


def get_orchestrator(engine=Depends(get_engine)) -> ResyncOrchestrator:
    settings = get_settings()
    return ResyncOrchestrator(
        engine=engine,
        executor=HttpSyncExecutor(settings.executor_base_url, settings.executor_api_key),
        notifier=build_notifier(settings),
        settings=settings,
    )


# ─── Resync ───────────────────────────────────────────────────────────────────

class ResyncResponse(BaseModel):
    project_id: str
    status: str  # "success" | "already_syncing"
    records_imported: Optional[int] = None


class BatchFailureItem(BaseModel):
    project_id: str
    error: str


class BatchResponse(BaseModel):
    succeeded: List[ResyncResponse]
    failed: List[BatchFailureItem]
    skipped: List[str]


@router.post("/resync/{project_id}", response_model=ResyncResponse)
async def resync_project(
    project_id: str,
    engine=Depends(get_engine),
    orchestrator: ResyncOrchestrator = Depends(get_orchestrator),
):
    """Resync one project now. A sync already in flight is reported, not treated as an error."""
    with Session(engine) as s:
        project = s.get(Project, project_id)
    if project is None:
        raise HTTPException(status_code=404, detail=f"Project {project_id} not found")

    try:
        result = await orchestrator.resync_one(project)
    except AlreadySyncingError:
        return ResyncResponse(project_id=project_id, status="already_syncing")
    return ResyncResponse(
        project_id=project_id,
        status="success",
        records_imported=result.records_imported,
    )


@router.post("/resync-triage", response_model=BatchResponse)
async def resync_triage(
    engine=Depends(get_engine),
    orchestrator: ResyncOrchestrator = Depends(get_orchestrator),
):
    """Resync every non-archived project that is stale or has never synced."""
    result = await orchestrator.resync_triage(load_projects(engine))
    return BatchResponse(
        succeeded=[
            ResyncResponse(project_id=r.project_id, status="success", records_imported=r.records_imported)
            for r in result.succeeded
        ],
        failed=[BatchFailureItem(project_id=f.project_id, error=f.error) for f in result.failed],
        skipped=result.skipped,
    )


# ─── Progress (read + executor callbacks) ─────────────────────────────────────

class StartBackfillRequest(BaseModel):
    project_id: str
    period_start: date
    period_end: date
    total_chunks: Optional[int] = None  # derived from chunk_days when omitted
    chunk_days: int = DEFAULT_CHUNK_DAYS


class AdvanceRequest(BaseModel):
    records_in_chunk: int = 0


class FailRequest(BaseModel):
    error_message: str


class ChunkRequest(BaseModel):
    marker: Optional[ChunkMarker] = None  # None clears the in-flight marker


@router.get("/progress/{project_id}", response_model=Optional[SyncProgressSummary])
def current_progress(project_id: str, engine=Depends(get_engine)):
    return ProgressTracker(engine).current_progress(project_id)


@router.post("/progress", status_code=201)
def start_backfill(request: StartBackfillRequest, engine=Depends(get_engine)):
    total_chunks = request.total_chunks
    if total_chunks is None:
        total_chunks = len(plan_chunks(request.period_start, request.period_end, request.chunk_days))
    record_id = ProgressTracker(engine).start_backfill(
        request.project_id, request.period_start, request.period_end, total_chunks,
    )
    return {"id": record_id, "total_chunks": total_chunks}


@router.post("/progress/{record_id}/claim", response_model=SyncProgressRecord)
def claim(record_id: str, engine=Depends(get_engine)):
    return ProgressTracker(engine).claim(record_id)


@router.post("/progress/{record_id}/chunk", response_model=SyncProgressRecord)
def set_current_chunk(record_id: str, request: ChunkRequest, engine=Depends(get_engine)):
    return ProgressTracker(engine).set_current_chunk(record_id, request.marker)


@router.post("/progress/{record_id}/advance", response_model=SyncProgressRecord)
def advance_chunk(record_id: str, request: AdvanceRequest, engine=Depends(get_engine)):
    return ProgressTracker(engine).advance_chunk(record_id, request.records_in_chunk)


@router.post("/progress/{record_id}/fail", response_model=SyncProgressRecord)
def fail_backfill(record_id: str, request: FailRequest, engine=Depends(get_engine)):
    return ProgressTracker(engine).fail_backfill(record_id, request.error_message)


# ─── Audit log ────────────────────────────────────────────────────────────────

class StatsResponse(BaseModel):
    success_count: int
    error_count: int
    success_rate: float


class DayBucketResponse(BaseModel):
    date: date
    success: int
    error: int
    total: int


@router.get("/logs/{project_id}", response_model=List[SyncLogEntry])
def recent_logs(project_id: str, limit: int = 20, engine=Depends(get_engine)):
    return SyncLog(engine).recent_entries(project_id, limit)


@router.get("/stats/{project_id}", response_model=StatsResponse)
def rolling_stats(project_id: str, window_days: int = 7, engine=Depends(get_engine)):
    stats = SyncLog(engine).rolling_stats(project_id, window_days, datetime.utcnow())
    return StatsResponse(
        success_count=stats.success_count,
        error_count=stats.error_count,
        success_rate=stats.success_rate,
    )


@router.get("/histogram", response_model=List[DayBucketResponse])
def daily_histogram(
    project_id: Optional[str] = None,
    window_days: int = 14,
    engine=Depends(get_engine),
):
    buckets = SyncLog(engine).daily_histogram(project_id, window_days, datetime.utcnow())
    return [
        DayBucketResponse(date=b.day, success=b.success, error=b.error, total=b.total)
        for b in buckets
    ]
