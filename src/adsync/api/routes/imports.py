"""Monthly import ledger routes."""
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from adsync.db.engine import get_engine
from adsync.models.sync import MonthlyImportRecord
from adsync.sync.ledger import MonthlyImportLedger

router = APIRouter()


class ScheduleMonthRequest(BaseModel):
    year: int
    month: int


class CompletedRequest(BaseModel):
    records_count: int = 0


class ErrorRequest(BaseModel):
    error_message: str


class MonthsResponse(BaseModel):
    completed_months: int
    total_months: int
    total_records: int
    progress_pct: float
    months: List[MonthlyImportRecord]


@router.get("/{project_id}/months", response_model=MonthsResponse)
def list_months(project_id: str, engine=Depends(get_engine)):
    ledger = MonthlyImportLedger(engine)
    stats = ledger.stats(project_id)
    return MonthsResponse(
        completed_months=stats.completed,
        total_months=stats.total,
        total_records=stats.total_records,
        progress_pct=stats.progress_pct,
        months=ledger.months(project_id),
    )


@router.post("/{project_id}/months", response_model=MonthlyImportRecord)
def schedule_month(project_id: str, request: ScheduleMonthRequest, engine=Depends(get_engine)):
    return MonthlyImportLedger(engine).schedule_month(project_id, request.year, request.month)


@router.post("/months/{record_id}/started", response_model=MonthlyImportRecord)
def mark_started(record_id: str, engine=Depends(get_engine)):
    return MonthlyImportLedger(engine).mark_started(record_id)


@router.post("/months/{record_id}/completed", response_model=MonthlyImportRecord)
def mark_completed(record_id: str, request: CompletedRequest, engine=Depends(get_engine)):
    return MonthlyImportLedger(engine).mark_completed(record_id, request.records_count)


@router.post("/months/{record_id}/error", response_model=MonthlyImportRecord)
def mark_error(record_id: str, request: ErrorRequest, engine=Depends(get_engine)):
    return MonthlyImportLedger(engine).mark_error(record_id, request.error_message)
