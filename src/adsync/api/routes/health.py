"""Project sync-health routes."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from adsync.db.engine import get_engine
from adsync.sync.health import rank_projects, summarize
from adsync.sync.orchestrator import load_projects

router = APIRouter()


class ProjectHealthItem(BaseModel):
    project_id: str
    name: str
    status: str
    hours_since_sync: Optional[int]
    last_sync_at: Optional[datetime]
    webhook_status: str


class HealthResponse(BaseModel):
    healthy: int
    warning: int
    critical: int
    never_synced: int
    projects: List[ProjectHealthItem]


@router.get("/projects", response_model=HealthResponse)
def project_health(include_archived: bool = False, engine=Depends(get_engine)):
    """All projects ranked critical → warning → never_synced → healthy."""
    health = rank_projects(
        load_projects(engine, include_archived=include_archived),
        datetime.utcnow(),
    )
    counts = summarize(health)
    return HealthResponse(
        healthy=counts.healthy,
        warning=counts.warning,
        critical=counts.critical,
        never_synced=counts.never_synced,
        projects=[
            ProjectHealthItem(
                project_id=h.project.id,
                name=h.project.name,
                status=h.status.value,
                hours_since_sync=h.hours_since_sync,
                last_sync_at=h.project.last_sync_at,
                webhook_status=h.project.webhook_status,
            )
            for h in health
        ],
    )
