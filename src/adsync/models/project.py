"""Project (ad account) model.

Owned by project management; the sync core only writes last_sync_at,
webhook_status and sync_progress_json.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel


def generate_uuid() -> str:
    return str(uuid.uuid4())


class WebhookStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    IMPORTING_HISTORY = "importing_history"


class Project(SQLModel, table=True):
    """One row per ad account being monitored."""

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    name: str
    ad_account_id: str
    archived: bool = Field(default=False, index=True)

    last_sync_at: Optional[datetime] = None
    webhook_status: str = WebhookStatus.IDLE.value

    # Denormalized SyncProgressSummary, rewritten by ProgressTracker only
    sync_progress_json: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
