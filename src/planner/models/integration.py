"""Per-user OAuth credentials and sync state for one calendar provider."""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from planner.timeutil import utcnow

DEFAULT_LABEL_FILTERS = ["INBOX"]

SYNC_IDLE = "idle"
SYNC_SYNCING = "syncing"
SYNC_ERROR = "error"


class Integration(SQLModel, table=True):
    """One row per (user, provider). Tokens are only ever stored encrypted."""

    __tablename__ = "integrations"
    __table_args__ = (UniqueConstraint("user_id", "provider", name="uq_integration_user_provider"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    provider: str = Field(default="gmail")

    access_token: str  # encrypted
    refresh_token: str  # encrypted
    expires_at: datetime

    sync_cursor: Optional[str] = None  # Gmail historyId
    status: str = Field(default=SYNC_IDLE, index=True)  # "idle", "syncing", "error"
    last_error: Optional[str] = None
    sync_started_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = Field(default=None, index=True)
    label_filters: List[str] = Field(
        default_factory=lambda: list(DEFAULT_LABEL_FILTERS),
        sa_column=Column(JSON),
    )

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
