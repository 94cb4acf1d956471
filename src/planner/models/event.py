"""Calendar events. Synced rows carry the provider's UID in ``external_id``."""
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from planner.timeutil import utcnow

SYNC_SOURCE_MANUAL = "manual"


class Event(SQLModel, table=True):
    __tablename__ = "events"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    title: str
    description: Optional[str] = None
    start_date: datetime = Field(index=True)
    end_date: datetime
    location: Optional[str] = None
    type: str = "other"  # "meeting", "appointment", "deadline", "reminder", "other"
    status: str = "scheduled"  # "scheduled", "in_progress", "completed", "cancelled"

    # "manual" or the provider name, e.g. "gmail"
    sync_source: str = Field(default=SYNC_SOURCE_MANUAL, index=True)
    # provider name -> provider-native UID, e.g. {"gmail": "abc@google.com"}
    external_id: Dict[str, str] = Field(default_factory=dict, sa_column=Column(JSON))
    is_read_only: bool = False
    last_external_sync: Optional[datetime] = None
    last_notification_sent: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
