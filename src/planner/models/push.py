"""Web Push subscriptions and the delivery audit log."""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from planner.timeutil import utcnow

DEFAULT_ALARM_SETTINGS = {
    "enabled": False,
    "minutesBefore": 15,
    "soundEnabled": True,
    "showNotification": True,
}


class PushSubscription(SQLModel, table=True):
    """A browser push endpoint plus the user's alarm preferences for it."""

    __tablename__ = "push_subscriptions"
    __table_args__ = (UniqueConstraint("user_id", "endpoint", name="uq_push_user_endpoint"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    endpoint: str = Field(index=True)
    keys: Dict[str, str] = Field(default_factory=dict, sa_column=Column(JSON))  # p256dh, auth
    alarm_settings: Dict[str, Any] = Field(
        default_factory=lambda: dict(DEFAULT_ALARM_SETTINGS),
        sa_column=Column(JSON),
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def subscription_info(self) -> Dict[str, Any]:
        """The ``{endpoint, keys}`` shape the push transport expects."""
        return {"endpoint": self.endpoint, "keys": dict(self.keys or {})}


class NotificationLog(SQLModel, table=True):
    """Append-only record of every push attempt. Audit only."""

    __tablename__ = "push_notification_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    event_id: Optional[int] = Field(default=None, index=True)
    subscription_endpoint: Optional[str] = None
    payload: Optional[str] = None
    success: bool = False
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)
