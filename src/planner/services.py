"""Process-wide service instances, built lazily on first use.

The credential store must be shared by every request of the process: the
CSRF state recorded when the consent URL is issued is read back by the
OAuth callback.
"""
from typing import Optional

from planner.config import get_settings
from planner.db.engine import get_engine
from planner.google.auth import CredentialStore
from planner.google.encryption import TokenCipher
from planner.google.oauth import GoogleOAuthClient
from planner.google.sync_service import CalendarSyncService
from planner.notifications.push import WebPushSender
from planner.notifications.service import NotificationService

_credential_store: Optional[CredentialStore] = None
_sync_service: Optional[CalendarSyncService] = None
_notification_service: Optional[NotificationService] = None


def get_credential_store() -> CredentialStore:
    global _credential_store
    if _credential_store is None:
        _credential_store = CredentialStore(
            get_engine(),
            GoogleOAuthClient.from_settings(),
            TokenCipher.from_settings(),
        )
    return _credential_store


def get_sync_service() -> CalendarSyncService:
    global _sync_service
    if _sync_service is None:
        _sync_service = CalendarSyncService(get_credential_store(), get_engine())
    return _sync_service


def get_notification_service() -> NotificationService:
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService(
            get_engine(),
            WebPushSender.from_settings(),
            default_minutes_before=get_settings().default_minutes_before,
        )
    return _notification_service
