"""Gmail integration routes: OAuth round-trip, manual sync, status, preferences."""
import logging
from datetime import datetime
from typing import List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from planner.config import get_settings
from planner.errors import CredentialError, EncryptionConfigError, IntegrationNotFound, OAuthConfigError
from planner.google.auth import CredentialStore
from planner.google.sync_service import CalendarSyncService
from planner.models.integration import SYNC_SYNCING
from planner.services import get_credential_store, get_sync_service

logger = logging.getLogger(__name__)

router = APIRouter()


class UserRequest(BaseModel):
    user_id: str


class PreferencesRequest(BaseModel):
    user_id: str
    label_filters: List[str]


class IntegrationStatusResponse(BaseModel):
    connected: bool
    sync_status: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    sync_error: Optional[str] = None
    sync_cursor: Optional[str] = None
    label_filters: Optional[List[str]] = None


class SyncedEventResponse(BaseModel):
    id: int
    title: str
    start_date: datetime
    end_date: datetime
    location: Optional[str] = None
    sync_source: str
    external_id: dict


def _redirect(status: str, **params: str) -> RedirectResponse:
    query = urlencode({"integrationStatus": status, **params})
    return RedirectResponse(f"{get_settings().frontend_url}?{query}", status_code=302)


async def _do_sync(user_id: str) -> None:
    """Background task: incremental sync for one user."""
    try:
        await get_sync_service().incremental_sync(user_id)
    except Exception as exc:
        logger.error("Background sync error for user %s: %s", user_id, exc)


@router.get("/url")
def authorization_url(
    user_id: str,
    credentials: CredentialStore = Depends(get_credential_store),
):
    """Consent URL the client should open to connect Gmail."""
    try:
        url = credentials.generate_authorization_request(user_id)
    except OAuthConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    return {"auth_url": url}


@router.get("/callback")
async def oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    credentials: CredentialStore = Depends(get_credential_store),
):
    """OAuth redirect target. Always answers with a redirect to the frontend."""
    if error:
        logger.warning("OAuth error: %s", error)
        return _redirect("gmail_error", error=error)
    if not code or not state:
        return _redirect("gmail_error", error="Missing code or state")

    try:
        user_id = await credentials.complete_authorization(code, state)
    except (CredentialError, EncryptionConfigError) as exc:
        logger.error("Error in Gmail callback: %s", exc)
        return _redirect("gmail_error", error=str(exc))

    logger.info("Gmail OAuth completed for user %s", user_id)
    return _redirect("gmail_connected", userId=user_id)


@router.post("/sync")
def trigger_sync(
    request: UserRequest,
    background_tasks: BackgroundTasks,
    credentials: CredentialStore = Depends(get_credential_store),
):
    """
    Trigger an on-demand sync for one user.
    Returns immediately; sync runs in background.
    """
    integration = credentials.get_integration(request.user_id)
    if integration is None:
        raise HTTPException(
            status_code=404,
            detail="Gmail integration not found. Please connect Gmail first.",
        )
    if integration.status == SYNC_SYNCING:
        raise HTTPException(status_code=409, detail="Sync already in progress")

    background_tasks.add_task(_do_sync, request.user_id)
    return {"message": "Sync initiated in background", "user_id": request.user_id}


@router.delete("/disconnect")
def disconnect(
    user_id: str,
    credentials: CredentialStore = Depends(get_credential_store),
    sync_service: CalendarSyncService = Depends(get_sync_service),
):
    credentials.disconnect(user_id)
    sync_service.forget(user_id)
    return {"message": "Gmail disconnected successfully"}


@router.get("/status", response_model=IntegrationStatusResponse)
def integration_status(
    user_id: str,
    credentials: CredentialStore = Depends(get_credential_store),
):
    return IntegrationStatusResponse(**credentials.get_integration_status(user_id))


@router.post("/preferences")
def update_preferences(
    request: PreferencesRequest,
    credentials: CredentialStore = Depends(get_credential_store),
):
    """Replace the Gmail label filters used by full syncs."""
    try:
        credentials.update_label_filters(request.user_id, request.label_filters)
    except IntegrationNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"message": "Preferences updated"}


@router.get("/synced-events", response_model=List[SyncedEventResponse])
def synced_events(
    user_id: str,
    limit: int = 50,
    sync_service: CalendarSyncService = Depends(get_sync_service),
):
    return [
        SyncedEventResponse(**event.model_dump(include=set(SyncedEventResponse.model_fields)))
        for event in sync_service.list_synced_events(user_id, limit)
    ]
