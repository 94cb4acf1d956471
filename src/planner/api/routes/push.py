"""Push subscription, test and audit-log routes."""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from planner.config import Settings, get_settings
from planner.models.push import NotificationLog
from planner.notifications.service import NotificationService
from planner.services import get_notification_service

router = APIRouter()


class SubscriptionKeys(BaseModel):
    p256dh: str
    auth: str


class SubscriptionModel(BaseModel):
    endpoint: str
    keys: SubscriptionKeys


class AlarmSettings(BaseModel):
    enabled: bool = False
    minutesBefore: int = 15
    soundEnabled: bool = True
    showNotification: bool = True


class SubscribeRequest(BaseModel):
    user_id: str
    subscription: SubscriptionModel
    alarm_settings: Optional[AlarmSettings] = None


class UnsubscribeRequest(BaseModel):
    user_id: str
    endpoint: str


class TestNotificationRequest(BaseModel):
    user_id: str
    subscription: SubscriptionModel


def push_settings() -> Settings:
    """Dependency: 503 unless VAPID keys are configured."""
    settings = get_settings()
    if not settings.push_enabled:
        raise HTTPException(
            status_code=503,
            detail="Push notifications not configured. VAPID keys missing.",
        )
    return settings


@router.get("/public-key")
def public_key(settings: Settings = Depends(push_settings)):
    return {"public_key": settings.vapid_public_key}


@router.post("/subscribe")
def subscribe(
    request: SubscribeRequest,
    _: Settings = Depends(push_settings),
    service: NotificationService = Depends(get_notification_service),
):
    alarm = request.alarm_settings.model_dump() if request.alarm_settings else None
    service.subscribe(request.user_id, request.subscription.model_dump(), alarm)
    return {"message": "Successfully subscribed to push notifications"}


@router.post("/unsubscribe")
def unsubscribe(
    request: UnsubscribeRequest,
    service: NotificationService = Depends(get_notification_service),
):
    service.unsubscribe(request.user_id, request.endpoint)
    return {"message": "Successfully unsubscribed from push notifications"}


@router.post("/test")
async def send_test(
    request: TestNotificationRequest,
    _: Settings = Depends(push_settings),
    service: NotificationService = Depends(get_notification_service),
):
    return await service.send_test(request.user_id, request.subscription.model_dump())


@router.get("/logs/{user_id}", response_model=List[NotificationLog])
def notification_logs(
    user_id: str,
    limit: int = 50,
    service: NotificationService = Depends(get_notification_service),
):
    return service.get_notification_logs(user_id, limit)
