"""
Web Push delivery via pywebpush (VAPID).

pywebpush is synchronous (requests); we run it in a thread pool executor so
it doesn't block the asyncio event loop.

The push service answers 404/410 when a subscription endpoint no longer
exists. Those are reported as permanent DeliveryFailures so the caller can
prune the subscription; anything else is transient.
"""
import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import requests
from pywebpush import WebPushException, webpush

from planner.config import get_settings
from planner.errors import DeliveryFailure
from planner.timeutil import utcnow

logger = logging.getLogger(__name__)

PERMANENT_STATUS_CODES = {404, 410}

ICON = "/derplanner-192.png"
BADGE = "/favicon.ico"


# ── Payloads ──────────────────────────────────────────────────────────────────

def lead_time_phrase(minutes_before: int) -> str:
    """Human-readable lead time: "15 minutes", "1 hour", "2 hours"."""
    if minutes_before >= 60:
        hours = minutes_before // 60
        return f"{hours} hour{'s' if hours > 1 else ''}"
    return f"{minutes_before} minute{'s' if minutes_before != 1 else ''}"


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.strftime("%Y-%m-%d %H:%M:%S")


def build_event_payload(
    event_id: int,
    title: str,
    start_date: datetime,
    minutes_before: int,
    location: Optional[str] = None,
) -> str:
    body = f"Starting in {lead_time_phrase(minutes_before)}"
    if location:
        body += f" at {location}"
    return json.dumps({
        "title": f"📅 {title}",
        "body": body,
        "icon": ICON,
        "badge": BADGE,
        "tag": f"event-{event_id}",
        "requireInteraction": False,
        "data": {
            "url": f"/?event={event_id}",
            "eventId": event_id,
            "eventStartDate": _format_timestamp(start_date),
            "timestamp": _format_timestamp(utcnow()),
        },
    })


def build_test_payload() -> str:
    return json.dumps({
        "title": "🔔 Test Notification",
        "body": "Your event notifications are working correctly!",
        "icon": ICON,
        "badge": BADGE,
        "tag": "test-notification",
        "requireInteraction": False,
        "data": {"url": "/", "timestamp": _format_timestamp(utcnow())},
    })


# ── Sender ────────────────────────────────────────────────────────────────────

class WebPushSender:
    """Push Delivery capability backed by VAPID-signed Web Push."""

    def __init__(
        self,
        vapid_private_key: str,
        vapid_subject: str,
        timeout: float = 30.0,
    ):
        self._vapid_private_key = vapid_private_key
        self._vapid_subject = vapid_subject
        self._timeout = timeout

    @classmethod
    def from_settings(cls) -> "WebPushSender":
        settings = get_settings()
        return cls(
            vapid_private_key=settings.vapid_private_key,
            vapid_subject=settings.vapid_subject,
            timeout=settings.provider_timeout_seconds,
        )

    async def send(self, subscription_info: Dict[str, Any], payload: str) -> None:
        """
        Deliver ``payload`` to one subscription.

        Args:
            subscription_info: ``{"endpoint": ..., "keys": {"p256dh": ..., "auth": ...}}``
            payload: JSON string shown by the service worker.

        Raises:
            DeliveryFailure: ``permanent`` is True when the endpoint is gone.
        """
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, lambda: self._send_sync(subscription_info, payload))

    def _send_sync(self, subscription_info: Dict[str, Any], payload: str) -> None:
        try:
            webpush(
                subscription_info=subscription_info,
                data=payload,
                vapid_private_key=self._vapid_private_key,
                vapid_claims={"sub": self._vapid_subject},
                timeout=self._timeout,
            )
        except WebPushException as exc:
            status_code = getattr(exc.response, "status_code", None)
            raise DeliveryFailure(
                str(exc),
                permanent=status_code in PERMANENT_STATUS_CODES,
                status_code=status_code,
            ) from exc
        except requests.RequestException as exc:
            raise DeliveryFailure(f"Push service unreachable: {exc}") from exc
        except (ValueError, TypeError) as exc:
            # Malformed p256dh/auth key material.
            raise DeliveryFailure(f"Invalid subscription keys: {exc}") from exc
