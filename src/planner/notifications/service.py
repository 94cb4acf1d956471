"""
NotificationService — push reminders for upcoming events.

Each tick (every 60 s by default):
  1. Load subscriptions whose alarm settings are enabled and show notifications
  2. For each, look for the user's scheduled events starting inside
     [now + minutesBefore - 30s, now + minutesBefore + 30s]
  3. Skip events already notified within the hour before their start
  4. Send, mark ``last_notification_sent`` on success, log every attempt

A permanent delivery failure (endpoint gone) deletes the subscription. A
transient failure leaves it in place; the reminder for that event is dropped
rather than redelivered late.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set

from sqlmodel import Session, select

from planner.config import get_settings
from planner.errors import DeliveryFailure
from planner.models.event import Event
from planner.models.push import DEFAULT_ALARM_SETTINGS, NotificationLog, PushSubscription
from planner.notifications.push import WebPushSender, build_event_payload, build_test_payload
from planner.timeutil import utcnow

logger = logging.getLogger(__name__)

WINDOW_HALF_WIDTH = timedelta(seconds=30)
RENOTIFY_GUARD = timedelta(hours=1)

SENT = "sent"
FAILED = "failed"
GONE = "gone"


class NotificationService:
    def __init__(self, engine, sender: WebPushSender, default_minutes_before: Optional[int] = None):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
            sender: Push Delivery capability (WebPushSender or AsyncMock in tests).
            default_minutes_before: Lead time used when a subscription has none.
        """
        self.engine = engine
        self.sender = sender
        if default_minutes_before is None:
            default_minutes_before = get_settings().default_minutes_before
        self.default_minutes_before = default_minutes_before

    # ── Subscriptions ─────────────────────────────────────────────────────────

    def subscribe(
        self,
        user_id: str,
        subscription: Dict[str, Any],
        alarm_settings: Optional[Dict[str, Any]] = None,
    ) -> PushSubscription:
        """Create or update the subscription for ``(user_id, endpoint)``."""
        endpoint = subscription.get("endpoint")
        if not endpoint:
            raise ValueError("subscription.endpoint is required")
        keys = dict(subscription.get("keys") or {})
        settings = dict(DEFAULT_ALARM_SETTINGS)
        settings.update(alarm_settings or {})

        with Session(self.engine) as s:
            row = self._select(s, user_id, endpoint)
            if row:
                row.keys = keys
                row.alarm_settings = settings
                row.updated_at = utcnow()
                logger.info("Updated push subscription for user %s", user_id)
            else:
                row = PushSubscription(
                    user_id=user_id, endpoint=endpoint, keys=keys, alarm_settings=settings
                )
                logger.info("Created push subscription for user %s", user_id)
            s.add(row)
            s.commit()
            s.refresh(row)
            return row

    def unsubscribe(self, user_id: str, endpoint: str) -> bool:
        """Delete the subscription. Returns False if it did not exist."""
        with Session(self.engine) as s:
            row = self._select(s, user_id, endpoint)
            if row is None:
                return False
            s.delete(row)
            s.commit()
        logger.info("Removed push subscription for user %s", user_id)
        return True

    def get_user_subscriptions(self, user_id: str) -> List[PushSubscription]:
        with Session(self.engine) as s:
            return list(s.exec(
                select(PushSubscription).where(PushSubscription.user_id == user_id)
            ).all())

    def active_subscriptions(self) -> List[PushSubscription]:
        with Session(self.engine) as s:
            rows = s.exec(select(PushSubscription).order_by(PushSubscription.id)).all()
        return [row for row in rows if _alarm_active(row.alarm_settings)]

    # ── Matching ──────────────────────────────────────────────────────────────

    def minutes_before(self, subscription: PushSubscription) -> int:
        value = (subscription.alarm_settings or {}).get("minutesBefore")
        return int(value or self.default_minutes_before)

    def find_due_events(
        self,
        user_id: str,
        minutes_before: int,
        now: datetime,
        notified_this_tick: Optional[Set[int]] = None,
    ) -> List[Event]:
        """Scheduled events starting within 30 s of ``now + minutes_before``."""
        target = now + timedelta(minutes=minutes_before)
        with Session(self.engine) as s:
            rows = s.exec(
                select(Event)
                .where(
                    Event.user_id == user_id,
                    Event.status == "scheduled",
                    Event.start_date >= target - WINDOW_HALF_WIDTH,
                    Event.start_date <= target + WINDOW_HALF_WIDTH,
                )
                .order_by(Event.start_date)
            ).all()
        allowed = notified_this_tick or set()
        return [e for e in rows if e.id in allowed or not already_notified(e)]

    # ── Tick ──────────────────────────────────────────────────────────────────

    async def check_upcoming_events(self, now: Optional[datetime] = None) -> int:
        """Run one scheduler tick. Returns the number of notifications sent."""
        now = now or utcnow()
        subscriptions = self.active_subscriptions()
        if not subscriptions:
            return 0

        logger.debug("Checking events for %d subscription(s)", len(subscriptions))
        sent = 0
        # Events delivered this tick stay eligible for the user's other devices.
        notified_this_tick: Set[int] = set()

        for sub in subscriptions:
            try:
                minutes_before = self.minutes_before(sub)
                events = self.find_due_events(sub.user_id, minutes_before, now, notified_this_tick)
                for event in events:
                    outcome = await self._notify(sub, event, minutes_before, now)
                    if outcome == SENT:
                        sent += 1
                        notified_this_tick.add(event.id)
                    elif outcome == GONE:
                        break
            except Exception:
                logger.exception("Error checking upcoming events for subscription %s", sub.id)

        return sent

    async def _notify(
        self, sub: PushSubscription, event: Event, minutes_before: int, now: datetime
    ) -> str:
        payload = build_event_payload(
            event.id, event.title, event.start_date, minutes_before, event.location
        )
        try:
            await self.sender.send(sub.subscription_info(), payload)
        except DeliveryFailure as exc:
            logger.error("Error sending push notification for event %s: %s", event.id, exc)
            self._log(sub, event.id, payload, success=False, error_message=str(exc))
            if exc.permanent:
                logger.warning("Removing invalid subscription: %s", sub.endpoint)
                self.unsubscribe(sub.user_id, sub.endpoint)
                return GONE
            return FAILED
        except (ValueError, TypeError) as exc:
            logger.error("Error sending push notification for event %s: %s", event.id, exc)
            self._log(sub, event.id, payload, success=False, error_message=str(exc))
            return FAILED

        logger.info("Sent notification for event %s to user %s", event.title, sub.user_id)
        self._mark_notified(event.id, now)
        self._log(sub, event.id, payload, success=True)
        return SENT

    def _mark_notified(self, event_id: int, now: datetime) -> None:
        with Session(self.engine) as s:
            event = s.get(Event, event_id)
            if event is None:
                return
            event.last_notification_sent = now
            s.add(event)
            s.commit()

    def _log(
        self,
        sub: PushSubscription,
        event_id: Optional[int],
        payload: str,
        *,
        success: bool,
        error_message: Optional[str] = None,
    ) -> None:
        with Session(self.engine) as s:
            s.add(NotificationLog(
                user_id=sub.user_id,
                event_id=event_id,
                subscription_endpoint=sub.endpoint,
                payload=payload,
                success=success,
                error_message=error_message,
            ))
            s.commit()

    # ── Test + audit ──────────────────────────────────────────────────────────

    async def send_test(self, user_id: str, subscription: Dict[str, Any]) -> Dict[str, Any]:
        """Send an immediate test notification. Touches no persisted state."""
        info = {"endpoint": subscription.get("endpoint"), "keys": subscription.get("keys") or {}}
        try:
            await self.sender.send(info, build_test_payload())
        except DeliveryFailure as exc:
            logger.error("Error sending test notification: %s", exc)
            return {"success": False, "error": str(exc)}
        logger.info("Sent test notification to user %s", user_id)
        return {"success": True}

    def get_notification_logs(self, user_id: str, limit: int = 50) -> List[NotificationLog]:
        with Session(self.engine) as s:
            return list(s.exec(
                select(NotificationLog)
                .where(NotificationLog.user_id == user_id)
                .order_by(NotificationLog.created_at.desc(), NotificationLog.id.desc())
                .limit(limit)
            ).all())

    @staticmethod
    def _select(s: Session, user_id: str, endpoint: str) -> Optional[PushSubscription]:
        return s.exec(
            select(PushSubscription).where(
                PushSubscription.user_id == user_id,
                PushSubscription.endpoint == endpoint,
            )
        ).first()


def _alarm_active(alarm_settings: Optional[Dict[str, Any]]) -> bool:
    settings = alarm_settings or {}
    return bool(settings.get("enabled")) and bool(settings.get("showNotification"))


def already_notified(event: Event) -> bool:
    """True if a reminder went out within the hour before the event's start."""
    sent = event.last_notification_sent
    return sent is not None and sent >= event.start_date - RENOTIFY_GUARD
