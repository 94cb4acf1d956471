"""Tests for DB models."""
from datetime import datetime

import pytest
import sqlalchemy.exc
from sqlmodel import Session, select

from planner.models.event import SYNC_SOURCE_MANUAL, Event
from planner.models.integration import SYNC_IDLE, Integration
from planner.models.push import DEFAULT_ALARM_SETTINGS, NotificationLog, PushSubscription


def _event(**overrides) -> Event:
    fields = dict(
        user_id="user-1",
        title="Dentist",
        start_date=datetime(2025, 1, 15, 10, 0),
        end_date=datetime(2025, 1, 15, 11, 0),
    )
    fields.update(overrides)
    return Event(**fields)


class TestEvent:
    def test_defaults(self):
        event = _event()
        assert event.sync_source == SYNC_SOURCE_MANUAL
        assert event.external_id == {}
        assert event.is_read_only is False
        assert event.status == "scheduled"
        assert event.last_notification_sent is None

    def test_external_id_json_lookup(self, test_session: Session):
        test_session.add(_event(sync_source="gmail", external_id={"gmail": "uid-1"}))
        test_session.add(_event(title="Other", external_id={"gmail": "uid-2"}))
        test_session.commit()

        found = test_session.exec(
            select(Event).where(Event.external_id["gmail"].as_string() == "uid-1")
        ).all()
        assert [e.title for e in found] == ["Dentist"]

    def test_naive_utc_timestamps_round_trip(self, test_session: Session):
        start = datetime(2025, 1, 15, 10, 0)
        test_session.add(_event(start_date=start, last_notification_sent=start))
        test_session.commit()

        stored = test_session.exec(select(Event)).one()
        test_session.refresh(stored)
        assert stored.start_date == start
        assert stored.start_date.tzinfo is None
        assert stored.last_notification_sent == start


class TestIntegration:
    def _integration(self, **overrides) -> Integration:
        fields = dict(
            user_id="user-1",
            access_token="enc-a",
            refresh_token="enc-r",
            expires_at=datetime(2025, 1, 15, 11, 0),
        )
        fields.update(overrides)
        return Integration(**fields)

    def test_defaults(self):
        integration = self._integration()
        assert integration.provider == "gmail"
        assert integration.status == SYNC_IDLE
        assert integration.label_filters == ["INBOX"]
        assert integration.sync_cursor is None

    def test_label_filter_default_not_shared(self):
        a, b = self._integration(), self._integration()
        a.label_filters.append("Label_1")
        assert b.label_filters == ["INBOX"]

    def test_one_row_per_user_and_provider(self, test_session: Session):
        test_session.add(self._integration())
        test_session.add(self._integration())
        with pytest.raises(sqlalchemy.exc.IntegrityError):
            test_session.commit()

    def test_same_user_other_provider_allowed(self, test_session: Session):
        test_session.add(self._integration())
        test_session.add(self._integration(provider="outlook"))
        test_session.commit()


class TestPushModels:
    def test_subscription_defaults(self):
        sub = PushSubscription(user_id="user-1", endpoint="https://push.example/1")
        assert sub.alarm_settings == DEFAULT_ALARM_SETTINGS
        assert sub.alarm_settings is not DEFAULT_ALARM_SETTINGS

    def test_subscription_info(self):
        sub = PushSubscription(
            user_id="user-1",
            endpoint="https://push.example/1",
            keys={"p256dh": "pk", "auth": "ak"},
        )
        assert sub.subscription_info() == {
            "endpoint": "https://push.example/1",
            "keys": {"p256dh": "pk", "auth": "ak"},
        }

    def test_endpoint_unique_per_user(self, test_session: Session):
        test_session.add(PushSubscription(user_id="user-1", endpoint="https://push.example/1"))
        test_session.add(PushSubscription(user_id="user-1", endpoint="https://push.example/1"))
        with pytest.raises(sqlalchemy.exc.IntegrityError):
            test_session.commit()

    def test_log_defaults(self, test_session: Session):
        log = NotificationLog(user_id="user-1")
        test_session.add(log)
        test_session.commit()
        test_session.refresh(log)
        assert log.success is False
        assert log.created_at is not None
