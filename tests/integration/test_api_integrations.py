"""Integration tests for /integrations/google routes."""
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from planner.api.main import create_app
from planner.config import Settings
from planner.errors import OAuthConfigError, TokenExchangeFailed
from planner.google.oauth import TokenGrant
from planner.google.sync_service import CalendarSyncService
from planner.models.event import Event
from planner.models.integration import SYNC_SYNCING
from planner.services import get_credential_store, get_sync_service
from planner.timeutil import utcnow


@pytest.fixture(name="sync_service")
def sync_service_fixture(credential_store, engine):
    return CalendarSyncService(credential_store, engine, client_factory=lambda token: AsyncMock())


@pytest.fixture(name="client")
def client_fixture(credential_store, sync_service):
    app = create_app()
    app.dependency_overrides[get_credential_store] = lambda: credential_store
    app.dependency_overrides[get_sync_service] = lambda: sync_service
    with TestClient(app) as c:
        yield c


def _query(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


class TestOAuthRoutes:
    def test_auth_url(self, client, credential_store):
        resp = client.get("/integrations/google/url", params={"user_id": "user-1"})
        assert resp.status_code == 200
        state = _query(resp.json()["auth_url"])["state"]
        assert credential_store.state_cache.take_if_valid(state) == "user-1"

    def test_auth_url_not_configured(self, client, oauth):
        oauth.validate_config.side_effect = OAuthConfigError("Google OAuth credentials not configured")
        resp = client.get("/integrations/google/url", params={"user_id": "user-1"})
        assert resp.status_code == 500

    def test_callback_success_redirects(self, client, oauth, credential_store):
        oauth.exchange_code.return_value = TokenGrant(
            access_token="a", refresh_token="r", expires_at=utcnow() + timedelta(hours=1)
        )
        state = _query(client.get(
            "/integrations/google/url", params={"user_id": "user-1"}
        ).json()["auth_url"])["state"]

        resp = client.get(
            "/integrations/google/callback",
            params={"code": "c", "state": state},
            follow_redirects=False,
        )

        assert resp.status_code == 302
        query = _query(resp.headers["location"])
        assert query == {"integrationStatus": "gmail_connected", "userId": "user-1"}
        assert credential_store.get_integration("user-1") is not None

    def test_callback_invalid_state(self, client):
        resp = client.get(
            "/integrations/google/callback",
            params={"code": "c", "state": "forged"},
            follow_redirects=False,
        )
        assert resp.status_code == 302
        query = _query(resp.headers["location"])
        assert query["integrationStatus"] == "gmail_error"
        assert "state" in query["error"]

    def test_callback_exchange_failure(self, client, oauth, credential_store):
        oauth.exchange_code.side_effect = TokenExchangeFailed("invalid_grant")
        credential_store.state_cache.put("s1", "user-1", 600)

        resp = client.get(
            "/integrations/google/callback",
            params={"code": "c", "state": "s1"},
            follow_redirects=False,
        )

        assert _query(resp.headers["location"])["error"] == "invalid_grant"

    def test_callback_provider_error(self, client, oauth):
        resp = client.get(
            "/integrations/google/callback",
            params={"error": "access_denied"},
            follow_redirects=False,
        )
        assert _query(resp.headers["location"]) == {
            "integrationStatus": "gmail_error", "error": "access_denied",
        }
        oauth.exchange_code.assert_not_awaited()

    def test_callback_missing_params(self, client):
        resp = client.get("/integrations/google/callback", follow_redirects=False)
        assert _query(resp.headers["location"])["integrationStatus"] == "gmail_error"


class TestSyncRoutes:
    def test_trigger_returns_200(self, client, make_integration):
        make_integration("user-1")
        # Patch _do_sync so the background task doesn't hit Gmail
        with patch("planner.api.routes.integrations._do_sync", new=AsyncMock()) as mock_sync:
            resp = client.post("/integrations/google/sync", json={"user_id": "user-1"})
        assert resp.status_code == 200
        assert "initiated" in resp.json()["message"].lower()
        mock_sync.assert_called_once_with("user-1")

    def test_trigger_not_connected(self, client):
        with patch("planner.api.routes.integrations._do_sync", new=AsyncMock()) as mock_sync:
            resp = client.post("/integrations/google/sync", json={"user_id": "ghost"})
        assert resp.status_code == 404
        mock_sync.assert_not_called()

    def test_trigger_while_syncing(self, client, make_integration):
        make_integration("user-1", status=SYNC_SYNCING, sync_started_at=utcnow())
        with patch("planner.api.routes.integrations._do_sync", new=AsyncMock()):
            resp = client.post("/integrations/google/sync", json={"user_id": "user-1"})
        assert resp.status_code == 409

    def test_trigger_requires_user_id(self, client):
        resp = client.post("/integrations/google/sync", json={})
        assert resp.status_code == 422


class TestIntegrationRecordRoutes:
    def test_status_not_connected(self, client):
        resp = client.get("/integrations/google/status", params={"user_id": "ghost"})
        assert resp.status_code == 200
        assert resp.json()["connected"] is False

    def test_status_connected(self, client, make_integration):
        make_integration("user-1", sync_cursor="42")
        body = client.get("/integrations/google/status", params={"user_id": "user-1"}).json()
        assert body["connected"] is True
        assert body["sync_status"] == "idle"
        assert body["sync_cursor"] == "42"
        assert body["label_filters"] == ["INBOX"]
        assert "access_token" not in body

    def test_disconnect(self, client, credential_store, sync_service, make_integration):
        make_integration("user-1")
        sync_service.token_cache.put("user-1", "cached")

        resp = client.delete("/integrations/google/disconnect", params={"user_id": "user-1"})

        assert resp.status_code == 200
        assert credential_store.get_integration("user-1") is None
        assert sync_service.token_cache.get("user-1") is None

    def test_disconnect_not_connected_is_ok(self, client):
        resp = client.delete("/integrations/google/disconnect", params={"user_id": "ghost"})
        assert resp.status_code == 200

    def test_update_preferences(self, client, credential_store, make_integration):
        make_integration("user-1")
        resp = client.post(
            "/integrations/google/preferences",
            json={"user_id": "user-1", "label_filters": ["INBOX", "Label_2"]},
        )
        assert resp.status_code == 200
        assert credential_store.get_integration("user-1").label_filters == ["INBOX", "Label_2"]

    def test_update_preferences_not_connected(self, client):
        resp = client.post(
            "/integrations/google/preferences",
            json={"user_id": "ghost", "label_filters": ["INBOX"]},
        )
        assert resp.status_code == 404

    def test_update_preferences_rejects_non_list(self, client, make_integration):
        make_integration("user-1")
        resp = client.post(
            "/integrations/google/preferences",
            json={"user_id": "user-1", "label_filters": "INBOX"},
        )
        assert resp.status_code == 422

    def test_synced_events(self, client, engine):
        with Session(engine) as s:
            s.add(Event(user_id="user-1", title="Invite", start_date=datetime(2025, 1, 15, 10, 0),
                        end_date=datetime(2025, 1, 15, 11, 0), sync_source="gmail",
                        external_id={"gmail": "uid-1"}, is_read_only=True))
            s.add(Event(user_id="user-1", title="Manual", start_date=datetime(2025, 1, 16, 10, 0),
                        end_date=datetime(2025, 1, 16, 11, 0)))
            s.commit()

        resp = client.get("/integrations/google/synced-events", params={"user_id": "user-1"})

        assert resp.status_code == 200
        [event] = resp.json()
        assert event["title"] == "Invite"
        assert event["external_id"] == {"gmail": "uid-1"}


class TestLifespan:
    def test_background_jobs_follow_app_lifetime(self, sync_service):
        settings = Settings(run_background_jobs=True, vapid_public_key="", vapid_private_key="")
        with patch("planner.api.main.get_settings", return_value=settings), \
             patch("planner.services.get_sync_service", return_value=sync_service), \
             patch("planner.scheduler.jobs.BackgroundJobs") as mock_jobs:
            with TestClient(create_app()):
                mock_jobs.return_value.start.assert_called_once()
            mock_jobs.return_value.stop.assert_called_once()
        mock_jobs.assert_called_once_with(sync_service, None)

    def test_no_background_jobs_by_default(self):
        with patch("planner.scheduler.jobs.BackgroundJobs") as mock_jobs:
            with TestClient(create_app()):
                pass
        mock_jobs.assert_not_called()
