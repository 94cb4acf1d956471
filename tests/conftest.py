"""Shared test fixtures."""
import os

# Keep the app's lazily-built engine off the filesystem during API tests.
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import timedelta
from typing import Generator
from unittest.mock import MagicMock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from planner.models.event import Event  # noqa: F401
from planner.models.integration import Integration
from planner.models.push import NotificationLog, PushSubscription  # noqa: F401
from planner.google.auth import CredentialStore
from planner.google.encryption import TokenCipher
from planner.google.oauth import GoogleOAuthClient
from planner.google.state_cache import InMemoryStateCache
from planner.timeutil import utcnow

TEST_KEY = "0123456789abcdef" * 4


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="cipher")
def cipher_fixture() -> TokenCipher:
    return TokenCipher(TEST_KEY)


@pytest.fixture(name="oauth")
def oauth_fixture():
    """GoogleOAuthClient double; async methods become AsyncMocks via spec."""
    oauth = MagicMock(spec=GoogleOAuthClient)
    oauth.authorization_url.side_effect = (
        lambda state: f"https://accounts.google.com/o/oauth2/v2/auth?state={state}"
    )
    return oauth


@pytest.fixture(name="credential_store")
def credential_store_fixture(engine, oauth, cipher) -> CredentialStore:
    return CredentialStore(
        engine, oauth, cipher, state_cache=InMemoryStateCache(), state_ttl_seconds=600
    )


@pytest.fixture(name="make_integration")
def make_integration_fixture(engine, cipher):
    """Factory persisting a connected Integration with encrypted tokens."""

    def _make(user_id: str = "user-1", **overrides) -> Integration:
        fields = dict(
            user_id=user_id,
            provider="gmail",
            access_token=cipher.encrypt("access-1"),
            refresh_token=cipher.encrypt("refresh-1"),
            expires_at=utcnow() + timedelta(hours=1),
        )
        fields.update(overrides)
        integration = Integration(**fields)
        with Session(engine) as s:
            s.add(integration)
            s.commit()
            s.refresh(integration)
        return integration

    return _make
