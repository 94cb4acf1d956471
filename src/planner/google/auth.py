"""
Credential store for the Gmail integration.

Owns the OAuth round-trip and the encrypted token columns of the
``integrations`` table:

    generate_authorization_request(user)  → consent URL (CSRF state recorded)
    complete_authorization(code, state)   → tokens exchanged, encrypted, upserted
    ensure_valid_access_token(user)       → stored token, refreshed if expired
    disconnect(user)                      → row deleted, tokens purged

The CSRF state is consumed before the code is exchanged, so replaying a
callback with the same state always fails.
"""
import logging
import secrets
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from planner.config import get_settings
from planner.errors import IntegrationNotFound, InvalidAuthorizationState, MissingRefreshToken
from planner.google.encryption import TokenCipher
from planner.google.oauth import GoogleOAuthClient, TokenGrant
from planner.google.state_cache import InMemoryStateCache, StateCache
from planner.models.integration import DEFAULT_LABEL_FILTERS, SYNC_ERROR, SYNC_IDLE, Integration
from planner.timeutil import utcnow

logger = logging.getLogger(__name__)

PROVIDER = "gmail"


class CredentialStore:
    """
    Persists, encrypts and refreshes per-user Gmail OAuth credentials.

    Usage:
        store = CredentialStore(engine, GoogleOAuthClient.from_settings(), TokenCipher.from_settings())
        url = store.generate_authorization_request("user-1")
        ...
        user_id = await store.complete_authorization(code, state)
        token = await store.ensure_valid_access_token(user_id)
    """

    def __init__(
        self,
        engine,
        oauth: GoogleOAuthClient,
        cipher: TokenCipher,
        state_cache: Optional[StateCache] = None,
        state_ttl_seconds: Optional[float] = None,
    ):
        self.engine = engine
        self.oauth = oauth
        self.cipher = cipher
        self.state_cache = state_cache or InMemoryStateCache()
        if state_ttl_seconds is None:
            state_ttl_seconds = get_settings().oauth_state_ttl_seconds
        self.state_ttl_seconds = state_ttl_seconds

    # ── Authorization round-trip ──────────────────────────────────────────────

    def generate_authorization_request(self, user_id: str) -> str:
        """Record a fresh CSRF state for ``user_id`` and return the consent URL."""
        self.oauth.validate_config()
        state = secrets.token_hex(32)
        self.state_cache.put(state, user_id, self.state_ttl_seconds)
        logger.info("Generated OAuth state for user %s", user_id)
        return self.oauth.authorization_url(state)

    async def complete_authorization(self, code: str, state: str) -> str:
        """
        Validate the CSRF state, exchange the code and store encrypted tokens.

        Returns:
            The user id the state was issued for.

        Raises:
            InvalidAuthorizationState: unknown, expired or already used state.
            TokenExchangeFailed: the provider rejected the code.
            MissingRefreshToken: the provider did not grant offline access.
        """
        user_id = self.state_cache.take_if_valid(state)
        if user_id is None:
            logger.warning("Rejected OAuth callback with invalid or expired state")
            raise InvalidAuthorizationState("Invalid or expired OAuth state")

        grant = await self.oauth.exchange_code(code)
        if not grant.refresh_token:
            raise MissingRefreshToken(
                'No refresh token received. Ensure "offline" access is configured.'
            )

        self._upsert_integration(user_id, grant)
        logger.info("Gmail credentials stored for user %s", user_id)
        return user_id

    def _upsert_integration(self, user_id: str, grant: TokenGrant) -> None:
        access_token = self.cipher.encrypt(grant.access_token)
        refresh_token = self.cipher.encrypt(grant.refresh_token)

        for _ in range(2):
            with Session(self.engine) as s:
                existing = self._select(s, user_id)
                if existing:
                    existing.access_token = access_token
                    existing.refresh_token = refresh_token
                    existing.expires_at = grant.expires_at
                    if existing.status == SYNC_ERROR:
                        existing.status = SYNC_IDLE
                        existing.last_error = None
                    existing.updated_at = utcnow()
                    s.add(existing)
                else:
                    s.add(Integration(
                        user_id=user_id,
                        provider=PROVIDER,
                        access_token=access_token,
                        refresh_token=refresh_token,
                        expires_at=grant.expires_at,
                        status=SYNC_IDLE,
                        label_filters=list(DEFAULT_LABEL_FILTERS),
                    ))
                try:
                    s.commit()
                    return
                except IntegrityError:
                    # A concurrent callback inserted the row first; retry as update.
                    s.rollback()
        raise RuntimeError(f"Could not upsert integration for user {user_id}")

    # ── Access tokens ─────────────────────────────────────────────────────────

    async def ensure_valid_grant(self, user_id: str) -> TokenGrant:
        """Return a usable access token with its expiry, refreshing if needed.

        Raises:
            IntegrationNotFound: the user never connected.
            RefreshFailed: the refresh grant was rejected. The stored row is
                left as it was.
        """
        with Session(self.engine) as s:
            integration = self._select(s, user_id)
        if integration is None:
            raise IntegrationNotFound(user_id)

        if integration.expires_at > utcnow():
            return TokenGrant(
                access_token=self.cipher.decrypt(integration.access_token),
                expires_at=integration.expires_at,
            )

        refresh_token = self.cipher.decrypt(integration.refresh_token)
        grant = await self.oauth.refresh(refresh_token)

        with Session(self.engine) as s:
            row = self._select(s, user_id)
            if row is None:
                # Disconnected while we were refreshing; don't resurrect it.
                raise IntegrationNotFound(user_id)
            row.access_token = self.cipher.encrypt(grant.access_token)
            row.expires_at = grant.expires_at
            row.updated_at = utcnow()
            s.add(row)
            s.commit()

        logger.info("Refreshed Gmail token for user %s", user_id)
        return grant

    async def ensure_valid_access_token(self, user_id: str) -> str:
        grant = await self.ensure_valid_grant(user_id)
        return grant.access_token

    # ── Integration record ────────────────────────────────────────────────────

    def get_integration(self, user_id: str) -> Optional[Integration]:
        with Session(self.engine) as s:
            return self._select(s, user_id)

    def get_integration_status(self, user_id: str) -> Dict[str, Any]:
        """Connection summary safe to return to clients (no token material)."""
        integration = self.get_integration(user_id)
        if integration is None:
            return {"connected": False}
        return {
            "connected": True,
            "sync_status": integration.status,
            "last_sync_at": integration.last_sync_at,
            "sync_error": integration.last_error,
            "sync_cursor": integration.sync_cursor,
            "label_filters": list(integration.label_filters or []),
        }

    def update_label_filters(self, user_id: str, label_filters: List[str]) -> None:
        with Session(self.engine) as s:
            integration = self._select(s, user_id)
            if integration is None:
                raise IntegrationNotFound(user_id)
            integration.label_filters = list(label_filters)
            integration.updated_at = utcnow()
            s.add(integration)
            s.commit()

    def disconnect(self, user_id: str) -> None:
        """Delete the integration row. Idempotent."""
        with Session(self.engine) as s:
            integration = self._select(s, user_id)
            if integration is not None:
                s.delete(integration)
                s.commit()
        logger.info("Disconnected Gmail for user %s", user_id)

    @staticmethod
    def _select(s: Session, user_id: str) -> Optional[Integration]:
        return s.exec(
            select(Integration).where(
                Integration.user_id == user_id,
                Integration.provider == PROVIDER,
            )
        ).first()
