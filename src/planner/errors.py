"""Error taxonomy for credentials, synchronization and push delivery."""
from typing import Optional


class PlannerError(Exception):
    """Base class for all planner errors."""


# ── Credentials ───────────────────────────────────────────────────────────────

class CredentialError(PlannerError):
    """Authorization or credential problem the user has to resolve."""


class OAuthConfigError(CredentialError):
    """Raised when the Google client id/secret are not configured."""


class InvalidAuthorizationState(CredentialError):
    """The CSRF state is unknown, expired or was already consumed."""


class MissingRefreshToken(CredentialError):
    """The provider did not grant offline access (no refresh token returned)."""


class TokenExchangeFailed(CredentialError):
    """The authorization code could not be exchanged for tokens."""


class RefreshFailed(CredentialError):
    """The refresh token was rejected (revoked or expired grant)."""


class IntegrationNotFound(CredentialError):
    """No stored credentials exist for the user."""

    def __init__(self, user_id: str):
        super().__init__(f"Gmail integration not found for user {user_id}")
        self.user_id = user_id


# ── Encryption ────────────────────────────────────────────────────────────────

class EncryptionConfigError(PlannerError):
    """ENCRYPTION_KEY is missing or not 64 hex characters."""


class TokenDecryptionError(PlannerError):
    """Ciphertext is malformed or failed authentication."""


# ── Sync ──────────────────────────────────────────────────────────────────────

class SyncFailure(PlannerError):
    """A provider call or parse failure aborted a sync pass."""


class ProviderError(SyncFailure):
    """HTTP error or timeout while talking to the calendar provider."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CursorExpired(SyncFailure):
    """The provider no longer recognizes the stored sync cursor."""


# ── Push delivery ─────────────────────────────────────────────────────────────

class DeliveryFailure(PlannerError):
    """A push message could not be delivered.

    ``permanent`` is True when the endpoint is gone and the subscription
    should be pruned.
    """

    def __init__(self, message: str, permanent: bool = False, status_code: Optional[int] = None):
        super().__init__(message)
        self.permanent = permanent
        self.status_code = status_code
