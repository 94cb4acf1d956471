"""
Google OAuth 2.0 web-server flow over plain HTTP.

Builds the consent URL and talks to Google's token endpoint for the two
grants we need: ``authorization_code`` (first connect) and ``refresh_token``
(every time a stored access token has expired). No token is ever logged.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from planner.config import get_settings
from planner.errors import OAuthConfigError, RefreshFailed, TokenExchangeFailed
from planner.timeutil import utcnow

logger = logging.getLogger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"

SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/calendar.readonly",
]


@dataclass
class TokenGrant:
    access_token: str
    expires_at: datetime
    refresh_token: Optional[str] = None


def _format_oauth_error(response: httpx.Response) -> str:
    """Compact summary of a token-endpoint error body."""
    try:
        payload = response.json()
    except ValueError:
        return f"status={response.status_code}"
    if not isinstance(payload, dict):
        return f"status={response.status_code}"
    parts = [f"status={response.status_code}"]
    if payload.get("error"):
        parts.append(f"error={payload['error']}")
    if payload.get("error_description"):
        parts.append(f"description={payload['error_description']}")
    return ", ".join(parts)


class GoogleOAuthClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "GoogleOAuthClient":
        settings = get_settings()
        return cls(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uri=settings.google_redirect_uri,
            timeout=settings.provider_timeout_seconds,
        )

    def validate_config(self) -> None:
        if not self.client_id or not self.client_secret:
            raise OAuthConfigError(
                "Google OAuth credentials not configured. "
                "Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET in .env"
            )

    def authorization_url(self, state: str) -> str:
        """Consent URL requesting offline access and forcing re-consent.

        ``prompt=consent`` makes Google issue a refresh token even when the
        user has granted these scopes before.
        """
        self.validate_config()
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenGrant:
        data = await self._post_token(
            {
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
            error_cls=TokenExchangeFailed,
        )
        return self._grant_from_payload(data)

    async def refresh(self, refresh_token: str) -> TokenGrant:
        data = await self._post_token(
            {
                "refresh_token": refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
            },
            error_cls=RefreshFailed,
        )
        return self._grant_from_payload(data)

    async def _post_token(self, form: Dict[str, str], *, error_cls) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as http:
                response = await http.post(TOKEN_URL, data=form)
        except httpx.HTTPError as exc:
            raise error_cls(f"Token endpoint unreachable: {exc}") from exc

        if response.is_error:
            details = _format_oauth_error(response)
            logger.error("OAuth %s grant failed %s", form["grant_type"], details)
            raise error_cls(f"OAuth {form['grant_type']} grant failed ({details})")
        return response.json()

    @staticmethod
    def _grant_from_payload(data: Dict[str, Any]) -> TokenGrant:
        expires_in = int(data.get("expires_in", 3600))
        return TokenGrant(
            access_token=data["access_token"],
            expires_at=utcnow() + timedelta(seconds=expires_in),
            refresh_token=data.get("refresh_token"),
        )
