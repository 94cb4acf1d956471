"""
Async Gmail REST client — the calendar provider used by the sync service.

Every call is bounded by the configured HTTP timeout so a stalled provider
cannot hold a sync slot indefinitely. HTTP failures and timeouts surface as
ProviderError; an expired history cursor surfaces as CursorExpired.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx

from planner.errors import CursorExpired, ProviderError

logger = logging.getLogger(__name__)

GMAIL_API = "https://gmail.googleapis.com/gmail/v1/users/me"


@dataclass
class MessageChanges:
    message_ids: List[str] = field(default_factory=list)
    new_cursor: Optional[str] = None


class CalendarProvider(Protocol):
    """What the sync service needs from a mail/calendar provider."""

    async def list_candidate_messages(
        self, label_filters: List[str], query: str, page_size: int
    ) -> List[str]:
        ...

    async def get_message(self, message_id: str) -> Dict[str, Any]:
        ...

    async def get_attachment(self, message_id: str, attachment_id: str) -> str:
        """Return the attachment body, still base64url transport-encoded."""
        ...

    async def get_changes_since(self, cursor: str) -> MessageChanges:
        ...

    async def get_current_cursor(self) -> str:
        ...


class GmailClient:
    """
    Thin async wrapper over the Gmail v1 REST API for one access token.

    Instances are cheap; the sync service builds one per sync pass.
    """

    def __init__(
        self,
        access_token: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._access_token = access_token
        self._timeout = timeout
        self._transport = transport

    async def _get(self, path: str, params: Any = None) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=GMAIL_API,
                headers={"Authorization": f"Bearer {self._access_token}"},
                timeout=self._timeout,
                transport=self._transport,
            ) as http:
                response = await http.get(path, params=params)
        except httpx.TimeoutException as exc:
            raise ProviderError(f"Gmail request timed out: GET {path}") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"Gmail request failed: GET {path}: {exc}") from exc

        if response.is_error:
            raise ProviderError(
                f"Gmail GET {path} failed with status {response.status_code}",
                status_code=response.status_code,
            )
        return response.json()

    async def list_candidate_messages(
        self, label_filters: List[str], query: str, page_size: int = 100
    ) -> List[str]:
        """Return ids of messages matching ``query`` within the given labels.

        Only the first page is read; ``page_size`` bounds worst-case latency.
        """
        params: List[Any] = [("q", query), ("maxResults", page_size)]
        params.extend(("labelIds", label) for label in label_filters)
        data = await self._get("/messages", params=params)
        return [m["id"] for m in data.get("messages", []) if m.get("id")]

    async def get_message(self, message_id: str) -> Dict[str, Any]:
        return await self._get(f"/messages/{message_id}", params={"format": "full"})

    async def get_attachment(self, message_id: str, attachment_id: str) -> str:
        data = await self._get(f"/messages/{message_id}/attachments/{attachment_id}")
        return data.get("data", "")

    async def get_changes_since(self, cursor: str) -> MessageChanges:
        """Collect ids of messages added since ``cursor`` across all history pages."""
        message_ids: List[str] = []
        seen = set()
        new_cursor: Optional[str] = None
        page_token: Optional[str] = None

        while True:
            params = {"startHistoryId": cursor, "historyTypes": "messageAdded"}
            if page_token:
                params["pageToken"] = page_token
            try:
                data = await self._get("/history", params=params)
            except ProviderError as exc:
                if exc.status_code == 404:
                    raise CursorExpired(f"History id {cursor} is no longer available") from exc
                raise

            new_cursor = data.get("historyId", new_cursor)
            for record in data.get("history", []):
                added = [a.get("message", {}) for a in record.get("messagesAdded", [])]
                for message in added or record.get("messages", []):
                    message_id = message.get("id")
                    if message_id and message_id not in seen:
                        seen.add(message_id)
                        message_ids.append(message_id)

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return MessageChanges(message_ids=message_ids, new_cursor=new_cursor or cursor)

    async def get_current_cursor(self) -> str:
        profile = await self._get("/profile")
        history_id = profile.get("historyId")
        if not history_id:
            raise ProviderError("Gmail profile did not include a historyId")
        return str(history_id)
