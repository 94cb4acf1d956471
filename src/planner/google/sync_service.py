"""
CalendarSyncService — pulls calendar invitations out of Gmail into ``events``.

Per-integration state machine:

    idle ──▶ syncing ──▶ idle      (success: cursor advanced, error cleared)
                    └──▶ error     (failure: message stored, exception re-raised)
    error ──▶ syncing               (errors are retried on the next attempt)

Full sync:
  1. Take the soft per-user lock (status → "syncing")
  2. List candidate messages (ICS attachment / invitation subject / calendar MIME)
  3. For each message: extract calendar payload → parse → apply upsert rule
  4. Read the provider's current cursor and store it, status → "idle"

Incremental sync diffs against the stored cursor instead of listing; without
a cursor it runs a full sync.

A single message that fails to fetch or parse is logged and skipped. A
failure to obtain a token or to read the change feed aborts the pass and is
recorded on the integration. Events already inserted are kept: every insert
is independently idempotent through the (user, external uid) dedup key.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import or_, update
from sqlmodel import Session, select

from planner.config import get_settings
from planner.errors import CursorExpired, IntegrationNotFound
from planner.google.auth import PROVIDER, CredentialStore
from planner.google.client import CalendarProvider, GmailClient
from planner.google.ics_parser import (
    decode_base64url,
    find_calendar_parts,
    message_subject,
    parse_calendar_payload,
)
from planner.google.token_cache import TokenCache
from planner.models.event import Event
from planner.models.integration import SYNC_ERROR, SYNC_IDLE, SYNC_SYNCING, Integration
from planner.timeutil import utcnow

logger = logging.getLogger(__name__)

CANDIDATE_QUERIES = [
    "filename:ics",
    'subject:"invitation"',
    'subject:"calendar"',
    'mimeType:"text/calendar"',
]
CALENDAR_QUERY = " OR ".join(f"({q})" for q in CANDIDATE_QUERIES)


# ─── Upsert rule ──────────────────────────────────────────────────────────────

UpsertRule = Callable[[Session, str, str, Dict[str, Any]], bool]


def insert_once(session: Session, user_id: str, provider: str, fields: Dict[str, Any]) -> bool:
    """Insert a synced event unless one with the same external UID exists.

    Existing rows are never updated: edits made upstream after the first
    sighting are ignored.

    Returns:
        True if a new Event was added to the session.
    """
    existing = session.exec(
        select(Event.id).where(
            Event.user_id == user_id,
            Event.external_id[provider].as_string() == fields["uid"],
        )
    ).first()
    if existing is not None:
        logger.info("Event already synced: %s", fields["title"])
        return False

    now = utcnow()
    session.add(Event(
        user_id=user_id,
        title=fields["title"],
        description=fields.get("description"),
        start_date=fields["start_date"],
        end_date=fields["end_date"],
        location=fields.get("location"),
        type="meeting",
        status="scheduled",
        sync_source=provider,
        external_id={provider: fields["uid"]},
        is_read_only=True,
        last_external_sync=now,
        created_at=now,
        updated_at=now,
    ))
    return True


# ─── Service ──────────────────────────────────────────────────────────────────

@dataclass
class SyncResult:
    user_id: str
    mode: str  # "full" or "incremental"
    events_synced: int = 0
    messages_processed: int = 0
    messages_failed: int = 0
    skipped: bool = False
    reason: Optional[str] = None  # why the pass was skipped


class CalendarSyncService:
    """Orchestrates Gmail → events sync for connected users."""

    def __init__(
        self,
        credentials: CredentialStore,
        engine,
        client_factory: Optional[Callable[[str], CalendarProvider]] = None,
        token_cache: Optional[TokenCache] = None,
        upsert_rule: UpsertRule = insert_once,
    ):
        """
        Args:
            credentials: CredentialStore used to obtain access tokens.
            engine: SQLAlchemy engine (SQLModel create_engine result).
            client_factory: Builds a provider client from an access token.
                Defaults to GmailClient; tests pass a factory returning mocks.
            token_cache: Per-user access-token cache.
            upsert_rule: Applied to every parsed calendar component.
        """
        settings = get_settings()
        self.credentials = credentials
        self.engine = engine
        self.client_factory = client_factory or (
            lambda token: GmailClient(token, timeout=settings.provider_timeout_seconds)
        )
        self.token_cache = token_cache or TokenCache(settings.token_cache_ttl_seconds)
        self.upsert_rule = upsert_rule
        self.provider = PROVIDER
        self.page_size = settings.sync_page_size
        self.sync_interval = timedelta(minutes=settings.sync_interval_minutes)
        self.stale_after = timedelta(minutes=settings.sync_stale_after_minutes)
        self.error_max_length = settings.last_error_max_length

    # ── Public operations ─────────────────────────────────────────────────────

    async def full_sync(self, user_id: str) -> SyncResult:
        """
        Scan the mailbox for calendar invitations and store new events.

        Raises:
            IntegrationNotFound: the user never connected.
            Any exception from the provider or credential store (after
            recording it as the integration's last error).
        """
        result = SyncResult(user_id=user_id, mode="full")
        if not self._begin_sync(user_id):
            return self._skipped(result, "sync already in progress")

        logger.info("Starting full Gmail sync for user %s", user_id)
        try:
            await self._full_pass(user_id, result)
        except Exception as exc:
            self._record_failure(user_id, exc)
            raise

        logger.info(
            "Full Gmail sync completed for user %s: %d event(s) from %d message(s)",
            user_id, result.events_synced, result.messages_processed,
        )
        return result

    async def incremental_sync(self, user_id: str) -> SyncResult:
        """
        Process only messages added since the stored cursor.

        Never raises for a user without an integration; the result is
        marked skipped with reason "not connected" instead.
        """
        integration = self.credentials.get_integration(user_id)
        if integration is None:
            logger.warning("No Gmail integration found for user %s", user_id)
            return self._skipped(SyncResult(user_id=user_id, mode="incremental"), "not connected")

        if not integration.sync_cursor:
            return await self.full_sync(user_id)

        result = SyncResult(user_id=user_id, mode="incremental")
        try:
            if not self._begin_sync(user_id):
                return self._skipped(result, "sync already in progress")
        except IntegrationNotFound:
            return self._skipped(result, "not connected")

        try:
            await self._incremental_pass(user_id, integration.sync_cursor, result)
        except Exception as exc:
            self._record_failure(user_id, exc)
            raise

        if result.messages_processed:
            logger.info(
                "Incremental Gmail sync completed for user %s: %d event(s) from %d message(s)",
                user_id, result.events_synced, result.messages_processed,
            )
        return result

    def forget(self, user_id: str) -> None:
        """Drop any cached access token for the user (e.g. after disconnect)."""
        self.token_cache.invalidate(user_id)

    def list_synced_events(self, user_id: str, limit: int = 50) -> List[Event]:
        """Events imported from the provider, newest start first."""
        with Session(self.engine) as s:
            return list(s.exec(
                select(Event)
                .where(Event.user_id == user_id, Event.sync_source == self.provider)
                .order_by(Event.start_date.desc())
                .limit(limit)
            ).all())

    def list_due_user_ids(self) -> List[str]:
        """Users whose last sync is older than the sync interval.

        Rows currently syncing are excluded unless their lock has gone stale.
        Rows in "error" are included so failures are retried.
        """
        now = utcnow()
        with Session(self.engine) as s:
            rows = s.exec(
                select(Integration).where(
                    Integration.provider == self.provider,
                    or_(
                        Integration.last_sync_at.is_(None),
                        Integration.last_sync_at < now - self.sync_interval,
                    ),
                )
            ).all()
        return [row.user_id for row in rows if not self._is_locked(row, now)]

    # ── Passes ────────────────────────────────────────────────────────────────

    async def _full_pass(self, user_id: str, result: SyncResult) -> None:
        provider = await self._provider_for(user_id)
        integration = self.credentials.get_integration(user_id)
        if integration is None:
            raise IntegrationNotFound(user_id)

        message_ids = await provider.list_candidate_messages(
            list(integration.label_filters or []), CALENDAR_QUERY, self.page_size
        )
        logger.info("Found %d potential calendar message(s) for user %s", len(message_ids), user_id)

        for message_id in message_ids:
            await self._sync_message(provider, user_id, message_id, result)

        cursor = await provider.get_current_cursor()
        self._record_success(user_id, cursor)

    async def _incremental_pass(self, user_id: str, cursor: str, result: SyncResult) -> None:
        provider = await self._provider_for(user_id)
        try:
            changes = await provider.get_changes_since(cursor)
        except CursorExpired:
            logger.warning("Cursor for user %s expired; falling back to full sync", user_id)
            result.mode = "full"
            await self._full_pass(user_id, result)
            return

        if not changes.message_ids:
            logger.debug("No new messages since last sync for user %s", user_id)
            self._record_success(user_id, changes.new_cursor)
            return

        for message_id in changes.message_ids:
            await self._sync_message(provider, user_id, message_id, result)

        self._record_success(user_id, changes.new_cursor)

    # ── Per-message processing ────────────────────────────────────────────────

    async def _sync_message(
        self, provider: CalendarProvider, user_id: str, message_id: str, result: SyncResult
    ) -> None:
        try:
            message = await provider.get_message(message_id)
            result.events_synced += await self._process_message(provider, user_id, message)
            result.messages_processed += 1
        except Exception as exc:
            result.messages_failed += 1
            logger.warning("Failed to fetch/process message %s: %s", message_id, exc)

    async def _process_message(
        self, provider: CalendarProvider, user_id: str, message: Dict[str, Any]
    ) -> int:
        """Store events from the first calendar part that parses to any component."""
        message_id = message.get("id", "unknown")
        for part in find_calendar_parts(message.get("payload")):
            try:
                ics_text = await self._read_part(provider, message_id, part)
                if not ics_text:
                    continue
                components = parse_calendar_payload(ics_text)
            except Exception as exc:
                logger.warning("Skipping unreadable calendar part in message %s: %s", message_id, exc)
                continue
            if not components:
                continue
            return self._store_components(user_id, components)

        logger.debug("No calendar data in message %s (%s)", message_id, message_subject(message))
        return 0

    @staticmethod
    async def _read_part(provider: CalendarProvider, message_id: str, part: Dict[str, Any]) -> Optional[str]:
        body = part.get("body") or {}
        if body.get("data"):
            return decode_base64url(body["data"])
        if body.get("attachmentId"):
            data = await provider.get_attachment(message_id, body["attachmentId"])
            if data:
                return decode_base64url(data)
        return None

    def _store_components(self, user_id: str, components: List[Dict[str, Any]]) -> int:
        stored = 0
        with Session(self.engine) as s:
            for fields in components:
                if self.upsert_rule(s, user_id, self.provider, fields):
                    s.commit()
                    stored += 1
                    logger.info("Synced event: %s", fields["title"])
        return stored

    # ── Tokens ────────────────────────────────────────────────────────────────

    async def _provider_for(self, user_id: str) -> CalendarProvider:
        token = self.token_cache.get(user_id)
        if token is None:
            grant = await self.credentials.ensure_valid_grant(user_id)
            token = grant.access_token
            self.token_cache.put(user_id, token, grant.expires_at)
        return self.client_factory(token)

    # ── Integration status bookkeeping ────────────────────────────────────────

    def _is_locked(self, integration: Integration, now) -> bool:
        return (
            integration.status == SYNC_SYNCING
            and integration.sync_started_at is not None
            and integration.sync_started_at >= now - self.stale_after
        )

    def _begin_sync(self, user_id: str) -> bool:
        """Atomically move the integration to "syncing".

        Returns False when another pass holds a fresh lock.

        Raises:
            IntegrationNotFound: no integration row exists.
        """
        now = utcnow()
        stmt = (
            update(Integration)
            .where(
                Integration.user_id == user_id,
                Integration.provider == self.provider,
                or_(
                    Integration.status != SYNC_SYNCING,
                    Integration.sync_started_at.is_(None),
                    Integration.sync_started_at < now - self.stale_after,
                ),
            )
            .values(status=SYNC_SYNCING, sync_started_at=now, updated_at=now)
        )
        with self.engine.begin() as conn:
            acquired = conn.execute(stmt).rowcount == 1

        if acquired:
            return True
        if self.credentials.get_integration(user_id) is None:
            raise IntegrationNotFound(user_id)
        logger.info("Sync already in progress for user %s, skipping", user_id)
        return False

    def _record_success(self, user_id: str, cursor: Optional[str]) -> None:
        self._update_integration(
            user_id,
            status=SYNC_IDLE,
            last_error=None,
            last_sync_at=utcnow(),
            cursor=cursor,
        )

    def _record_failure(self, user_id: str, exc: Exception) -> None:
        message = (str(exc) or exc.__class__.__name__)[: self.error_max_length]
        logger.error("Gmail sync error for user %s: %s", user_id, message)
        self.token_cache.invalidate(user_id)
        self._update_integration(user_id, status=SYNC_ERROR, last_error=message)

    def _update_integration(
        self,
        user_id: str,
        *,
        status: str,
        last_error: Optional[str],
        last_sync_at=None,
        cursor: Optional[str] = None,
    ) -> None:
        with Session(self.engine) as s:
            row = s.exec(
                select(Integration).where(
                    Integration.user_id == user_id,
                    Integration.provider == self.provider,
                )
            ).first()
            if row is None:
                # Disconnected mid-sync
                return
            row.status = status
            row.last_error = last_error
            row.sync_started_at = None
            if last_sync_at is not None:
                row.last_sync_at = last_sync_at
            if cursor is not None:
                row.sync_cursor = cursor
            row.updated_at = utcnow()
            s.add(row)
            s.commit()

    @staticmethod
    def _skipped(result: SyncResult, reason: str) -> SyncResult:
        result.skipped = True
        result.reason = reason
        return result
