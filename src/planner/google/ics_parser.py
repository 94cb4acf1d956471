"""
Calendar payload extraction and ICS parsing.

Converts Gmail message payloads into plain field dicts that map directly
onto Event columns. No DB or network access here; callers (sync_service)
fetch attachments and handle persistence.

Gmail message payloads are a tree of MIME parts:

    {"mimeType": "multipart/mixed", "parts": [
        {"mimeType": "text/plain", "body": {"data": "..."}},
        {"mimeType": "text/calendar", "body": {"data": "<base64url ICS>"}},
        {"filename": "invite.ics", "body": {"attachmentId": "ANGjdJ..."}},
    ]}

Small calendar bodies arrive inline (``body.data``); larger ones only carry
an ``attachmentId`` and must be fetched separately. Both are base64url.
"""
import base64
import logging
from typing import Any, Dict, List, Optional

from icalendar import Calendar

from planner.timeutil import to_naive_utc

logger = logging.getLogger(__name__)

CALENDAR_MIME_TYPES = {"text/calendar", "application/ics"}
MAX_PART_DEPTH = 10


def decode_base64url(data: str) -> str:
    """Decode Gmail's base64url transport encoding (padding optional)."""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def is_calendar_part(part: Dict[str, Any]) -> bool:
    mime_type = (part.get("mimeType") or "").lower()
    filename = (part.get("filename") or "").lower()
    return mime_type in CALENDAR_MIME_TYPES or filename.endswith(".ics")


def find_calendar_parts(payload: Optional[Dict[str, Any]], depth: int = 0) -> List[Dict[str, Any]]:
    """Return every calendar MIME part in the payload tree, depth-first."""
    if not payload or depth > MAX_PART_DEPTH:
        return []
    if is_calendar_part(payload):
        return [payload]
    found: List[Dict[str, Any]] = []
    for part in payload.get("parts") or []:
        found.extend(find_calendar_parts(part, depth + 1))
    return found


def message_subject(message: Dict[str, Any]) -> str:
    headers = (message.get("payload") or {}).get("headers") or []
    for header in headers:
        if header.get("name", "").lower() == "subject":
            return header.get("value") or "No Subject"
    return "No Subject"


def _text(component, name: str) -> Optional[str]:
    value = component.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _temporal(component, name: str):
    prop = component.get(name)
    value = getattr(prop, "dt", None)
    if value is None:
        return None
    return to_naive_utc(value)


def parse_calendar_payload(ics_text: str) -> List[Dict[str, Any]]:
    """
    Parse ICS text into a list of event field dicts, one per valid VEVENT.

    A VEVENT without UID, DTSTART or DTEND is skipped with a warning; the
    remaining components are still returned. A payload with no valid
    components yields an empty list.

    Raises:
        ValueError: the text is not parseable as iCalendar at all.

    Returns:
        Dicts with keys: uid, title, description, location, start_date, end_date.
    """
    calendar = Calendar.from_ical(ics_text)
    events: List[Dict[str, Any]] = []

    for vevent in calendar.walk("VEVENT"):
        title = _text(vevent, "SUMMARY") or "Calendar Event"
        uid = _text(vevent, "UID")
        start = _temporal(vevent, "DTSTART")
        end = _temporal(vevent, "DTEND")

        if start is None or end is None:
            logger.warning("Skipping event without start/end date: %s", title)
            continue
        if uid is None:
            logger.warning("Skipping event without UID: %s", title)
            continue

        events.append({
            "uid": uid,
            "title": title,
            "description": _text(vevent, "DESCRIPTION"),
            "location": _text(vevent, "LOCATION"),
            "start_date": start,
            "end_date": end,
        })

    return events
