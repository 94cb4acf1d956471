"""Clock helpers. Every timestamp in the database is naive UTC."""
from datetime import date, datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value) -> datetime:
    """Normalize a date/datetime (aware, floating or all-day) to naive UTC.

    Floating times carry no zone information and are read as UTC. All-day
    dates become midnight of that day.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    raise TypeError(f"Unsupported temporal value: {value!r}")
