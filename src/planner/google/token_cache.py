"""Bounded per-user access-token cache with lazy expiry."""
import threading
import time
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from planner.timeutil import utcnow


class TokenCache:
    """
    Caches a user's access token for at most ``ttl_seconds``.

    An entry is also dropped once the token's own expiry passes, whichever
    comes first. Expired entries are evicted on access; nothing depends on
    eager eviction.
    """

    def __init__(self, ttl_seconds: float = 3600, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            token, deadline = entry
            if self._clock() >= deadline:
                del self._entries[user_id]
                return None
            return token

    def put(self, user_id: str, token: str, expires_at: Optional[datetime] = None) -> None:
        now = self._clock()
        deadline = now + self._ttl
        if expires_at is not None:
            remaining = (expires_at - utcnow()).total_seconds()
            deadline = min(deadline, now + max(remaining, 0.0))
        with self._lock:
            self._entries[user_id] = (token, deadline)

    def invalidate(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)
