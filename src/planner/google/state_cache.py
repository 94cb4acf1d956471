"""
CSRF state cache for the OAuth authorization round-trip.

Each entry maps an unguessable state token to the user that requested the
authorization URL. Entries are single-use and expire after a TTL.

InMemoryStateCache only works for a single process. Multi-instance
deployments should implement StateCache on a shared TTL key-value store.
"""
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional


class StateCache(ABC):
    """Interface so the backing store can be swapped."""

    @abstractmethod
    def put(self, token: str, user_id: str, ttl_seconds: float) -> None:
        ...

    @abstractmethod
    def take_if_valid(self, token: str) -> Optional[str]:
        """Remove the entry and return its user id, or None if unknown/expired."""


@dataclass
class _StateEntry:
    user_id: str
    issued_at: float
    ttl_seconds: float


class InMemoryStateCache(StateCache):
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, _StateEntry] = {}
        self._lock = threading.Lock()

    def put(self, token: str, user_id: str, ttl_seconds: float) -> None:
        with self._lock:
            self._purge_expired()
            self._entries[token] = _StateEntry(user_id, self._clock(), ttl_seconds)

    def take_if_valid(self, token: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.pop(token, None)
        if entry is None:
            return None
        if self._clock() - entry.issued_at > entry.ttl_seconds:
            return None
        return entry.user_id

    def __len__(self) -> int:
        return len(self._entries)

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [t for t, e in self._entries.items() if now - e.issued_at > e.ttl_seconds]
        for token in expired:
            del self._entries[token]
