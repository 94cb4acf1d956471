"""Tests for the per-user access-token cache."""
from datetime import timedelta

from planner.google.token_cache import TokenCache
from planner.timeutil import utcnow


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestTokenCache:
    def test_miss(self):
        assert TokenCache().get("user-1") is None

    def test_put_then_get(self):
        cache = TokenCache(ttl_seconds=3600, clock=FakeClock())
        cache.put("user-1", "tok")
        assert cache.get("user-1") == "tok"

    def test_expires_after_ttl(self):
        clock = FakeClock()
        cache = TokenCache(ttl_seconds=3600, clock=clock)
        cache.put("user-1", "tok")
        clock.now = 3600
        assert cache.get("user-1") is None

    def test_token_expiry_shortens_ttl(self):
        clock = FakeClock()
        cache = TokenCache(ttl_seconds=3600, clock=clock)
        cache.put("user-1", "tok", expires_at=utcnow() + timedelta(minutes=10))
        clock.now = 11 * 60
        assert cache.get("user-1") is None

    def test_already_expired_token_not_served(self):
        cache = TokenCache(ttl_seconds=3600, clock=FakeClock())
        cache.put("user-1", "tok", expires_at=utcnow() - timedelta(seconds=5))
        assert cache.get("user-1") is None

    def test_invalidate(self):
        cache = TokenCache(clock=FakeClock())
        cache.put("user-1", "tok")
        cache.invalidate("user-1")
        assert cache.get("user-1") is None

    def test_invalidate_unknown_user_is_noop(self):
        TokenCache().invalidate("ghost")

    def test_users_are_isolated(self):
        cache = TokenCache(clock=FakeClock())
        cache.put("user-1", "a")
        cache.put("user-2", "b")
        cache.invalidate("user-1")
        assert cache.get("user-2") == "b"
