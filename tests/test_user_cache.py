"""Tests for the process-local user cache."""

import asyncio
import threading

import pytest

from elsie.service.user_cache import UserCache
from elsie.storage.models import User


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return UserCache(ttl_seconds=60, sweep_interval=300, clock=clock)


def _user(name: str = "Alice") -> User:
    return User.new(name=name, email=f"{name.lower()}@example.com", password_hash="x")


class TestGetSet:
    def test_get_after_set_within_ttl(self, cache, clock):
        user = _user()
        cache.set(user.id, user)
        clock.advance(59)

        assert cache.get(user.id) is user

    def test_miss_at_ttl_evicts_entry(self, cache, clock):
        user = _user()
        cache.set(user.id, user)
        clock.advance(60)

        assert cache.get(user.id) is None
        assert user.id not in cache

    def test_unknown_id_misses(self, cache):
        assert cache.get("missing") is None

    def test_set_refreshes_insertion_time(self, cache, clock):
        user = _user()
        cache.set(user.id, user)
        clock.advance(50)
        cache.set(user.id, user)
        clock.advance(50)

        assert cache.get(user.id) is user

    def test_invalidate_and_clear(self, cache):
        alice, bob = _user("Alice"), _user("Bob")
        cache.set(alice.id, alice)
        cache.set(bob.id, bob)

        cache.invalidate(alice.id)
        assert alice.id not in cache
        assert len(cache) == 1

        cache.clear()
        assert len(cache) == 0


class TestSweep:
    def test_sweep_removes_only_stale_entries(self, cache, clock):
        stale = _user("Stale")
        cache.set(stale.id, stale)
        clock.advance(45)
        fresh = _user("Fresh")
        cache.set(fresh.id, fresh)
        clock.advance(20)

        assert cache.sweep() == 1
        assert stale.id not in cache
        assert fresh.id in cache

    async def test_background_sweep_removes_unqueried_entries(self, clock):
        purged = []
        cache = UserCache(
            ttl_seconds=60,
            sweep_interval=0.01,
            clock=clock,
            after_sweep=lambda: purged.append(True),
        )
        user = _user()
        cache.set(user.id, user)
        clock.advance(120)

        await cache.start()
        assert cache.running
        await asyncio.sleep(0.1)
        await cache.stop()

        assert len(cache) == 0
        assert purged
        assert not cache.running

    async def test_start_and_stop_are_idempotent(self, cache):
        await cache.start()
        await cache.start()
        await cache.stop()
        await cache.stop()

        assert not cache.running

    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValueError):
            UserCache(ttl_seconds=0)


def test_concurrent_access_is_consistent(cache):
    users = [_user(f"User{i}") for i in range(200)]

    def writer(chunk):
        for u in chunk:
            cache.set(u.id, u)
            cache.get(u.id)

    threads = [threading.Thread(target=writer, args=(users[i::4],)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(cache) == 200
