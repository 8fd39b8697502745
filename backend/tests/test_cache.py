import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from utils.cache import CacheManager, cached_fetch


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return _Clock()


@pytest.fixture
def cache(clock):
    return CacheManager(default_ttl=10.0, clock=clock)


def test_entries_expire_after_ttl(cache, clock):
    cache.set("a", 1)
    cache.set("b", 2, ttl=30.0)

    clock.now = 10.0
    assert cache.get("a") == 1

    clock.now = 10.5
    assert cache.get("a") is None
    assert cache.has("a") is False
    assert cache.get("b") == 2


def test_invalidate_pattern(cache):
    cache.set("account:1", "x")
    cache.set("account:2", "y")
    cache.set("markets", "z")

    assert cache.invalidate_pattern(r"^account:") == 2
    assert cache.has("markets") is True

    cache.invalidate("markets")
    assert cache.stats()["size"] == 0


def test_stats_reports_age_and_remaining_ttl(cache, clock):
    cache.set("k", 1)
    clock.now = 4.0

    stats = cache.stats()

    assert stats["size"] == 1
    assert stats["entries"] == [{"key": "k", "age": 4.0, "ttl": 6.0}]


@pytest.mark.asyncio
async def test_cached_fetch_calls_fetcher_once_per_ttl(cache, clock):
    fetcher = AsyncMock(side_effect=["first", "second"])

    assert await cached_fetch("key", fetcher, cache=cache) == "first"
    assert await cached_fetch("key", fetcher, cache=cache) == "first"
    assert fetcher.await_count == 1

    clock.now = 11.0
    assert await cached_fetch("key", fetcher, cache=cache) == "second"
