"""Fixtures for the feed cache tests.

The coordinator only sees the CacheStore and FeedSource protocols, so the
tests run it against an in-memory store on a fake clock and an in-memory
source that counts its calls (see fakes.py).
"""

from __future__ import annotations

import pytest

from app.cache.coordinator import FeedCacheCoordinator
from app.cache.store import MemoryCacheStore

from fakes import FakeClock, FakeFeedSource


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryCacheStore:
    return MemoryCacheStore(clock=clock)


@pytest.fixture
def source() -> FakeFeedSource:
    return FakeFeedSource()


@pytest.fixture
def coordinator(store: MemoryCacheStore, source: FakeFeedSource) -> FeedCacheCoordinator:
    return FeedCacheCoordinator(store, source, feed_ttl=60, post_ttl=300, page_size=20)
