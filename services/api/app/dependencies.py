"""
Wiring for the feed cache: builds the store, coordinator and change
notifier from settings, and exposes them to routers as FastAPI deps.
"""
import logging

from fastapi import Request, Response

from app.cache.coordinator import FeedCacheCoordinator
from app.cache.store import CacheStore, MemoryCacheStore, RedisCacheStore
from app.clients.change_notifier import KafkaChangeNotifier, LocalChangeNotifier
from app.clients.redis_client import get_redis
from app.config import settings
from app.database import AsyncSessionLocal
from app.feed_source import SqlFeedSource

logger = logging.getLogger(__name__)


def build_store() -> CacheStore:
    if settings.cache_backend == "memory":
        logger.info("Feed cache backend: in-process memory")
        return MemoryCacheStore()
    return RedisCacheStore(get_redis())


def build_coordinator(store: CacheStore) -> FeedCacheCoordinator:
    return FeedCacheCoordinator(
        store,
        SqlFeedSource(AsyncSessionLocal),
        feed_ttl=settings.feed_cache_ttl,
        post_ttl=settings.post_cache_ttl,
        page_size=settings.feed_page_size,
    )


def build_notifier() -> LocalChangeNotifier:
    if settings.change_notifier == "local":
        return LocalChangeNotifier()
    return KafkaChangeNotifier()


def get_coordinator(request: Request) -> FeedCacheCoordinator:
    return request.app.state.coordinator


def get_notifier(request: Request) -> LocalChangeNotifier:
    return request.app.state.notifier


def set_cache_headers(response: Response, cache_hit: bool, ttl: int, personalized: bool) -> None:
    """X-Cache reflects the store lookup; shared caches only for anonymous reads."""
    response.headers["X-Cache"] = "HIT" if cache_hit else "MISS"
    if personalized:
        response.headers["Cache-Control"] = "private, no-store"
    else:
        response.headers["Cache-Control"] = (
            f"public, s-maxage={ttl}, stale-while-revalidate={ttl * 2}"
        )
