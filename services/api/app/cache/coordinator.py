"""
Feed cache coordinator — read-through cache in front of the feed source.

Read path (feed listing and single post):

  1. Derive the cache key from the partition (or post id). Campus and
     followers listings are keyed by audience, resolved from the viewer:
     their college or their own id. Without a viewer they are empty.
  2. Store lookup.  Hit → parse the stored JSON.
                    Miss → query the source, write the raw result back
                    with the partition's TTL.
  3. Per-viewer steps, never cached:
       • anonymity   — anonymous authors are masked except for themselves
       • engagement  — one batched likes + bookmarks lookup
       • trending    — optional re-sort by like count

Store failures never fail a read: a failed GET is a miss, a failed SET is
logged and the fetched data is still returned. Source failures propagate
as SourceUnavailable and nothing is cached. NotFound is never cached.
"""
import logging
import time
from dataclasses import dataclass
from typing import Optional, TypeVar

from opentelemetry import trace
from pydantic import TypeAdapter, ValidationError

from app.cache.keys import (
    AUDIENCE_FILTERS,
    FeedFilter,
    FeedScope,
    FeedSort,
    feed_key,
    post_key,
    validate_partition,
)
from app.cache.store import CacheStore
from app.errors import InvalidFeedRequest, StoreUnavailable
from app.feed_source import Engagement, FeedSource, ViewerContext
from app.schemas import ANONYMOUS_AUTHOR, FeedPost, PostView
from app.telemetry import (
    CACHE_REQUESTS_TOTAL,
    CACHE_STORE_ERRORS_TOTAL,
    FEED_LATENCY,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")

_FEED_PAYLOAD = TypeAdapter(list[FeedPost])
_POST_PAYLOAD = TypeAdapter(FeedPost)


@dataclass
class FeedResult:
    posts: list[PostView]
    cache_hit: bool


@dataclass
class PostResult:
    post: PostView
    cache_hit: bool


def present(
    post: FeedPost, requester: Optional[str], engagement: Engagement
) -> PostView:
    """Build one viewer's copy of a cached post."""
    data = post.model_dump()
    if post.is_anonymous:
        owner_id = post.user_id if requester == post.user_id else None
        data["author"] = ANONYMOUS_AUTHOR.model_copy(update={"id": owner_id}).model_dump()
        data["user_id"] = owner_id
    return PostView(
        **data,
        is_upvoted=post.post_id in engagement.liked,
        is_bookmarked=post.post_id in engagement.bookmarked,
    )


def audience_of(feed_filter: FeedFilter, viewer: ViewerContext) -> Optional[str]:
    """College for the campus feed, user id for the followers feed."""
    if feed_filter is FeedFilter.CAMPUS:
        return viewer.college
    return viewer.user_id


class FeedCacheCoordinator:
    def __init__(
        self,
        store: CacheStore,
        source: FeedSource,
        *,
        feed_ttl: int = 60,
        post_ttl: int = 300,
        page_size: int = 20,
    ):
        self.store = store
        self.source = source
        self.feed_ttl = feed_ttl
        self.post_ttl = post_ttl
        self.page_size = page_size

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_feed(
        self,
        scope: FeedScope,
        feed_filter: FeedFilter,
        requester: Optional[str] = None,
        sort: FeedSort = FeedSort.RECENT,
    ) -> FeedResult:
        validate_partition(scope, feed_filter)
        if sort is FeedSort.TRENDING and feed_filter is not FeedFilter.ANYONE:
            raise InvalidFeedRequest("Trending applies to the public feed only")

        start = time.perf_counter()
        with tracer.start_as_current_span("feed_cache.get_feed") as span:
            viewer = None
            audience = None
            if feed_filter in AUDIENCE_FILTERS:
                if requester is not None:
                    viewer = await self.source.query_viewer(requester)
                    audience = audience_of(feed_filter, viewer)
                if audience is None:
                    # Anonymous caller, or a campus viewer with no college
                    span.set_attribute("feed.posts_returned", 0)
                    return FeedResult(posts=[], cache_hit=False)

            key = feed_key(scope, feed_filter, audience)
            span.set_attribute("cache.key", key)

            posts = await self._read(key, _FEED_PAYLOAD, "feed")
            cache_hit = posts is not None
            if posts is None:
                posts = await self.source.query_feed(
                    scope, feed_filter, limit=self.page_size, offset=0, viewer=viewer
                )
                await self._populate(
                    key, _FEED_PAYLOAD.dump_json(posts).decode("utf-8"), self.feed_ttl
                )
            span.set_attribute("cache.hit", cache_hit)

            views = await self._personalize(posts, requester)
            if sort is FeedSort.TRENDING:
                # sorted() is stable: equal like counts keep recency order
                views = sorted(views, key=lambda p: p.like_count, reverse=True)

            span.set_attribute("feed.posts_returned", len(views))

        FEED_LATENCY.labels(cache="feed").observe(time.perf_counter() - start)
        return FeedResult(posts=views, cache_hit=cache_hit)

    async def get_post(self, post_id: str, requester: Optional[str] = None) -> PostResult:
        key = post_key(post_id)
        start = time.perf_counter()
        with tracer.start_as_current_span("feed_cache.get_post") as span:
            span.set_attribute("cache.key", key)

            post = await self._read(key, _POST_PAYLOAD, "post")
            cache_hit = post is not None
            if post is None:
                # NotFound propagates from here and is never written back
                post = await self.source.query_post_by_id(post_id)
                await self._populate(key, post.model_dump_json(), self.post_ttl)
            span.set_attribute("cache.hit", cache_hit)

            views = await self._personalize([post], requester)

        FEED_LATENCY.labels(cache="post").observe(time.perf_counter() - start)
        return PostResult(post=views[0], cache_hit=cache_hit)

    # ── Invalidation ──────────────────────────────────────────────────────

    async def invalidate(self, *keys: str) -> int:
        """Delete cache entries. Returns the number removed, 0 if the store is down."""
        if not keys:
            return 0
        try:
            removed = await self.store.delete(*keys)
        except StoreUnavailable as exc:
            CACHE_STORE_ERRORS_TOTAL.labels(operation="delete").inc()
            logger.warning("Cache invalidation failed, relying on TTL: %s", exc)
            return 0
        logger.debug("Invalidated %s (%d removed)", ", ".join(keys), removed)
        return removed

    # ── Internals ─────────────────────────────────────────────────────────

    async def _read(self, key: str, adapter: TypeAdapter[T], cache: str) -> Optional[T]:
        try:
            raw = await self.store.get(key)
        except StoreUnavailable as exc:
            CACHE_STORE_ERRORS_TOTAL.labels(operation="get").inc()
            CACHE_REQUESTS_TOTAL.labels(cache=cache, result="error").inc()
            logger.warning("Cache read failed for %s, serving from source: %s", key, exc)
            return None

        if raw is None:
            CACHE_REQUESTS_TOTAL.labels(cache=cache, result="miss").inc()
            logger.debug("Cache MISS %s", key)
            return None

        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            if not isinstance(raw, str):
                raise TypeError(f"unexpected cached type {type(raw).__name__}")
            value = adapter.validate_json(raw)
        except (TypeError, UnicodeDecodeError, ValidationError) as exc:
            CACHE_REQUESTS_TOTAL.labels(cache=cache, result="miss").inc()
            logger.warning("Discarding unreadable cache entry %s: %s", key, exc)
            return None

        CACHE_REQUESTS_TOTAL.labels(cache=cache, result="hit").inc()
        logger.debug("Cache HIT %s", key)
        return value

    async def _populate(self, key: str, payload: str, ttl: int) -> None:
        try:
            await self.store.set(key, payload, ttl)
        except StoreUnavailable as exc:
            CACHE_STORE_ERRORS_TOTAL.labels(operation="set").inc()
            logger.warning("Cache write failed for %s: %s", key, exc)

    async def _personalize(
        self, posts: list[FeedPost], requester: Optional[str]
    ) -> list[PostView]:
        engagement = Engagement()
        if requester is not None and posts:
            engagement = await self.source.query_user_likes_and_bookmarks(
                requester, [p.post_id for p in posts]
            )
        return [present(p, requester, engagement) for p in posts]
