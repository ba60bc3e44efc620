"""In-memory collaborators for the feed cache tests.

The coordinator only sees the CacheStore and FeedSource protocols, so the
tests run it against an in-memory store on a fake clock and an in-memory
source that counts its calls.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta

from app.cache.keys import FeedFilter, FeedScope, partition_for_post
from app.cache.store import MemoryCacheStore
from app.errors import NotFound, SourceUnavailable, StoreUnavailable
from app.feed_source import Engagement, ViewerContext
from app.schemas import FeedPost, PostAuthor

BASE_TIME = datetime(2026, 10, 1, 12, 0, 0)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def __call__(self) -> float:
        return self.now


class FakeFeedSource:
    """In-memory source of truth with per-method call counters."""

    def __init__(self, posts: list[FeedPost] | None = None) -> None:
        self.posts: list[FeedPost] = list(posts or [])
        self.likes: set[tuple[str, str]] = set()
        self.bookmarks: set[tuple[str, str]] = set()
        self.colleges: dict[str, str] = {}
        self.follows: set[tuple[str, str]] = set()
        self.calls: Counter[str] = Counter()
        self.fail = False

    def _check(self, name: str) -> None:
        self.calls[name] += 1
        if self.fail:
            raise SourceUnavailable("database down")

    async def query_feed(
        self,
        scope: FeedScope,
        feed_filter: FeedFilter,
        limit: int,
        offset: int = 0,
        viewer: ViewerContext | None = None,
    ) -> list[FeedPost]:
        self._check("query_feed")
        matching = [
            p for p in self.posts if partition_for_post(p.model_dump()) == (scope, feed_filter)
        ]
        if feed_filter is FeedFilter.CAMPUS:
            matching = [p for p in matching if p.author and p.author.college == viewer.college]
        elif feed_filter is FeedFilter.FOLLOWERS:
            authors = viewer.following | {viewer.user_id}
            matching = [p for p in matching if p.user_id in authors]
        matching.sort(key=lambda p: p.created_at, reverse=True)
        return matching[offset : offset + limit]

    async def query_post_by_id(self, post_id: str) -> FeedPost:
        self._check("query_post_by_id")
        for post in self.posts:
            if post.post_id == post_id:
                return post
        raise NotFound(f"Post {post_id} not found")

    async def query_user_likes_and_bookmarks(
        self, user_id: str, post_ids: list[str]
    ) -> Engagement:
        self._check("query_user_likes_and_bookmarks")
        wanted = set(post_ids)
        return Engagement(
            liked={p for u, p in self.likes if u == user_id and p in wanted},
            bookmarked={p for u, p in self.bookmarks if u == user_id and p in wanted},
        )

    async def query_viewer(self, user_id: str) -> ViewerContext:
        self._check("query_viewer")
        return ViewerContext(
            user_id=user_id,
            college=self.colleges.get(user_id),
            following={f for u, f in self.follows if u == user_id},
        )


class FailingStore:
    """Cache store whose every operation fails."""

    async def get(self, key: str):
        raise StoreUnavailable("connection refused")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        raise StoreUnavailable("connection refused")

    async def delete(self, *keys: str) -> int:
        raise StoreUnavailable("connection refused")


class WriteFailingStore(MemoryCacheStore):
    """Reads work (and always miss); writes fail."""

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        raise StoreUnavailable("read-only replica")


def make_post(
    post_id: str,
    minutes_ago: int = 0,
    *,
    user_id: str = "author-1",
    college: str | None = "State U",
    **fields,
) -> FeedPost:
    author = PostAuthor(
        id=user_id,
        full_name=f"User {user_id}",
        username=f"@{user_id}",
        avatar_url=f"https://cdn.example.com/{user_id}.png",
        college=college,
    )
    return FeedPost(
        post_id=post_id,
        user_id=user_id,
        author=author,
        content=f"content of {post_id}",
        created_at=BASE_TIME - timedelta(minutes=minutes_ago),
        **fields,
    )
