"""
Feed cache invalidation driven by row-change events.

  posts    — eager: the row's partition key (and the previous version's,
             on updates that move it) plus post:{id} on update/delete.
             Campus keys need the author's college on the row. A
             followers-only post drops its author's own listing; its
             followers' listings are left to their 60s TTL
  likes    — listings are left to their 60s TTL, since a like touches
             every listing holding the post; post:{id} is dropped
  follows  — eager: the follower's followers listing is dropped, since
             its author set just changed
"""
import logging
from typing import Optional

from app.cache.coordinator import FeedCacheCoordinator
from app.cache.keys import (
    AUDIENCE_FILTERS,
    FeedFilter,
    FeedScope,
    author_audience,
    feed_key,
    partition_for_post,
    post_key,
)
from app.clients.change_notifier import ChangeEvent, LocalChangeNotifier
from app.telemetry import CACHE_INVALIDATIONS_TOTAL

logger = logging.getLogger(__name__)


def _listing_key(row: dict) -> Optional[str]:
    scope, feed_filter = partition_for_post(row)
    audience = author_audience(row, feed_filter)
    if feed_filter in AUDIENCE_FILTERS and not audience:
        logger.warning(
            "Post %s has no %s audience on its change row; relying on TTL",
            row.get("post_id"), feed_filter.value,
        )
        return None
    return feed_key(scope, feed_filter, audience)


def keys_for_post_change(event: ChangeEvent) -> list[str]:
    keys = []
    for row in (event.row, event.old):
        if not row:
            continue
        key = _listing_key(row)
        if key and key not in keys:
            keys.append(key)
    post_id = event.row.get("post_id")
    if event.operation != "insert" and post_id:
        keys.append(post_key(post_id))
    return keys


def keys_for_like_change(event: ChangeEvent) -> list[str]:
    post_id = event.row.get("post_id")
    return [post_key(post_id)] if post_id else []


def keys_for_follow_change(event: ChangeEvent) -> list[str]:
    follower_id = event.row.get("follower_id")
    if not follower_id:
        return []
    return [feed_key(FeedScope.global_feed(), FeedFilter.FOLLOWERS, follower_id)]


class FeedCacheInvalidator:
    def __init__(self, coordinator: FeedCacheCoordinator):
        self.coordinator = coordinator

    def register(self, notifier: LocalChangeNotifier) -> None:
        notifier.subscribe("posts", self.on_post_change)
        notifier.subscribe("likes", self.on_like_change)
        notifier.subscribe("follows", self.on_follow_change)

    async def on_post_change(self, event: ChangeEvent) -> None:
        await self._invalidate(event, keys_for_post_change(event))

    async def on_like_change(self, event: ChangeEvent) -> None:
        await self._invalidate(event, keys_for_like_change(event))

    async def on_follow_change(self, event: ChangeEvent) -> None:
        await self._invalidate(event, keys_for_follow_change(event))

    async def _invalidate(self, event: ChangeEvent, keys: list[str]) -> None:
        if not keys:
            return
        removed = await self.coordinator.invalidate(*keys)
        CACHE_INVALIDATIONS_TOTAL.labels(table=event.table).inc(len(keys))
        logger.info(
            "%s %s invalidated %s (%d present)",
            event.table, event.operation, ", ".join(keys), removed,
        )
