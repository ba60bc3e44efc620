"""Tests for change-event driven cache invalidation."""

from __future__ import annotations

import pytest

from app.cache.coordinator import FeedCacheCoordinator
from app.cache.invalidation import (
    FeedCacheInvalidator,
    keys_for_follow_change,
    keys_for_like_change,
    keys_for_post_change,
)
from app.cache.keys import FeedFilter, FeedScope
from app.cache.store import MemoryCacheStore
from app.clients.change_notifier import ChangeEvent, LocalChangeNotifier
from app.errors import NotFound
from fakes import FailingStore, FakeFeedSource, make_post

GLOBAL = FeedScope.global_feed()


@pytest.fixture
def notifier(coordinator: FeedCacheCoordinator) -> LocalChangeNotifier:
    notifier = LocalChangeNotifier()
    FeedCacheInvalidator(coordinator).register(notifier)
    return notifier


def post_event(operation: str, post_id: str = "p-new", old: dict | None = None, **row) -> ChangeEvent:
    return ChangeEvent("posts", operation, {"post_id": post_id, "user_id": "u1", **row}, old=old)


class TestInvalidationKeys:
    """Test which keys each event resolves to."""

    def test_insert_targets_only_its_partition(self) -> None:
        event = post_event("insert", community_tag="Anyone")
        assert keys_for_post_change(event) == ["feed:global:anyone"]

    def test_update_also_targets_single_post(self) -> None:
        event = post_event("update", post_id="p1", community_id="c-9", is_official=True)
        assert keys_for_post_change(event) == ["feed:community:c-9:official", "post:p1"]

    def test_update_moving_partition_targets_both(self) -> None:
        event = post_event(
            "update",
            post_id="p1",
            community_tag="Campus Only",
            college="State U",
            old={"post_id": "p1", "community_tag": "Anyone"},
        )
        assert keys_for_post_change(event) == [
            "feed:global:campus:State U",
            "feed:global:anyone",
            "post:p1",
        ]

    def test_delete_targets_listing_and_single_post(self) -> None:
        event = post_event("delete", post_id="p1", community_tag="Anyone")
        assert keys_for_post_change(event) == ["feed:global:anyone", "post:p1"]

    def test_campus_post_targets_author_college(self) -> None:
        event = post_event("insert", community_tag="Campus Only", college="Tech")
        assert keys_for_post_change(event) == ["feed:global:campus:Tech"]

    def test_campus_post_without_college_left_to_ttl(self) -> None:
        event = post_event("insert", community_tag="Campus Only")
        assert keys_for_post_change(event) == []

    def test_followers_post_targets_author_listing(self) -> None:
        event = post_event("update", post_id="p1", community_tag="Followers only")
        assert keys_for_post_change(event) == ["feed:global:followers:u1", "post:p1"]

    def test_follow_targets_follower_listing(self) -> None:
        event = ChangeEvent("follows", "insert", {"follower_id": "a", "following_id": "b"})
        assert keys_for_follow_change(event) == ["feed:global:followers:a"]

    def test_like_targets_single_post_only(self) -> None:
        event = ChangeEvent("likes", "insert", {"user_id": "u1", "post_id": "p1"})
        assert keys_for_like_change(event) == ["post:p1"]


class TestFeedCacheInvalidator:
    """Test invalidation end to end through the notifier."""

    @pytest.mark.asyncio
    async def test_new_post_forces_fresh_query(
        self,
        coordinator: FeedCacheCoordinator,
        source: FakeFeedSource,
        notifier: LocalChangeNotifier,
    ) -> None:
        """A post matching (Global, Anyone) invalidates that key."""
        source.posts = [make_post("p1", 10)]
        await coordinator.get_feed(GLOBAL, FeedFilter.ANYONE)

        source.posts.append(make_post("p-new", 0))
        await notifier.publish(post_event("insert", community_tag=None))
        result = await coordinator.get_feed(GLOBAL, FeedFilter.ANYONE)

        assert result.cache_hit is False
        assert source.calls["query_feed"] == 2
        assert [p.post_id for p in result.posts] == ["p-new", "p1"]

    @pytest.mark.asyncio
    async def test_other_partitions_stay_cached(
        self,
        coordinator: FeedCacheCoordinator,
        source: FakeFeedSource,
        notifier: LocalChangeNotifier,
    ) -> None:
        scope = FeedScope.community("c-1")
        await coordinator.get_feed(scope, FeedFilter.REGULAR)
        await coordinator.get_feed(GLOBAL, FeedFilter.ANYONE)

        await notifier.publish(post_event("insert", community_id="c-1", is_official=True))

        assert (await coordinator.get_feed(scope, FeedFilter.REGULAR)).cache_hit is True
        assert (await coordinator.get_feed(GLOBAL, FeedFilter.ANYONE)).cache_hit is True

    @pytest.mark.asyncio
    async def test_delete_drops_post_and_listing(
        self,
        coordinator: FeedCacheCoordinator,
        source: FakeFeedSource,
        notifier: LocalChangeNotifier,
    ) -> None:
        source.posts = [make_post("p1")]
        await coordinator.get_feed(GLOBAL, FeedFilter.ANYONE)
        await coordinator.get_post("p1")

        source.posts = []
        await notifier.publish(post_event("delete", post_id="p1"))

        assert (await coordinator.get_feed(GLOBAL, FeedFilter.ANYONE)).posts == []
        with pytest.raises(NotFound):
            await coordinator.get_post("p1")

    @pytest.mark.asyncio
    async def test_like_leaves_listing_to_ttl(
        self,
        coordinator: FeedCacheCoordinator,
        source: FakeFeedSource,
        notifier: LocalChangeNotifier,
        store: MemoryCacheStore,
    ) -> None:
        source.posts = [make_post("p1")]
        await coordinator.get_feed(GLOBAL, FeedFilter.ANYONE)
        await coordinator.get_post("p1")

        await notifier.publish(ChangeEvent("likes", "insert", {"user_id": "u2", "post_id": "p1"}))

        assert await store.get("feed:global:anyone") is not None
        assert await store.get("post:p1") is None

    @pytest.mark.asyncio
    async def test_follow_refreshes_follower_listing(
        self,
        coordinator: FeedCacheCoordinator,
        source: FakeFeedSource,
        notifier: LocalChangeNotifier,
    ) -> None:
        source.posts = [make_post("bobs", user_id="bob", community_tag="Followers only")]
        before = await coordinator.get_feed(GLOBAL, FeedFilter.FOLLOWERS, requester="alice")
        await coordinator.get_feed(GLOBAL, FeedFilter.ANYONE)

        source.follows = {("alice", "bob")}
        await notifier.publish(
            ChangeEvent("follows", "insert", {"follower_id": "alice", "following_id": "bob"})
        )
        after = await coordinator.get_feed(GLOBAL, FeedFilter.FOLLOWERS, requester="alice")

        assert before.posts == []
        assert [p.post_id for p in after.posts] == ["bobs"]
        assert (await coordinator.get_feed(GLOBAL, FeedFilter.ANYONE)).cache_hit is True

    @pytest.mark.asyncio
    async def test_campus_post_refreshes_author_college_only(
        self,
        coordinator: FeedCacheCoordinator,
        source: FakeFeedSource,
        notifier: LocalChangeNotifier,
    ) -> None:
        source.colleges = {"alice": "State U", "tom": "Tech"}
        await coordinator.get_feed(GLOBAL, FeedFilter.CAMPUS, requester="alice")
        await coordinator.get_feed(GLOBAL, FeedFilter.CAMPUS, requester="tom")

        source.posts = [make_post("new", college="State U", community_tag="Campus Only")]
        await notifier.publish(
            post_event("insert", post_id="new", community_tag="Campus Only", college="State U")
        )

        alice = await coordinator.get_feed(GLOBAL, FeedFilter.CAMPUS, requester="alice")
        tom = await coordinator.get_feed(GLOBAL, FeedFilter.CAMPUS, requester="tom")
        assert [p.post_id for p in alice.posts] == ["new"]
        assert tom.cache_hit is True

    @pytest.mark.asyncio
    async def test_store_outage_does_not_raise(self, source: FakeFeedSource) -> None:
        coordinator = FeedCacheCoordinator(FailingStore(), source)
        invalidator = FeedCacheInvalidator(coordinator)
        await invalidator.on_post_change(post_event("insert"))
