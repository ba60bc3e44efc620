"""Tests for feed partitions and cache key derivation."""

from __future__ import annotations

import pytest

from app.cache.keys import (
    AUDIENCE_FILTERS,
    COMMUNITY_FILTERS,
    GLOBAL_FILTERS,
    FeedFilter,
    FeedScope,
    ScopeKind,
    author_audience,
    feed_key,
    partition_for_post,
    post_key,
)
from app.errors import InvalidFeedRequest

SCOPES = [
    FeedScope.global_feed(),
    FeedScope.community("c-1"),
    FeedScope.community("c-2"),
    FeedScope.community("c-1:official"),
]

# "alice" appears as both a college and a user id on purpose
AUDIENCES = {
    FeedFilter.CAMPUS: ["State U", "Tech", "alice"],
    FeedFilter.FOLLOWERS: ["alice", "bob"],
}


def all_partitions() -> list[tuple[FeedScope, FeedFilter, str | None]]:
    triples = []
    for scope in SCOPES:
        filters = GLOBAL_FILTERS if scope.kind is ScopeKind.GLOBAL else COMMUNITY_FILTERS
        for f in filters:
            triples.extend((scope, f, audience) for audience in AUDIENCES.get(f, [None]))
    return triples


class TestFeedKey:
    """Test cache key derivation."""

    def test_global_key_format(self) -> None:
        """Global keys carry the filter name."""
        assert feed_key(FeedScope.global_feed(), FeedFilter.ANYONE) == "feed:global:anyone"

    def test_campus_key_carries_college(self) -> None:
        key = feed_key(FeedScope.global_feed(), FeedFilter.CAMPUS, "State U")
        assert key == "feed:global:campus:State U"

    def test_followers_key_carries_viewer(self) -> None:
        key = feed_key(FeedScope.global_feed(), FeedFilter.FOLLOWERS, "alice")
        assert key == "feed:global:followers:alice"

    def test_community_key_format(self) -> None:
        """Community keys carry the community id and filter."""
        key = feed_key(FeedScope.community("abc"), FeedFilter.OFFICIAL)
        assert key == "feed:community:abc:official"

    def test_post_key_format(self) -> None:
        """Single post key has correct format."""
        assert post_key("p-42") == "post:p-42"

    def test_key_is_deterministic(self) -> None:
        """Equal inputs always produce the same key."""
        for scope, feed_filter, audience in all_partitions():
            twin = FeedScope(scope.kind, scope.community_id)
            assert feed_key(scope, feed_filter, audience) == feed_key(
                twin, FeedFilter(feed_filter.value), audience
            )

    def test_keys_never_collide(self) -> None:
        """Distinct partitions yield distinct keys across the whole enumeration."""
        triples = all_partitions()
        keys = {feed_key(*t) for t in triples}
        assert len(keys) == len(triples)

    def test_feed_keys_never_collide_with_post_keys(self) -> None:
        """Feed and post keys live in separate namespaces."""
        feed_keys = {feed_key(*t) for t in all_partitions()}
        assert not any(k.startswith("post:") for k in feed_keys)

    @pytest.mark.parametrize("feed_filter", AUDIENCE_FILTERS)
    @pytest.mark.parametrize("audience", [None, ""])
    def test_audience_required(self, feed_filter: FeedFilter, audience: str | None) -> None:
        with pytest.raises(InvalidFeedRequest):
            feed_key(FeedScope.global_feed(), feed_filter, audience)

    def test_audience_rejected_for_shared_partitions(self) -> None:
        with pytest.raises(InvalidFeedRequest):
            feed_key(FeedScope.global_feed(), FeedFilter.ANYONE, "State U")

    @pytest.mark.parametrize("feed_filter", COMMUNITY_FILTERS)
    def test_community_filter_rejected_on_global_scope(self, feed_filter: FeedFilter) -> None:
        """Official/regular only partition community feeds."""
        with pytest.raises(InvalidFeedRequest):
            feed_key(FeedScope.global_feed(), feed_filter)

    @pytest.mark.parametrize("feed_filter", GLOBAL_FILTERS)
    def test_global_filter_rejected_on_community_scope(self, feed_filter: FeedFilter) -> None:
        """Visibility tags only partition the global feed."""
        with pytest.raises(InvalidFeedRequest):
            feed_key(FeedScope.community("c-1"), feed_filter, "alice")


class TestFeedScope:
    """Test scope invariants."""

    def test_global_scope_rejects_community_id(self) -> None:
        with pytest.raises(ValueError):
            FeedScope(ScopeKind.GLOBAL, "c-1")

    def test_community_scope_requires_community_id(self) -> None:
        with pytest.raises(ValueError):
            FeedScope(ScopeKind.COMMUNITY)

    def test_scopes_compare_by_value(self) -> None:
        assert FeedScope.community("c-1") == FeedScope.community("c-1")
        assert FeedScope.community("c-1") != FeedScope.community("c-2")


class TestPartitionForPost:
    """Test mapping stored rows to their partition."""

    @pytest.mark.parametrize(
        ("tag", "expected"),
        [
            (None, FeedFilter.ANYONE),
            ("Anyone", FeedFilter.ANYONE),
            ("Campus Only", FeedFilter.CAMPUS),
            ("Followers only", FeedFilter.FOLLOWERS),
        ],
    )
    def test_global_posts_partition_by_tag(self, tag: str | None, expected: FeedFilter) -> None:
        scope, feed_filter = partition_for_post({"community_id": None, "community_tag": tag})
        assert scope == FeedScope.global_feed()
        assert feed_filter is expected

    def test_community_posts_partition_by_official_flag(self) -> None:
        official = partition_for_post({"community_id": "c-1", "is_official": True})
        regular = partition_for_post({"community_id": "c-1", "is_official": False})
        assert official == (FeedScope.community("c-1"), FeedFilter.OFFICIAL)
        assert regular == (FeedScope.community("c-1"), FeedFilter.REGULAR)

    def test_community_tag_ignored_inside_community(self) -> None:
        """A community post's tag does not move it into a global partition."""
        scope, _ = partition_for_post(
            {"community_id": "c-1", "community_tag": "Campus Only", "is_official": False}
        )
        assert scope.kind is ScopeKind.COMMUNITY


class TestAuthorAudience:
    """Test which audience key a post is filed under."""

    def test_campus_post_files_under_author_college(self) -> None:
        row = {"user_id": "u1", "college": "Tech"}
        assert author_audience(row, FeedFilter.CAMPUS) == "Tech"

    def test_followers_post_files_under_author(self) -> None:
        row = {"user_id": "u1", "college": "Tech"}
        assert author_audience(row, FeedFilter.FOLLOWERS) == "u1"

    def test_shared_partitions_have_no_audience(self) -> None:
        assert author_audience({"user_id": "u1"}, FeedFilter.ANYONE) is None
