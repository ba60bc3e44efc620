"""
Feed partitions and cache key schema.

Key format:
  feed:global:anyone                      — public global feed
  feed:global:campus:{college}            — campus posts by authors of one college
  feed:global:followers:{user_id}         — followers-only posts one viewer may see
  feed:community:{community_id}:{filter}  — community feed partition
  post:{post_id}                          — single post

A partition is a (scope, filter) pair. Every stored post belongs to exactly
one partition, derived from its community_id, community_tag and is_official.
Campus and followers partitions are further split by audience, so each
cached page is already narrowed to what its viewers may see.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.errors import InvalidFeedRequest

# Stored community_tag values
TAG_ANYONE = "Anyone"
TAG_CAMPUS = "Campus Only"
TAG_FOLLOWERS = "Followers only"


class ScopeKind(str, Enum):
    GLOBAL = "global"
    COMMUNITY = "community"


class FeedFilter(str, Enum):
    ANYONE = "anyone"
    CAMPUS = "campus"
    FOLLOWERS = "followers"
    OFFICIAL = "official"
    REGULAR = "regular"


class FeedSort(str, Enum):
    RECENT = "recent"
    TRENDING = "trending"


GLOBAL_FILTERS = (FeedFilter.ANYONE, FeedFilter.CAMPUS, FeedFilter.FOLLOWERS)
COMMUNITY_FILTERS = (FeedFilter.OFFICIAL, FeedFilter.REGULAR)
# Partitions whose listing depends on who is asking
AUDIENCE_FILTERS = (FeedFilter.CAMPUS, FeedFilter.FOLLOWERS)


@dataclass(frozen=True)
class FeedScope:
    kind: ScopeKind
    community_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind is ScopeKind.GLOBAL and self.community_id is not None:
            raise ValueError("Global scope cannot carry a community_id")
        if self.kind is ScopeKind.COMMUNITY and not self.community_id:
            raise ValueError("Community scope requires a community_id")

    @classmethod
    def global_feed(cls) -> "FeedScope":
        return cls(ScopeKind.GLOBAL)

    @classmethod
    def community(cls, community_id: str) -> "FeedScope":
        return cls(ScopeKind.COMMUNITY, community_id)


def allowed_filters(scope: FeedScope) -> tuple[FeedFilter, ...]:
    return GLOBAL_FILTERS if scope.kind is ScopeKind.GLOBAL else COMMUNITY_FILTERS


def validate_partition(scope: FeedScope, feed_filter: FeedFilter) -> None:
    if feed_filter not in allowed_filters(scope):
        raise InvalidFeedRequest(
            f"Filter '{feed_filter.value}' is not valid for a {scope.kind.value} feed"
        )


def feed_key(
    scope: FeedScope, feed_filter: FeedFilter, audience: Optional[str] = None
) -> str:
    """
    Derive the cache key for a feed partition.

    `audience` is the viewer's college for CAMPUS and the viewer's user id
    for FOLLOWERS; it is required for those two filters and rejected for
    the others.
    """
    validate_partition(scope, feed_filter)
    if feed_filter in AUDIENCE_FILTERS:
        if not audience:
            raise InvalidFeedRequest(
                f"The {feed_filter.value} feed needs a viewer to resolve its audience"
            )
        return f"feed:global:{feed_filter.value}:{audience}"
    if audience is not None:
        raise InvalidFeedRequest(f"The {feed_filter.value} feed takes no audience")

    if scope.kind is ScopeKind.COMMUNITY:
        return f"feed:community:{scope.community_id}:{feed_filter.value}"
    return f"feed:global:{feed_filter.value}"


def post_key(post_id: str) -> str:
    return f"post:{post_id}"


def partition_for_post(row: dict) -> tuple[FeedScope, FeedFilter]:
    """
    Return the partition a stored post belongs to.

    `row` needs community_id, community_tag and is_official; missing fields
    read as None / False, which places the post in the public global feed.
    """
    community_id = row.get("community_id")
    if community_id:
        feed_filter = FeedFilter.OFFICIAL if row.get("is_official") else FeedFilter.REGULAR
        return FeedScope.community(str(community_id)), feed_filter

    tag = row.get("community_tag")
    if tag == TAG_CAMPUS:
        return FeedScope.global_feed(), FeedFilter.CAMPUS
    if tag == TAG_FOLLOWERS:
        return FeedScope.global_feed(), FeedFilter.FOLLOWERS
    return FeedScope.global_feed(), FeedFilter.ANYONE


def author_audience(row: dict, feed_filter: FeedFilter) -> Optional[str]:
    """
    The audience key a stored post is filed under from its author's side.

    CAMPUS posts belong to the author's college. FOLLOWERS posts reach the
    author's own listing through this; followers' listings are keyed by
    their own ids and cannot be derived from the row.
    """
    if feed_filter is FeedFilter.CAMPUS:
        return row.get("college")
    if feed_filter is FeedFilter.FOLLOWERS:
        return row.get("user_id")
    return None
