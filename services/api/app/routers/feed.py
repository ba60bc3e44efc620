"""
Feed retrieval endpoint — GET /feed?communityId=<id>&filter=<name>&user_id=<id>

  Global feed     — filter: anyone (default, alias 'all') | campus |
                    followers | trending
  Community feed  — filter: regular (default) | official

Reads go through the feed cache coordinator. The response carries
X-Cache (HIT / MISS) and a Cache-Control header matching the listing TTL.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from app.cache.coordinator import FeedCacheCoordinator
from app.cache.keys import FeedFilter, FeedScope, FeedSort
from app.dependencies import get_coordinator, set_cache_headers
from app.errors import InvalidFeedRequest
from app.schemas import PostView

logger = logging.getLogger(__name__)
router = APIRouter()

_FILTER_ALIASES = {
    "all": (FeedFilter.ANYONE, FeedSort.RECENT),
    "anyone": (FeedFilter.ANYONE, FeedSort.RECENT),
    "trending": (FeedFilter.ANYONE, FeedSort.TRENDING),
    "campus": (FeedFilter.CAMPUS, FeedSort.RECENT),
    "followers": (FeedFilter.FOLLOWERS, FeedSort.RECENT),
    "official": (FeedFilter.OFFICIAL, FeedSort.RECENT),
    "regular": (FeedFilter.REGULAR, FeedSort.RECENT),
}


def parse_feed_params(
    community_id: Optional[str], filter_name: Optional[str]
) -> tuple[FeedScope, FeedFilter, FeedSort]:
    if community_id:
        scope = FeedScope.community(community_id)
        filter_name = filter_name or "regular"
    else:
        scope = FeedScope.global_feed()
        filter_name = filter_name or "anyone"

    try:
        feed_filter, sort = _FILTER_ALIASES[filter_name.lower()]
    except KeyError:
        raise InvalidFeedRequest(f"Unknown feed filter '{filter_name}'") from None
    return scope, feed_filter, sort


@router.get("", response_model=list[PostView])
async def get_feed(
    response: Response,
    community_id: Optional[str] = Query(None, alias="communityId"),
    filter_name: Optional[str] = Query(None, alias="filter"),
    user_id: Optional[str] = Query(None, description="ID of the requesting user"),
    coordinator: FeedCacheCoordinator = Depends(get_coordinator),
):
    scope, feed_filter, sort = parse_feed_params(community_id, filter_name)
    result = await coordinator.get_feed(scope, feed_filter, requester=user_id, sort=sort)
    set_cache_headers(
        response, result.cache_hit, coordinator.feed_ttl, personalized=user_id is not None
    )
    return result.posts
