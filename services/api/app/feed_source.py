"""
Source-of-truth queries behind the feed cache.

Every method opens its own short-lived session so the coordinator can be
used outside a request (e.g. from tests or a warm-up job). Database errors
are re-raised as SourceUnavailable; a missing post is NotFound.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

from sqlalchemy import literal, or_, select, union_all
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.cache.keys import (
    AUDIENCE_FILTERS,
    TAG_ANYONE,
    TAG_CAMPUS,
    TAG_FOLLOWERS,
    FeedFilter,
    FeedScope,
    ScopeKind,
    validate_partition,
)
from app.errors import InvalidFeedRequest, NotFound, SourceUnavailable
from app.models import Bookmark, Follow, Like, Post, Profile
from app.schemas import FeedPost, PostAuthor

logger = logging.getLogger(__name__)


@dataclass
class Engagement:
    """A viewer's likes and bookmarks, restricted to the posts asked about."""
    liked: set[str] = field(default_factory=set)
    bookmarked: set[str] = field(default_factory=set)


@dataclass
class ViewerContext:
    """What visibility filters need to know about the viewer."""
    user_id: str
    college: Optional[str] = None
    following: set[str] = field(default_factory=set)


class FeedSource(Protocol):
    async def query_feed(
        self,
        scope: FeedScope,
        feed_filter: FeedFilter,
        limit: int,
        offset: int = 0,
        viewer: Optional[ViewerContext] = None,
    ) -> list[FeedPost]: ...

    async def query_post_by_id(self, post_id: str) -> FeedPost: ...

    async def query_user_likes_and_bookmarks(
        self, user_id: str, post_ids: list[str]
    ) -> Engagement: ...

    async def query_viewer(self, user_id: str) -> ViewerContext: ...


def to_feed_post(post: Post) -> FeedPost:
    author = None
    if post.author is not None:
        author = PostAuthor(
            id=post.author.user_id,
            full_name=post.author.full_name,
            username=post.author.username,
            avatar_url=post.author.avatar_url,
            college=post.author.college,
        )
    return FeedPost(
        post_id=post.post_id,
        user_id=post.user_id,
        author=author,
        content=post.content,
        image_urls=post.image_urls or [],
        video_url=post.video_url,
        community_id=post.community_id,
        community_tag=post.community_tag,
        is_official=post.is_official,
        is_anonymous=post.is_anonymous,
        like_count=post.like_count,
        comment_count=post.comment_count,
        created_at=post.created_at,
    )


def partition_clause(scope: FeedScope, feed_filter: FeedFilter):
    """WHERE clause selecting exactly the posts of one partition."""
    validate_partition(scope, feed_filter)
    if scope.kind is ScopeKind.COMMUNITY:
        return (
            Post.community_id == scope.community_id,
            Post.is_official.is_(feed_filter is FeedFilter.OFFICIAL),
        )

    if feed_filter is FeedFilter.CAMPUS:
        tag_clause = Post.community_tag == TAG_CAMPUS
    elif feed_filter is FeedFilter.FOLLOWERS:
        tag_clause = Post.community_tag == TAG_FOLLOWERS
    else:
        tag_clause = or_(Post.community_tag == TAG_ANYONE, Post.community_tag.is_(None))
    return (Post.community_id.is_(None), tag_clause)


def audience_clause(feed_filter: FeedFilter, viewer: Optional[ViewerContext]):
    """
    WHERE clauses narrowing a campus or followers partition to one viewer.

    Campus keeps posts by authors of the viewer's college. Followers keeps
    posts by authors the viewer follows, plus the viewer's own.
    """
    if feed_filter not in AUDIENCE_FILTERS:
        return ()
    if viewer is None:
        raise InvalidFeedRequest(f"The {feed_filter.value} feed needs a viewer")
    if feed_filter is FeedFilter.CAMPUS:
        return (Post.author.has(Profile.college == viewer.college),)
    return (Post.user_id.in_(sorted(viewer.following | {viewer.user_id})),)


class SqlFeedSource:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def query_feed(
        self,
        scope: FeedScope,
        feed_filter: FeedFilter,
        limit: int,
        offset: int = 0,
        viewer: Optional[ViewerContext] = None,
    ) -> list[FeedPost]:
        stmt = (
            select(Post)
            .where(*partition_clause(scope, feed_filter))
            .where(*audience_clause(feed_filter, viewer))
            .order_by(Post.created_at.desc(), Post.post_id.desc())
            .limit(limit)
            .offset(offset)
        )
        try:
            async with self._session_factory() as session:
                rows = await session.execute(stmt)
                return [to_feed_post(p) for p in rows.scalars().all()]
        except SQLAlchemyError as exc:
            raise SourceUnavailable(f"Feed query failed: {exc}") from exc

    async def query_post_by_id(self, post_id: str) -> FeedPost:
        try:
            async with self._session_factory() as session:
                post = await session.get(Post, post_id)
                if post is None:
                    raise NotFound(f"Post {post_id} not found")
                return to_feed_post(post)
        except SQLAlchemyError as exc:
            raise SourceUnavailable(f"Post query failed: {exc}") from exc

    async def query_user_likes_and_bookmarks(
        self, user_id: str, post_ids: list[str]
    ) -> Engagement:
        engagement = Engagement()
        if not post_ids:
            return engagement

        # One round-trip for both tables
        stmt = union_all(
            select(literal("like").label("kind"), Like.post_id).where(
                Like.user_id == user_id, Like.post_id.in_(post_ids)
            ),
            select(literal("bookmark").label("kind"), Bookmark.post_id).where(
                Bookmark.user_id == user_id, Bookmark.post_id.in_(post_ids)
            ),
        )
        try:
            async with self._session_factory() as session:
                rows = await session.execute(stmt)
                for kind, post_id in rows.all():
                    if kind == "like":
                        engagement.liked.add(post_id)
                    else:
                        engagement.bookmarked.add(post_id)
        except SQLAlchemyError as exc:
            raise SourceUnavailable(f"Engagement query failed: {exc}") from exc
        return engagement

    async def query_viewer(self, user_id: str) -> ViewerContext:
        try:
            async with self._session_factory() as session:
                profile = await session.get(Profile, user_id)
                rows = await session.execute(
                    select(Follow.following_id).where(Follow.follower_id == user_id)
                )
                return ViewerContext(
                    user_id=user_id,
                    college=profile.college if profile else None,
                    following={r[0] for r in rows.all()},
                )
        except SQLAlchemyError as exc:
            raise SourceUnavailable(f"Viewer query failed: {exc}") from exc
