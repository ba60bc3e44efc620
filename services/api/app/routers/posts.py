"""
Post endpoints:
  POST   /posts                    — create a post
  GET    /posts/{id}               — fetch a single post (cached, 300s)
  PATCH  /posts/{id}               — edit content / visibility tag (author only)
  DELETE /posts/{id}?user_id=      — delete (author only)
  POST   /posts/{id}/like          — like (idempotent)
  DELETE /posts/{id}/like?user_id= — unlike
  POST   /posts/{id}/bookmark      — bookmark (idempotent)
  DELETE /posts/{id}/bookmark?user_id=
  POST   /posts/{id}/comments      — add a comment

Post and like writes commit first, then publish a change event so the
feed cache drops the affected keys.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.cache.coordinator import FeedCacheCoordinator, present
from app.clients.change_notifier import ChangeEvent, LocalChangeNotifier
from app.database import get_db
from app.dependencies import get_coordinator, get_notifier, set_cache_headers
from app.feed_source import Engagement, to_feed_post
from app.models import Bookmark, Comment, Community, Like, Post, Profile
from app.schemas import (
    BookmarkRequest,
    CommentCreate,
    CommentResponse,
    LikeRequest,
    PostCreate,
    PostUpdate,
    PostView,
)
from app.telemetry import POST_INGESTION_TOTAL

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


def post_row(post: Post) -> dict:
    """The fields invalidation needs to locate a post's partition and audience."""
    return {
        "post_id": post.post_id,
        "user_id": post.user_id,
        "college": post.author.college if post.author else None,
        "community_id": post.community_id,
        "community_tag": post.community_tag,
        "is_official": post.is_official,
    }


async def _get_post_or_404(db: AsyncSession, post_id: str) -> Post:
    post = await db.get(Post, post_id)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


@router.post("/", response_model=PostView, status_code=status.HTTP_201_CREATED)
async def create_post(
    body: PostCreate,
    db: AsyncSession = Depends(get_db),
    notifier: LocalChangeNotifier = Depends(get_notifier),
):
    with tracer.start_as_current_span("create_post") as span:
        author = await db.get(Profile, body.user_id)
        if not author:
            raise HTTPException(status_code=404, detail="Author not found")

        if body.community_id:
            if not await db.get(Community, body.community_id):
                raise HTTPException(status_code=404, detail="Community not found")
            # Community posts are partitioned by is_official, not by tag
            community_tag = None
        else:
            community_tag = body.community_tag

        post = Post(
            user_id=body.user_id,
            community_id=body.community_id,
            community_tag=community_tag,
            is_official=body.is_official,
            is_anonymous=body.is_anonymous,
            content=body.content,
            image_urls=body.image_urls,
            video_url=body.video_url,
        )
        post.author = author
        db.add(post)
        await db.flush()        # materialise post_id
        await db.refresh(post)  # load server-generated fields (created_at)
        await db.commit()

        span.set_attribute("post.id", post.post_id)
        span.set_attribute("post.user_id", post.user_id)

        await notifier.publish(ChangeEvent("posts", "insert", post_row(post)))

        POST_INGESTION_TOTAL.inc()
        logger.info("Post created: %s by user %s", post.post_id, post.user_id)
        return present(to_feed_post(post), body.user_id, Engagement())


@router.get("/{post_id}", response_model=PostView)
async def get_post(
    post_id: str,
    response: Response,
    user_id: Optional[str] = Query(None, description="ID of the requesting user"),
    coordinator: FeedCacheCoordinator = Depends(get_coordinator),
):
    result = await coordinator.get_post(post_id, requester=user_id)
    set_cache_headers(
        response, result.cache_hit, coordinator.post_ttl, personalized=user_id is not None
    )
    return result.post


@router.patch("/{post_id}", response_model=PostView)
async def update_post(
    post_id: str,
    body: PostUpdate,
    db: AsyncSession = Depends(get_db),
    notifier: LocalChangeNotifier = Depends(get_notifier),
):
    with tracer.start_as_current_span("update_post"):
        post = await _get_post_or_404(db, post_id)
        if post.user_id != body.user_id:
            raise HTTPException(status_code=403, detail="Only the author can edit a post")

        old = post_row(post)
        if body.content is not None:
            post.content = body.content
        if body.community_tag is not None and post.community_id is None:
            post.community_tag = body.community_tag
        await db.commit()

        await notifier.publish(ChangeEvent("posts", "update", post_row(post), old=old))
        return present(to_feed_post(post), body.user_id, Engagement())


@router.delete("/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(
    post_id: str,
    user_id: str = Query(..., description="ID of the requesting user"),
    db: AsyncSession = Depends(get_db),
    notifier: LocalChangeNotifier = Depends(get_notifier),
):
    with tracer.start_as_current_span("delete_post"):
        post = await _get_post_or_404(db, post_id)
        if post.user_id != user_id:
            raise HTTPException(status_code=403, detail="Only the author can delete a post")

        row = post_row(post)
        await db.delete(post)
        await db.commit()

        await notifier.publish(ChangeEvent("posts", "delete", row))
        logger.info("Post deleted: %s by user %s", post_id, user_id)


@router.post("/{post_id}/like", status_code=status.HTTP_204_NO_CONTENT)
async def like_post(
    post_id: str,
    body: LikeRequest,
    db: AsyncSession = Depends(get_db),
    notifier: LocalChangeNotifier = Depends(get_notifier),
):
    """Like a post — idempotent. Updates like_count."""
    with tracer.start_as_current_span("like_post"):
        post = await _get_post_or_404(db, post_id)

        existing = await db.execute(
            select(Like).where(Like.user_id == body.user_id, Like.post_id == post_id)
        )
        if existing.scalar_one_or_none():
            return  # already liked

        db.add(Like(user_id=body.user_id, post_id=post_id))
        post.like_count += 1
        try:
            await db.commit()
        except IntegrityError:
            # A concurrent request recorded the same like first
            await db.rollback()
            logger.info("Like by %s on %s already recorded", body.user_id, post_id)
            return

        await notifier.publish(
            ChangeEvent("likes", "insert", {"user_id": body.user_id, "post_id": post_id})
        )


@router.delete("/{post_id}/like", status_code=status.HTTP_204_NO_CONTENT)
async def unlike_post(
    post_id: str,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
    notifier: LocalChangeNotifier = Depends(get_notifier),
):
    with tracer.start_as_current_span("unlike_post"):
        post = await _get_post_or_404(db, post_id)

        like = await db.get(Like, (user_id, post_id))
        if like is None:
            return  # not liked

        await db.delete(like)
        post.like_count = max(post.like_count - 1, 0)
        await db.commit()

        await notifier.publish(
            ChangeEvent("likes", "delete", {"user_id": user_id, "post_id": post_id})
        )


@router.post("/{post_id}/bookmark", status_code=status.HTTP_204_NO_CONTENT)
async def bookmark_post(
    post_id: str, body: BookmarkRequest, db: AsyncSession = Depends(get_db)
):
    # Bookmarks only feed personalization, which is never cached
    await _get_post_or_404(db, post_id)
    if await db.get(Bookmark, (body.user_id, post_id)) is None:
        db.add(Bookmark(user_id=body.user_id, post_id=post_id))
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()


@router.delete("/{post_id}/bookmark", status_code=status.HTTP_204_NO_CONTENT)
async def remove_bookmark(
    post_id: str, user_id: str = Query(...), db: AsyncSession = Depends(get_db)
):
    bookmark = await db.get(Bookmark, (user_id, post_id))
    if bookmark is not None:
        await db.delete(bookmark)


@router.post(
    "/{post_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(post_id: str, body: CommentCreate, db: AsyncSession = Depends(get_db)):
    # comment_count in cached listings catches up within the listing TTL
    post = await _get_post_or_404(db, post_id)
    if not await db.get(Profile, body.user_id):
        raise HTTPException(status_code=404, detail="User not found")

    comment = Comment(post_id=post_id, user_id=body.user_id, content=body.content)
    db.add(comment)
    post.comment_count += 1
    await db.flush()
    await db.refresh(comment)
    return comment
