"""
Pydantic request / response schemas for the API layer.
Kept separate from ORM models to avoid coupling transport to storage.

FeedPost is also the cache payload: it must never carry per-viewer state.
PostView adds the viewer's flags and is built fresh for every request.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


# ──────────────────────────── Users ───────────────────────────────────────

class ProfileCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    college: Optional[str] = None


class ProfileResponse(BaseModel):
    user_id: str
    username: str
    full_name: Optional[str]
    avatar_url: Optional[str]
    college: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class FollowRequest(BaseModel):
    follower_id: str
    following_id: str


# ──────────────────────────── Communities ─────────────────────────────────

class CommunityCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    description: Optional[str] = None


class CommunityResponse(BaseModel):
    community_id: str
    name: str
    description: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


# ──────────────────────────── Posts ───────────────────────────────────────

class PostCreate(BaseModel):
    user_id: str
    content: Optional[str] = None
    image_urls: list[str] = Field(default_factory=list)
    video_url: Optional[str] = None
    community_id: Optional[str] = None
    community_tag: Optional[str] = Field(
        None, pattern="^(Anyone|Campus Only|Followers only)$"
    )
    is_official: bool = False
    is_anonymous: bool = False


class PostUpdate(BaseModel):
    user_id: str
    content: Optional[str] = None
    community_tag: Optional[str] = Field(
        None, pattern="^(Anyone|Campus Only|Followers only)$"
    )


class PostAuthor(BaseModel):
    id: Optional[str] = None
    full_name: Optional[str] = None
    username: Optional[str] = None
    avatar_url: Optional[str] = None
    college: Optional[str] = None


ANONYMOUS_AUTHOR = PostAuthor(
    full_name="Anonymous User",
    username="@anonymous",
    avatar_url=None,
    college="Hidden",
)


class FeedPost(BaseModel):
    """A post as stored in the cache: content and aggregate counts only."""
    post_id: str
    user_id: str
    author: Optional[PostAuthor] = None
    content: Optional[str] = None
    image_urls: list[str] = Field(default_factory=list)
    video_url: Optional[str] = None
    community_id: Optional[str] = None
    community_tag: Optional[str] = None
    is_official: bool = False
    is_anonymous: bool = False
    like_count: int = 0
    comment_count: int = 0
    created_at: datetime


class PostView(FeedPost):
    """A post as returned to one viewer."""
    user_id: Optional[str] = None
    is_upvoted: bool = False
    is_bookmarked: bool = False


class LikeRequest(BaseModel):
    user_id: str


class BookmarkRequest(BaseModel):
    user_id: str


class CommentCreate(BaseModel):
    user_id: str
    content: str = Field(..., min_length=1)


class CommentResponse(BaseModel):
    comment_id: str
    post_id: str
    user_id: str
    content: str
    created_at: datetime

    class Config:
        from_attributes = True
