"""
Profile and social-graph endpoints:
  POST /users                  — create a profile
  GET  /users/{id}             — fetch a profile
  POST /users/follow           — follow another user
  POST /users/unfollow         — unfollow
  GET  /users/{id}/followers   — list followers
  GET  /users/{id}/following   — list followed users

Follow changes are published as change events. The feed cache does not key
anything on the graph, so they are informational for it.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from opentelemetry import trace
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.change_notifier import ChangeEvent, LocalChangeNotifier
from app.database import get_db
from app.dependencies import get_notifier
from app.models import Follow, Profile
from app.schemas import FollowRequest, ProfileCreate, ProfileResponse

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


@router.post("/", response_model=ProfileResponse, status_code=status.HTTP_201_CREATED)
async def create_user(body: ProfileCreate, db: AsyncSession = Depends(get_db)):
    with tracer.start_as_current_span("create_user"):
        existing = await db.execute(
            select(Profile).where(Profile.username == body.username)
        )
        if existing.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Username '{body.username}' already taken",
            )

        profile = Profile(
            username=body.username,
            full_name=body.full_name,
            avatar_url=body.avatar_url,
            college=body.college,
        )
        db.add(profile)
        await db.flush()
        await db.refresh(profile)

        logger.info("Created user %s (id=%s)", profile.username, profile.user_id)
        return profile


@router.get("/{user_id}", response_model=ProfileResponse)
async def get_user(user_id: str, db: AsyncSession = Depends(get_db)):
    profile = await db.get(Profile, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="User not found")
    return profile


@router.post("/follow", status_code=status.HTTP_204_NO_CONTENT)
async def follow_user(
    body: FollowRequest,
    db: AsyncSession = Depends(get_db),
    notifier: LocalChangeNotifier = Depends(get_notifier),
):
    with tracer.start_as_current_span("follow_user"):
        if body.follower_id == body.following_id:
            raise HTTPException(status_code=400, detail="Cannot follow yourself")

        for uid in (body.follower_id, body.following_id):
            if not await db.get(Profile, uid):
                raise HTTPException(status_code=404, detail=f"User {uid} not found")

        if await db.get(Follow, (body.follower_id, body.following_id)):
            return  # already following — idempotent

        db.add(Follow(follower_id=body.follower_id, following_id=body.following_id))
        await db.commit()

        await notifier.publish(ChangeEvent("follows", "insert", body.model_dump()))
        logger.info("%s followed %s", body.follower_id, body.following_id)


@router.post("/unfollow", status_code=status.HTTP_204_NO_CONTENT)
async def unfollow_user(
    body: FollowRequest,
    db: AsyncSession = Depends(get_db),
    notifier: LocalChangeNotifier = Depends(get_notifier),
):
    with tracer.start_as_current_span("unfollow_user"):
        result = await db.execute(
            delete(Follow).where(
                Follow.follower_id == body.follower_id,
                Follow.following_id == body.following_id,
            )
        )
        await db.commit()
        if result.rowcount:
            await notifier.publish(ChangeEvent("follows", "delete", body.model_dump()))


@router.get("/{user_id}/followers")
async def list_followers(user_id: str, db: AsyncSession = Depends(get_db)):
    rows = await db.execute(
        select(Follow.follower_id).where(Follow.following_id == user_id)
    )
    return {"user_id": user_id, "followers": [r[0] for r in rows.all()]}


@router.get("/{user_id}/following")
async def list_following(user_id: str, db: AsyncSession = Depends(get_db)):
    rows = await db.execute(
        select(Follow.following_id).where(Follow.follower_id == user_id)
    )
    return {"user_id": user_id, "following": [r[0] for r in rows.all()]}
