"""
Community endpoints:
  POST /communities       — create a community
  GET  /communities/{id}  — fetch a community

Community feeds themselves are served by GET /feed?communityId=<id>.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models import Community
from app.schemas import CommunityCreate, CommunityResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=CommunityResponse, status_code=status.HTTP_201_CREATED)
async def create_community(body: CommunityCreate, db: AsyncSession = Depends(get_db)):
    existing = await db.execute(select(Community).where(Community.name == body.name))
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Community '{body.name}' already exists",
        )

    community = Community(name=body.name, description=body.description)
    db.add(community)
    await db.flush()
    await db.refresh(community)
    logger.info("Created community %s (id=%s)", community.name, community.community_id)
    return community


@router.get("/{community_id}", response_model=CommunityResponse)
async def get_community(community_id: str, db: AsyncSession = Depends(get_db)):
    community = await db.get(Community, community_id)
    if not community:
        raise HTTPException(status_code=404, detail="Community not found")
    return community
