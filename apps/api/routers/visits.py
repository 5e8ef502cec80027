"""Visits received by the caller's campaigns."""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.profile import Profile
from routers.auth_scope import get_current_profile
from services.visits import list_received_visits

router = APIRouter()


@router.get("")
async def received_visits(
    status: Optional[Literal["recent"]] = Query(default=None),
    campaign_id: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await list_received_visits(
        profile.id,
        db,
        status=status,
        campaign_id=campaign_id,
        limit=limit,
        offset=offset,
    )
