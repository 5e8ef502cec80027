"""Dashboard analytics for the caller's campaigns."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.profile import Profile
from routers.auth_scope import get_current_profile
from services.analytics import get_user_analytics

router = APIRouter()


@router.get("")
async def user_analytics(
    period: int = Query(default=30, ge=1, le=365),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await get_user_analytics(profile.id, db, period_days=period)
