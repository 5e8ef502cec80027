"""Signed-in user's profile."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.profile import Profile
from routers.auth_scope import get_current_profile
from services.profiles import get_profile_overview, update_profile

router = APIRouter()


class ProfileUpdateRequest(BaseModel):
    username: Optional[str] = Field(default=None, max_length=30)
    country: Optional[str] = Field(default=None, max_length=64)


@router.get("/me")
async def my_profile(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await get_profile_overview(profile.id, db)


@router.patch("/me")
async def update_my_profile(
    request: ProfileUpdateRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await update_profile(profile.id, db, request.model_dump(exclude_unset=True))
