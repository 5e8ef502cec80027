"""Campaign CRUD router."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.profile import Profile
from routers.auth_scope import get_current_profile
from services.campaigns import (
    create_campaign,
    delete_campaign,
    get_campaign,
    list_campaigns,
    update_campaign,
)
from services.policy import ROLE_ADMIN

router = APIRouter()


class CampaignCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    url: str = Field(min_length=1, max_length=2048)
    description: Optional[str] = None
    country_target: Optional[str] = None
    device_target: Optional[str] = None
    credits_allocated: int = Field(ge=1)


class CampaignUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    url: Optional[str] = Field(default=None, min_length=1, max_length=2048)
    description: Optional[str] = None
    country_target: Optional[str] = None
    device_target: Optional[str] = None
    credits_allocated: Optional[int] = Field(default=None, ge=0)
    status: Optional[str] = None


@router.get("")
async def campaigns_index(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await list_campaigns(profile.id, db, is_admin=profile.role == ROLE_ADMIN)


@router.post("", status_code=201)
async def campaigns_create(
    request: CampaignCreateRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await create_campaign(profile.id, db, request.model_dump())


@router.get("/{campaign_id}")
async def campaigns_show(
    campaign_id: str,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await get_campaign(profile.id, campaign_id, db, is_admin=profile.role == ROLE_ADMIN)


@router.patch("/{campaign_id}")
async def campaigns_update(
    campaign_id: str,
    request: CampaignUpdateRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await update_campaign(profile.id, campaign_id, db, request.model_dump(exclude_unset=True))


@router.delete("/{campaign_id}")
async def campaigns_delete(
    campaign_id: str,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await delete_campaign(profile.id, campaign_id, db)
