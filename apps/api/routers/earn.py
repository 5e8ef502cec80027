"""Earn router: browse campaigns, record visits and complete them."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models.profile import Profile
from routers.auth_scope import get_current_profile
from routers.rate_limit import rate_limit
from services.ledger import complete_visit, record_visit
from services.visits import list_available_campaigns

router = APIRouter()
logger = logging.getLogger(__name__)


class VisitRequest(BaseModel):
    campaign_id: str = Field(min_length=1)
    url: Optional[str] = None


class CompleteVisitRequest(BaseModel):
    visit_id: str = Field(min_length=1)
    duration: float = Field(default=0.0, ge=0)
    fraud_score: float = Field(default=0.0, ge=0, le=100)


@router.get("/campaigns")
async def available_campaigns(
    limit: int = Query(default=20, ge=1, le=100),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await list_available_campaigns(profile.id, db, limit=limit)


@router.post("/visit")
async def visit_campaign(
    request: VisitRequest,
    _rate_limit: None = Depends(
        rate_limit(
            "earn_visit",
            limit=settings.EARN_VISIT_RATE_LIMIT,
            window_seconds=settings.EARN_VISIT_RATE_WINDOW_SECONDS,
        )
    ),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await record_visit(profile.id, request.campaign_id, db)


@router.post("/complete-visit")
async def complete_campaign_visit(
    request: CompleteVisitRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await complete_visit(
        profile.id,
        request.visit_id,
        db,
        duration=request.duration,
        fraud_score=request.fraud_score,
    )
