"""Billing and credits router."""

from __future__ import annotations

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models.profile import Profile
from routers.auth_scope import get_current_profile
from routers.rate_limit import rate_limit
from services.credits import add_credit_purchase, get_credit_summary, list_credit_transactions
from services.subscriptions import cancel_subscription, upgrade_to_premium

router = APIRouter()
logger = logging.getLogger(__name__)


class CreditTopUpRequest(BaseModel):
    credits: int = Field(ge=1, le=10000)
    billing_reference: str = Field(min_length=1, max_length=200)


class SubscriptionUpgradeRequest(BaseModel):
    plan_id: Literal["premium_monthly", "premium_yearly"] = "premium_monthly"
    subscription_reference: str = Field(min_length=1, max_length=200)


def _ensure_manual_confirmations_allowed() -> None:
    if settings.BILLING_ENABLED:
        raise HTTPException(
            status_code=503,
            detail="Manual confirmations are disabled while gateway billing is enabled.",
        )


@router.get("/credits")
async def credits_summary(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await get_credit_summary(profile.id, db)


@router.get("/transactions")
async def credit_transactions(
    kind: Optional[Literal["earned", "spent"]] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await list_credit_transactions(profile.id, db, kind=kind, limit=limit, offset=offset)


@router.post("/topup")
async def manual_topup(
    request: CreditTopUpRequest,
    _rate_limit: None = Depends(rate_limit("billing_topup", limit=30, window_seconds=3600)),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    _ensure_manual_confirmations_allowed()
    result = await add_credit_purchase(
        profile.id,
        db,
        credits=request.credits,
        provider="manual",
        billing_reference=request.billing_reference,
    )
    logger.info("credit_topup user=%s credits=%s", profile.id, result["credits_added"])
    return {
        "ok": True,
        "credits_added": result["credits_added"],
        "balance_after": result["balance_after"],
    }


@router.post("/subscription/upgrade")
async def subscription_upgrade(
    request: SubscriptionUpgradeRequest,
    _rate_limit: None = Depends(rate_limit("billing_upgrade", limit=10, window_seconds=3600)),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    _ensure_manual_confirmations_allowed()
    return await upgrade_to_premium(
        profile.id,
        db,
        plan_id=request.plan_id,
        subscription_reference=request.subscription_reference,
    )


@router.post("/subscription/cancel")
async def subscription_cancel(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await cancel_subscription(profile.id, db)
