"""Premium subscription state changes for gateway-confirmed upgrades."""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.credit_transaction import CreditTransaction
from models.profile import Profile
from services.credits import REASON_PREMIUM_SUBSCRIPTION, apply_credit_delta, get_credit_balance
from services.policy import ROLE_FREE, ROLE_PREMIUM, role_defaults

logger = logging.getLogger(__name__)

PLAN_MONTHLY = "premium_monthly"
PLAN_YEARLY = "premium_yearly"
SUBSCRIPTION_REF_TABLE = "subscriptions"


def plan_credits(plan_id: str) -> int:
    if plan_id == PLAN_YEARLY:
        return max(int(settings.PREMIUM_YEARLY_CREDITS), 0)
    if plan_id == PLAN_MONTHLY:
        return max(int(settings.PREMIUM_MONTHLY_CREDITS), 0)
    raise HTTPException(status_code=422, detail=f"Unknown plan: {plan_id}")


async def _load_profile(user_id: str, db: AsyncSession) -> Profile:
    profile = (await db.execute(select(Profile).where(Profile.id == user_id))).scalar_one_or_none()
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


async def upgrade_to_premium(
    user_id: str,
    db: AsyncSession,
    *,
    plan_id: str,
    subscription_reference: str,
) -> Dict[str, Any]:
    credits_to_award = plan_credits(plan_id)
    profile = await _load_profile(user_id, db)
    already_granted = await db.execute(
        select(CreditTransaction.id).where(
            CreditTransaction.ref_table == SUBSCRIPTION_REF_TABLE,
            CreditTransaction.ref_id == subscription_reference,
        )
    )
    if already_granted.scalar_one_or_none() or (
        profile.role == ROLE_PREMIUM and profile.subscription_reference == subscription_reference
    ):
        raise HTTPException(status_code=409, detail="This subscription has already been applied.")

    try:
        for field, value in role_defaults(ROLE_PREMIUM).items():
            setattr(profile, field, value)
        profile.subscription_plan = plan_id
        profile.subscription_reference = subscription_reference
        await db.flush()
        if credits_to_award > 0:
            await apply_credit_delta(
                user_id,
                db,
                amount=credits_to_award,
                reason=REASON_PREMIUM_SUBSCRIPTION,
                ref_table=SUBSCRIPTION_REF_TABLE,
                ref_id=subscription_reference,
            )
        await db.commit()
    except HTTPException:
        await db.rollback()
        raise

    logger.info("premium_upgrade user=%s plan=%s credits=%s", user_id, plan_id, credits_to_award)
    return {
        "role": ROLE_PREMIUM,
        "plan_id": plan_id,
        "credits_awarded": credits_to_award,
        "credit_multiplier": profile.credit_multiplier,
        "campaign_limit": profile.campaign_limit,
        "balance_after": await get_credit_balance(user_id, db),
    }


async def cancel_subscription(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    profile = await _load_profile(user_id, db)
    if profile.role != ROLE_PREMIUM:
        raise HTTPException(status_code=400, detail="No active premium subscription to cancel.")

    for field, value in role_defaults(ROLE_FREE).items():
        setattr(profile, field, value)
    profile.subscription_plan = None
    profile.subscription_reference = None
    await db.commit()

    logger.info("premium_cancelled user=%s", user_id)
    return {
        "role": ROLE_FREE,
        "credit_multiplier": profile.credit_multiplier,
        "campaign_limit": profile.campaign_limit,
        "message": "Subscription cancelled. Your credits remain available.",
    }
