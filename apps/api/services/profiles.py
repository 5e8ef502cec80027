"""Profile provisioning and the signed-in user's overview."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.campaign import Campaign
from models.credit_transaction import CreditTransaction
from models.profile import Profile
from models.visit import Visit
from services.admin import USERNAME_TAKEN, ensure_username_available, validate_username
from services.policy import ROLE_FREE, permissions_for_profile, role_defaults


async def ensure_profile(db: AsyncSession, user_id: str, email: Optional[str] = None) -> Profile:
    """Return the caller's profile, creating a free one on first use."""
    result = await db.execute(select(Profile).where(Profile.id == user_id))
    profile = result.scalar_one_or_none()
    if profile:
        return profile

    profile = Profile(id=user_id, email=email or f"{user_id}@local.invalid", credits=0, **role_defaults(ROLE_FREE))
    db.add(profile)
    try:
        await db.commit()
    except IntegrityError:
        # Provisioned by a concurrent request.
        await db.rollback()
        result = await db.execute(select(Profile).where(Profile.id == user_id))
        return result.scalar_one()
    await db.refresh(profile)
    return profile


def serialize_profile(profile: Profile) -> Dict[str, Any]:
    return {
        "id": profile.id,
        "email": profile.email,
        "username": profile.username,
        "country": profile.country,
        "role": profile.role,
        "credits": profile.credits,
        "credit_multiplier": profile.credit_multiplier,
        "campaign_limit": profile.campaign_limit,
        "subscription_plan": profile.subscription_plan,
        "created_at": profile.created_at.isoformat() if profile.created_at else None,
        "updated_at": profile.updated_at.isoformat() if profile.updated_at else None,
    }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


async def get_profile_overview(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    profile = (
        await db.execute(select(Profile).where(Profile.id == user_id).execution_options(populate_existing=True))
    ).scalar_one()

    campaigns = (
        await db.execute(
            select(Campaign).where(Campaign.user_id == user_id, Campaign.status != "deleted")
        )
    ).scalars().all()
    received = (
        await db.execute(
            select(Visit.id, Visit.is_valid, Visit.created_at)
            .join(Campaign, Campaign.id == Visit.campaign_id)
            .where(Campaign.user_id == user_id)
            .order_by(Visit.created_at.desc())
            .limit(1000)
        )
    ).all()
    transactions = (
        await db.execute(
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.created_at.desc())
            .limit(5)
        )
    ).scalars().all()
    visits_made = (
        await db.execute(select(func.count(Visit.id)).where(Visit.visitor_id == user_id))
    ).scalar() or 0

    campaign_stats = {
        "total": len(campaigns),
        "active": sum(1 for c in campaigns if c.status == "active"),
        "paused": sum(1 for c in campaigns if c.status == "paused"),
        "completed": sum(1 for c in campaigns if c.status == "completed"),
        "total_credits_allocated": sum(int(c.credits_allocated or 0) for c in campaigns),
        "total_credits_spent": sum(int(c.credits_spent or 0) for c in campaigns),
    }
    visit_stats = {
        "received": len(received),
        "valid": sum(1 for row in received if row.is_valid),
        "pending": sum(1 for row in received if not row.is_valid),
        "made": int(visits_made),
    }

    activities: List[Dict[str, Any]] = []
    for campaign in sorted(campaigns, key=lambda c: c.updated_at or c.created_at, reverse=True)[:5]:
        activities.append(
            {
                "id": campaign.id,
                "type": "campaign",
                "title": campaign.title,
                "description": f"Campaign {campaign.status}",
                "timestamp": _iso(campaign.updated_at or campaign.created_at),
                "status": campaign.status,
            }
        )
    for row in received[:5]:
        activities.append(
            {
                "id": row.id,
                "type": "visit",
                "title": "New Visit",
                "description": "Valid visit received" if row.is_valid else "Visit pending validation",
                "timestamp": _iso(row.created_at),
                "status": "valid" if row.is_valid else "pending",
            }
        )
    for entry in transactions:
        earned = entry.amount > 0
        activities.append(
            {
                "id": entry.id,
                "type": "transaction",
                "title": "Credits Earned" if earned else "Credits Spent",
                "description": f"{abs(entry.amount)} credits {'earned' if earned else 'spent'} - {entry.reason}",
                "timestamp": _iso(entry.created_at),
                "status": "earned" if earned else "spent",
            }
        )
    activities.sort(key=lambda item: item["timestamp"] or "", reverse=True)

    return {
        "profile": serialize_profile(profile),
        "permissions": permissions_for_profile(profile),
        "stats": {"campaigns": campaign_stats, "visits": visit_stats},
        "recent_activities": activities[:10],
    }


async def update_profile(user_id: str, db: AsyncSession, changes: Dict[str, Any]) -> Dict[str, Any]:
    profile = (
        await db.execute(select(Profile).where(Profile.id == user_id).execution_options(populate_existing=True))
    ).scalar_one()
    if changes.get("username") is not None:
        username = validate_username(changes["username"])
        await ensure_username_available(username, user_id, db)
        profile.username = username
    if "country" in changes:
        profile.country = changes["country"] or None
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=400, detail=USERNAME_TAKEN)
    await db.refresh(profile)
    return {"profile": serialize_profile(profile), "message": "Profile updated successfully"}
