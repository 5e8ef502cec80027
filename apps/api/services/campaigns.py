"""Campaign lifecycle services: create, edit, pause and soft-delete."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from fastapi import HTTPException
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.campaign import DEVICE_TARGETS, Campaign
from models.profile import Profile
from models.visit import Visit
from services.credits import (
    REASON_CAMPAIGN_ALLOCATION,
    REASON_CAMPAIGN_ALLOCATION_DECREASE,
    REASON_CAMPAIGN_ALLOCATION_INCREASE,
    REASON_CAMPAIGN_DELETION_RETURN,
    apply_credit_delta,
)
from services.policy import check_campaign_limit

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = ("active", "paused", "completed")
EDITABLE_FIELDS = ("title", "url", "description", "country_target", "device_target")


def serialize_campaign(campaign: Campaign, owner_username: Optional[str] = None) -> Dict[str, Any]:
    payload = {
        "id": campaign.id,
        "user_id": campaign.user_id,
        "title": campaign.title,
        "url": campaign.url,
        "description": campaign.description,
        "country_target": campaign.country_target,
        "device_target": campaign.device_target,
        "credits_allocated": campaign.credits_allocated,
        "credits_spent": campaign.credits_spent,
        "remaining_credits": campaign.remaining_credits,
        "status": campaign.status,
        "created_at": campaign.created_at.isoformat() if campaign.created_at else None,
        "updated_at": campaign.updated_at.isoformat() if campaign.updated_at else None,
    }
    if owner_username is not None:
        payload["owner_username"] = owner_username
    return payload


def _validate_url(url: str) -> str:
    text = str(url or "").strip()
    parsed = urlparse(text)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise HTTPException(status_code=400, detail="Invalid URL format")
    return text


def _validate_device_target(device_target: Optional[str]) -> Optional[str]:
    if device_target and device_target not in DEVICE_TARGETS:
        raise HTTPException(
            status_code=400,
            detail="Invalid device target. Must be desktop, tablet, or mobile",
        )
    return device_target or None


async def _load_owned_campaign(user_id: str, campaign_id: str, db: AsyncSession) -> Campaign:
    result = await db.execute(
        select(Campaign).where(Campaign.id == campaign_id, Campaign.user_id == user_id)
    )
    campaign = result.scalar_one_or_none()
    if campaign is None or campaign.status == "deleted":
        raise HTTPException(status_code=404, detail="Campaign not found or access denied")
    return campaign


async def create_campaign(user_id: str, db: AsyncSession, payload: Dict[str, Any]) -> Dict[str, Any]:
    title = str(payload.get("title") or "").strip()
    if not title or not payload.get("url"):
        raise HTTPException(status_code=400, detail="Title and URL are required")
    url = _validate_url(payload["url"])
    device_target = _validate_device_target(payload.get("device_target"))
    credits_allocated = int(payload.get("credits_allocated") or 0)
    if credits_allocated <= 0:
        raise HTTPException(status_code=400, detail="Credits allocated must be greater than 0")

    profile = (await db.execute(select(Profile).where(Profile.id == user_id))).scalar_one_or_none()
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")

    live_count = (
        await db.execute(
            select(func.count(Campaign.id)).where(Campaign.user_id == user_id, Campaign.status != "deleted")
        )
    ).scalar() or 0
    can_create, reason = check_campaign_limit(profile.role, int(live_count), profile.campaign_limit)
    if not can_create:
        raise HTTPException(status_code=403, detail=reason)

    campaign = Campaign(
        user_id=user_id,
        title=title,
        url=url,
        description=payload.get("description") or None,
        country_target=payload.get("country_target") or None,
        device_target=device_target,
        credits_allocated=credits_allocated,
        credits_spent=0,
        status="active",
    )
    try:
        db.add(campaign)
        await db.flush()
        await apply_credit_delta(
            user_id,
            db,
            amount=-credits_allocated,
            reason=REASON_CAMPAIGN_ALLOCATION,
            ref_table="campaigns",
            ref_id=campaign.id,
        )
        await db.commit()
    except HTTPException:
        await db.rollback()
        raise

    await db.refresh(campaign)
    logger.info("campaign_created user=%s campaign=%s allocated=%s", user_id, campaign.id, credits_allocated)
    return {"campaign": serialize_campaign(campaign), "message": "Campaign created successfully"}


async def get_campaign(user_id: str, campaign_id: str, db: AsyncSession, *, is_admin: bool = False) -> Dict[str, Any]:
    campaign = (await db.execute(select(Campaign).where(Campaign.id == campaign_id))).scalar_one_or_none()
    if campaign is None or (not is_admin and (campaign.user_id != user_id or campaign.status == "deleted")):
        raise HTTPException(status_code=404, detail="Campaign not found or access denied")

    visits = (
        await db.execute(
            select(Visit.is_valid, Visit.visit_duration)
            .where(Visit.campaign_id == campaign_id)
            .order_by(Visit.created_at.desc())
            .limit(1000)
        )
    ).all()
    valid_durations = [float(row.visit_duration or 0) for row in visits if row.is_valid]
    stats = {
        "total_visits": len(visits),
        "valid_visits": len(valid_durations),
        "invalid_visits": len(visits) - len(valid_durations),
        "average_session_duration": round(sum(valid_durations) / len(valid_durations)) if valid_durations else 0,
    }
    return {"campaign": serialize_campaign(campaign), "stats": stats}


async def list_campaigns(user_id: str, db: AsyncSession, *, is_admin: bool = False) -> Dict[str, Any]:
    if is_admin:
        result = await db.execute(
            select(Campaign, Profile.username)
            .outerjoin(Profile, Profile.id == Campaign.user_id)
            .order_by(Campaign.created_at.desc())
            .limit(500)
        )
        return {
            "campaigns": [
                serialize_campaign(campaign, owner_username=username or "Unknown")
                for campaign, username in result.all()
            ]
        }

    result = await db.execute(
        select(Campaign)
        .where(Campaign.user_id == user_id, Campaign.status != "deleted")
        .order_by(Campaign.created_at.desc())
    )
    return {"campaigns": [serialize_campaign(campaign) for campaign in result.scalars().all()]}


async def update_campaign(
    user_id: str,
    campaign_id: str,
    db: AsyncSession,
    changes: Dict[str, Any],
) -> Dict[str, Any]:
    campaign = await _load_owned_campaign(user_id, campaign_id, db)

    if changes.get("url") is not None:
        changes["url"] = _validate_url(changes["url"])
    if "device_target" in changes:
        changes["device_target"] = _validate_device_target(changes.get("device_target"))

    status = changes.get("status")
    if status is not None and status not in EDITABLE_STATUSES:
        if status == "deleted":
            raise HTTPException(status_code=400, detail="Use DELETE to remove a campaign")
        raise HTTPException(
            status_code=400,
            detail="Invalid status. Must be active, paused, or completed",
        )

    try:
        for field in EDITABLE_FIELDS:
            if field in changes:
                setattr(campaign, field, changes[field])

        new_allocation = changes.get("credits_allocated")
        if new_allocation is not None:
            new_allocation = int(new_allocation)
            if new_allocation < campaign.credits_spent:
                raise HTTPException(status_code=400, detail="Cannot set credits_allocated below credits_spent")
            difference = new_allocation - int(campaign.credits_allocated)
            if difference > 0:
                await apply_credit_delta(
                    user_id,
                    db,
                    amount=-difference,
                    reason=REASON_CAMPAIGN_ALLOCATION_INCREASE,
                    ref_table="campaigns",
                    ref_id=campaign.id,
                )
            elif difference < 0:
                await apply_credit_delta(
                    user_id,
                    db,
                    amount=-difference,
                    reason=REASON_CAMPAIGN_ALLOCATION_DECREASE,
                    ref_table="campaigns",
                    ref_id=campaign.id,
                )
            campaign.credits_allocated = new_allocation

        if status is not None:
            if status == "active" and campaign.remaining_credits <= 0:
                raise HTTPException(status_code=400, detail="This campaign has no credits remaining")
            campaign.status = status
        if campaign.remaining_credits <= 0:
            campaign.status = "completed"

        await db.commit()
    except HTTPException:
        await db.rollback()
        raise
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(status_code=409, detail="Campaign changed concurrently. Please retry.") from exc

    await db.refresh(campaign)
    return {"campaign": serialize_campaign(campaign), "message": "Campaign updated successfully"}


async def delete_campaign(user_id: str, campaign_id: str, db: AsyncSession) -> Dict[str, Any]:
    """Soft-delete a campaign and return its unspent budget to the owner."""
    result = await db.execute(
        update(Campaign)
        .where(
            Campaign.id == campaign_id,
            Campaign.user_id == user_id,
            Campaign.status != "deleted",
        )
        .values(status="deleted")
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise HTTPException(status_code=404, detail="Campaign not found or access denied")

    # Read after the status flip so no visit debit can land between the read and the refund.
    row = (
        await db.execute(
            select(Campaign.credits_allocated, Campaign.credits_spent).where(Campaign.id == campaign_id)
        )
    ).one()
    credits_to_return = max(0, int(row.credits_allocated) - int(row.credits_spent))
    if credits_to_return > 0:
        await apply_credit_delta(
            user_id,
            db,
            amount=credits_to_return,
            reason=REASON_CAMPAIGN_DELETION_RETURN,
            ref_table="campaigns",
            ref_id=campaign_id,
        )
    await db.commit()

    logger.info(
        "campaign_deleted user=%s campaign=%s allocated=%s spent=%s returned=%s",
        user_id,
        campaign_id,
        row.credits_allocated,
        row.credits_spent,
        credits_to_return,
    )
    return {
        "message": "Campaign deleted successfully",
        "campaign_id": campaign_id,
        "credits_returned": credits_to_return,
    }
