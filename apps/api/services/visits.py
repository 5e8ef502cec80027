"""Read-side helpers for the earn page and the owner's received-visits view."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.campaign import Campaign
from models.profile import Profile
from models.visit import Visit
from services.policy import BASE_CREDITS_PER_VISIT, max_visits_for_role


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _visit_status(visit_count: int, max_visits: int) -> str:
    if visit_count >= max_visits:
        return "max_visits_reached"
    if visit_count == 0:
        return "new"
    return f"{visit_count}/{max_visits} visits"


async def list_available_campaigns(visitor_id: str, db: AsyncSession, *, limit: int = 20) -> Dict[str, Any]:
    role_result = await db.execute(select(Profile.role).where(Profile.id == visitor_id))
    max_visits = max_visits_for_role(role_result.scalar_one_or_none())

    result = await db.execute(
        select(Campaign, Profile.username)
        .outerjoin(Profile, Profile.id == Campaign.user_id)
        .where(
            Campaign.status == "active",
            Campaign.user_id != visitor_id,
            Campaign.credits_allocated > Campaign.credits_spent,
        )
        .order_by(Campaign.created_at.desc())
        .limit(max(limit, 1))
    )
    rows = result.all()
    if not rows:
        return {"campaigns": []}

    campaign_ids = [campaign.id for campaign, _ in rows]
    counts_result = await db.execute(
        select(Visit.campaign_id, func.count(Visit.id))
        .where(Visit.visitor_id == visitor_id, Visit.campaign_id.in_(campaign_ids))
        .group_by(Visit.campaign_id)
    )
    visit_counts = {campaign_id: int(count) for campaign_id, count in counts_result.all()}

    campaigns: List[Dict[str, Any]] = []
    for campaign, owner_username in rows:
        visit_count = visit_counts.get(campaign.id, 0)
        campaigns.append(
            {
                "campaign_id": campaign.id,
                "title": campaign.title,
                "url": campaign.url,
                "description": campaign.description,
                "credits_per_visit": BASE_CREDITS_PER_VISIT,
                "owner_username": owner_username or "Anonymous User",
                "remaining_credits": campaign.remaining_credits,
                "visit_count": visit_count,
                "max_visits": max_visits,
                "can_visit": visit_count < max_visits,
                "visit_status": _visit_status(visit_count, max_visits),
            }
        )
    return {"campaigns": campaigns}


def _serialize_visit(visit: Visit, campaign: Campaign) -> Dict[str, Any]:
    return {
        "id": visit.id,
        "visitor_id": visit.visitor_id,
        "campaign_id": visit.campaign_id,
        "attempt_number": visit.attempt_number,
        "is_valid": visit.is_valid,
        "credits_earned": visit.credits_earned,
        "visit_duration": visit.visit_duration,
        "fraud_score": visit.fraud_score,
        "start_time": visit.start_time.isoformat() if visit.start_time else None,
        "end_time": visit.end_time.isoformat() if visit.end_time else None,
        "created_at": visit.created_at.isoformat() if visit.created_at else None,
        "campaign": {"id": campaign.id, "title": campaign.title, "url": campaign.url},
    }


async def list_received_visits(
    owner_id: str,
    db: AsyncSession,
    *,
    status: Optional[str] = None,
    campaign_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Visits received by campaigns the owner runs."""
    current = now or datetime.now(timezone.utc)
    week_ago = current - timedelta(days=7)

    filters = [Campaign.user_id == owner_id]
    if campaign_id:
        filters.append(Visit.campaign_id == campaign_id)
    if status == "recent":
        filters.append(Visit.created_at >= week_ago)

    count_result = await db.execute(
        select(func.count(Visit.id)).join(Campaign, Campaign.id == Visit.campaign_id).where(*filters)
    )
    total = int(count_result.scalar() or 0)

    page = await db.execute(
        select(Visit, Campaign)
        .join(Campaign, Campaign.id == Visit.campaign_id)
        .where(*filters)
        .order_by(Visit.created_at.desc(), Visit.id)
        .offset(max(offset, 0))
        .limit(max(limit, 1))
    )
    rows = page.all()

    recent_visits = sum(
        1 for visit, _ in rows if visit.created_at is not None and _as_utc(visit.created_at) >= week_ago
    )
    return {
        "visits": [_serialize_visit(visit, campaign) for visit, campaign in rows],
        "stats": {
            "total": len(rows),
            "total_credits_earned": sum(int(visit.credits_earned or 0) for visit, _ in rows),
            "recent_visits": recent_visits,
        },
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": total > offset + limit,
        },
    }
