"""Admin dashboard aggregates and user management."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.campaign import Campaign
from models.credit_transaction import CreditTransaction
from models.profile import Profile
from models.visit import Visit
from services.policy import ROLES, role_defaults

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]+$")
USERNAME_TAKEN = "Username is already taken"
FLAGGED_FRAUD_SCORE = 70


def validate_username(username: str) -> str:
    text = str(username or "").strip()
    if len(text) < 3 or len(text) > 30:
        raise HTTPException(status_code=400, detail="Username must be between 3 and 30 characters")
    if not USERNAME_PATTERN.match(text):
        raise HTTPException(
            status_code=400,
            detail="Username can only contain letters, numbers, and underscores",
        )
    return text


async def ensure_username_available(username: str, user_id: str, db: AsyncSession) -> None:
    existing = await db.execute(select(Profile.id).where(Profile.username == username, Profile.id != user_id))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=400, detail=USERNAME_TAKEN)


def _health_status(valid_visit_percentage: float, uptime: float) -> str:
    if valid_visit_percentage > 80 and uptime > 95:
        return "healthy"
    if valid_visit_percentage > 60 and uptime > 90:
        return "warning"
    return "critical"


async def get_admin_stats(db: AsyncSession, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    current = now or datetime.now(timezone.utc)
    day_ago = current - timedelta(days=1)
    week_ago = current - timedelta(days=7)

    total_users = (await db.execute(select(func.count(Profile.id)))).scalar() or 0
    total_campaigns = (await db.execute(select(func.count(Campaign.id)))).scalar() or 0
    total_visits = (await db.execute(select(func.count(Visit.id)))).scalar() or 0
    total_credits = (await db.execute(select(func.coalesce(func.sum(Profile.credits), 0)))).scalar() or 0

    week_visits = (
        await db.execute(select(Visit.is_valid, Visit.visit_duration).where(Visit.created_at >= week_ago))
    ).all()
    week_amounts = (
        await db.execute(select(CreditTransaction.amount).where(CreditTransaction.created_at >= week_ago))
    ).scalars().all()
    flagged_today = (
        await db.execute(
            select(func.count(Visit.id)).where(
                Visit.created_at >= day_ago,
                Visit.fraud_score > FLAGGED_FRAUD_SCORE,
                Visit.is_valid.is_(False),
            )
        )
    ).scalar() or 0

    valid_visits = sum(1 for row in week_visits if row.is_valid)
    valid_visit_percentage = (valid_visits / len(week_visits)) * 100 if week_visits else 0.0
    total_operations = len(week_visits) + len(week_amounts)
    successful_operations = valid_visits + sum(1 for amount in week_amounts if amount > 0)
    uptime = (successful_operations / total_operations) * 100 if total_operations else 99.9
    average_duration = (
        sum(float(row.visit_duration or 0) for row in week_visits) / len(week_visits) if week_visits else 0.0
    )

    return {
        "total_users": int(total_users),
        "total_campaigns": int(total_campaigns),
        "total_visits": int(total_visits),
        "total_credits": int(total_credits),
        "fraud_attempts": int(flagged_today),
        "system_health": {
            "status": _health_status(valid_visit_percentage, uptime),
            "uptime": round(uptime, 1),
            "valid_visit_percentage": round(valid_visit_percentage, 1),
            "average_visit_duration": round(average_duration),
        },
    }


def _serialize_user(profile: Profile, total_visits: int = 0, valid_visits: int = 0) -> Dict[str, Any]:
    return {
        "id": profile.id,
        "username": profile.username,
        "email": profile.email or "N/A",
        "role": profile.role,
        "credits": profile.credits or 0,
        "credit_multiplier": profile.credit_multiplier,
        "campaign_limit": profile.campaign_limit,
        "total_visits": total_visits,
        "valid_visits": valid_visits,
        "created_at": profile.created_at.isoformat() if profile.created_at else None,
        "last_active": profile.updated_at.isoformat() if profile.updated_at else None,
    }


async def list_users(db: AsyncSession, *, limit: int = 500) -> Dict[str, Any]:
    profiles = (
        await db.execute(select(Profile).order_by(Profile.created_at.desc()).limit(max(limit, 1)))
    ).scalars().all()
    if not profiles:
        return {"users": []}

    counts = (
        await db.execute(
            select(
                Visit.visitor_id,
                func.count(Visit.id),
                func.sum(case((Visit.is_valid.is_(True), 1), else_=0)),
            )
            .where(Visit.visitor_id.in_([profile.id for profile in profiles]))
            .group_by(Visit.visitor_id)
        )
    ).all()
    visit_counts = {visitor_id: (int(total), int(valid or 0)) for visitor_id, total, valid in counts}

    return {
        "users": [
            _serialize_user(profile, *visit_counts.get(profile.id, (0, 0)))
            for profile in profiles
        ]
    }


async def update_user(user_id: str, db: AsyncSession, changes: Dict[str, Any], *, actor_id: str) -> Dict[str, Any]:
    profile = (await db.execute(select(Profile).where(Profile.id == user_id))).scalar_one_or_none()
    if profile is None:
        raise HTTPException(status_code=404, detail="User not found")

    username = changes.get("username")
    role = changes.get("role")
    if username is None and role is None:
        raise HTTPException(status_code=400, detail="Nothing to update")

    if username is not None:
        username = validate_username(username)
        await ensure_username_available(username, user_id, db)
        profile.username = username
    if role is not None:
        if role not in ROLES:
            raise HTTPException(status_code=400, detail=f"role must be one of {', '.join(ROLES)}")
        for column, value in role_defaults(role).items():
            setattr(profile, column, value)

    try:
        await db.commit()
    except IntegrityError:
        # Username claimed by a concurrent update.
        await db.rollback()
        raise HTTPException(status_code=400, detail=USERNAME_TAKEN)
    await db.refresh(profile)
    logger.info("admin_user_update actor=%s user=%s changes=%s", actor_id, user_id, sorted(changes))
    return {"user": _serialize_user(profile), "message": "User updated successfully"}
