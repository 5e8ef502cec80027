"""Campaign owner analytics: performance totals, daily chart series and top campaigns."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.campaign import Campaign
from models.credit_transaction import CreditTransaction
from models.visit import Visit
from services.credits import (
    REASON_CREDIT_PURCHASE,
    REASON_PREMIUM_SUBSCRIPTION,
    REASON_VISIT_EARNED,
    get_credit_balance,
)

DAILY_STATS_DAYS = 30
RECENT_VISIT_DAYS = 7
TOP_CAMPAIGNS_LIMIT = 5
PURCHASE_REASONS = (REASON_CREDIT_PURCHASE, REASON_PREMIUM_SUBSCRIPTION)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _campaign_stats(campaigns: List[Campaign]) -> Dict[str, int]:
    return {
        "total": len(campaigns),
        "active": sum(1 for campaign in campaigns if campaign.status == "active"),
        "paused": sum(1 for campaign in campaigns if campaign.status == "paused"),
        "completed": sum(1 for campaign in campaigns if campaign.status == "completed"),
        "total_credits_allocated": sum(int(campaign.credits_allocated or 0) for campaign in campaigns),
        "total_credits_spent": sum(int(campaign.credits_spent or 0) for campaign in campaigns),
    }


def _daily_stats(visits: List[Dict[str, Any]], now: datetime) -> List[Dict[str, Any]]:
    by_date: Dict[str, Dict[str, int]] = defaultdict(lambda: {"visits": 0, "credits_earned": 0})
    for visit in visits:
        day = by_date[visit["created_at"].date().isoformat()]
        day["visits"] += 1
        day["credits_earned"] += visit["credits_earned"]

    series = []
    for offset in range(DAILY_STATS_DAYS - 1, -1, -1):
        date_key = (now - timedelta(days=offset)).date().isoformat()
        day = by_date.get(date_key, {"visits": 0, "credits_earned": 0})
        series.append({"date": date_key, **day})
    return series


def _top_campaigns(campaigns: List[Campaign], visits: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    per_campaign: Dict[str, Dict[str, int]] = defaultdict(lambda: {"visits": 0, "credits_earned": 0})
    for visit in visits:
        bucket = per_campaign[visit["campaign_id"]]
        bucket["visits"] += 1
        bucket["credits_earned"] += visit["credits_earned"]

    performance = []
    for campaign in campaigns:
        stats = per_campaign.get(campaign.id, {"visits": 0, "credits_earned": 0})
        performance.append(
            {
                "id": campaign.id,
                "title": campaign.title,
                "visits": stats["visits"],
                "credits_earned": stats["credits_earned"],
                "credits_spent": int(campaign.credits_spent or 0),
                "credits_allocated": int(campaign.credits_allocated or 0),
                "status": campaign.status,
            }
        )
    performance.sort(key=lambda item: (-item["credits_earned"], -item["visits"], item["id"]))
    return performance[:TOP_CAMPAIGNS_LIMIT]


async def get_user_analytics(
    user_id: str,
    db: AsyncSession,
    *,
    period_days: int = 30,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Dashboard numbers for the campaigns a user owns, over the last ``period_days``.

    Visit counts and credits come from visits made on the user's campaigns.
    Credit totals come from the user's own ledger rows in the same window.
    """
    now = _as_utc(now) or datetime.now(timezone.utc)
    start = now - timedelta(days=max(int(period_days), 1))

    campaigns = (
        (
            await db.execute(
                select(Campaign)
                .where(
                    Campaign.user_id == user_id,
                    Campaign.status != "deleted",
                    Campaign.created_at >= start,
                )
                .order_by(Campaign.created_at.desc())
            )
        )
        .scalars()
        .all()
    )

    visit_rows = (
        await db.execute(
            select(Visit.id, Visit.campaign_id, Visit.credits_earned, Visit.created_at)
            .join(Campaign, Campaign.id == Visit.campaign_id)
            .where(Campaign.user_id == user_id, Visit.created_at >= start)
        )
    ).all()
    visits = [
        {
            "id": row.id,
            "campaign_id": row.campaign_id,
            "credits_earned": int(row.credits_earned or 0),
            "created_at": _as_utc(row.created_at) or now,
        }
        for row in visit_rows
    ]

    transactions = (
        await db.execute(
            select(CreditTransaction.amount, CreditTransaction.reason).where(
                CreditTransaction.user_id == user_id,
                CreditTransaction.created_at >= start,
            )
        )
    ).all()

    recent_cutoff = now - timedelta(days=RECENT_VISIT_DAYS)
    visit_stats = {
        "total": len(visits),
        "total_credits_earned": sum(visit["credits_earned"] for visit in visits),
        "recent_visits": sum(1 for visit in visits if visit["created_at"] >= recent_cutoff),
    }

    campaign_stats = _campaign_stats(campaigns)
    credit_stats = {
        "total_earned": sum(row.amount for row in transactions if row.amount > 0 and row.reason == REASON_VISIT_EARNED),
        "total_spent": abs(sum(row.amount for row in transactions if row.amount < 0)),
        "total_purchased": sum(
            row.amount for row in transactions if row.amount > 0 and row.reason in PURCHASE_REASONS
        ),
        "total_allocated": campaign_stats["total_credits_allocated"],
    }
    balance = await get_credit_balance(user_id, db)

    return {
        "period": int(period_days),
        "campaigns": campaign_stats,
        "visits": visit_stats,
        "credits": credit_stats,
        "daily_stats": _daily_stats(visits, now),
        "top_campaigns": _top_campaigns(campaigns, visits),
        "summary": {
            "total_campaigns": campaign_stats["total"],
            "total_visits": visit_stats["total"],
            "total_credits_earned": credit_stats["total_earned"],
            "total_credits_spent": credit_stats["total_spent"],
            "total_credits_purchased": credit_stats["total_purchased"],
            "current_balance": balance,
        },
    }
