"""Visit/credit ledger: record a visit, award the visitor and debit the campaign.

``record_visit`` is the only multi-table write in the system. The visit row,
the credit transaction, the balance increment and the campaign debit commit
together or not at all. Two store-level guards make the check-then-act path
safe under concurrent submissions:

* ``visits`` is unique on ``(visitor_id, campaign_id, attempt_number)``, so
  two requests that both saw ``n`` prior visits cannot both insert attempt
  ``n + 1``;
* the campaign debit is a conditional ``UPDATE`` that only matches while the
  campaign is active and has budget left.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException
from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.campaign import Campaign
from models.profile import Profile
from models.visit import Visit
from services.credits import REASON_VISIT_EARNED, apply_credit_delta, get_credit_balance
from services.policy import (
    CAMPAIGN_COST_PER_VISIT,
    credit_multiplier_for_role,
    credits_for_visit,
    max_visits_for_role,
)

logger = logging.getLogger(__name__)


class LedgerError(HTTPException):
    """Ledger failure with a machine-readable code the UI can branch on."""

    status = 400
    code = "ledger_error"

    def __init__(self, message: str, **extra: Any):
        self.message = message
        self.extra = extra
        super().__init__(
            status_code=self.status,
            detail={"error": message, "code": self.code, **extra},
        )


class NotFound(LedgerError):
    status = 404
    code = "not_found"


class SelfVisitForbidden(LedgerError):
    code = "self_visit"


class CampaignInactive(LedgerError):
    code = "inactive_campaign"


class CampaignExhausted(LedgerError):
    code = "no_credits"


class AttemptCapReached(LedgerError):
    code = "already_visited"


class VisitAlreadyCompleted(LedgerError):
    status = 409
    code = "visit_completed"


class TransactionFailure(LedgerError):
    """The atomic write could not complete; nothing was applied and the caller may retry."""

    status = 409
    code = "transaction_failed"


class _CampaignDebitRejected(Exception):
    pass


async def count_visits(visitor_id: str, campaign_id: str, db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count(Visit.id)).where(
            Visit.visitor_id == visitor_id,
            Visit.campaign_id == campaign_id,
        )
    )
    return int(result.scalar() or 0)


async def _debit_campaign(campaign_id: str, db: AsyncSession) -> Dict[str, Any]:
    new_spent = Campaign.credits_spent + CAMPAIGN_COST_PER_VISIT
    result = await db.execute(
        update(Campaign)
        .where(
            Campaign.id == campaign_id,
            Campaign.status == "active",
            new_spent <= Campaign.credits_allocated,
        )
        .values(
            credits_spent=new_spent,
            status=case((new_spent >= Campaign.credits_allocated, "completed"), else_=Campaign.status),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise _CampaignDebitRejected()

    row = (
        await db.execute(
            select(Campaign.credits_spent, Campaign.credits_allocated, Campaign.status).where(
                Campaign.id == campaign_id
            )
        )
    ).one()
    return {"credits_spent": row.credits_spent, "credits_allocated": row.credits_allocated, "status": row.status}


async def _rejected_debit_error(campaign_id: str, db: AsyncSession) -> LedgerError:
    row = (
        await db.execute(
            select(Campaign.status, Campaign.credits_spent, Campaign.credits_allocated).where(
                Campaign.id == campaign_id
            )
        )
    ).one_or_none()
    if row is None or row.status == "deleted":
        return NotFound("Campaign not found")
    if row.status != "active" and row.credits_spent < row.credits_allocated:
        return CampaignInactive("This campaign is not active", inactive_campaign=True)
    return CampaignExhausted("This campaign has no credits remaining", no_credits=True)


async def record_visit(
    visitor_id: str,
    campaign_id: str,
    db: AsyncSession,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Record one visit and settle its credits in a single transaction."""
    started_at = now or datetime.now(timezone.utc)

    campaign = (
        await db.execute(select(Campaign).where(Campaign.id == campaign_id).execution_options(populate_existing=True))
    ).scalar_one_or_none()
    if campaign is None or campaign.status == "deleted":
        raise NotFound("Campaign not found")
    if campaign.user_id == visitor_id:
        raise SelfVisitForbidden("You cannot visit your own campaign", self_visit=True)
    if campaign.status != "active" and campaign.remaining_credits > 0:
        raise CampaignInactive("This campaign is not active", inactive_campaign=True)
    if campaign.remaining_credits <= 0:
        raise CampaignExhausted("This campaign has no credits remaining", no_credits=True)

    profile = (
        await db.execute(select(Profile).where(Profile.id == visitor_id).execution_options(populate_existing=True))
    ).scalar_one_or_none()
    if profile is None:
        raise NotFound("Profile not found")

    visit_count = await count_visits(visitor_id, campaign_id, db)
    max_visits = max_visits_for_role(profile.role)
    if visit_count >= max_visits:
        raise AttemptCapReached(
            f"You have already visited this campaign {max_visits} times",
            already_visited=True,
            visit_count=visit_count,
            max_visits=max_visits,
        )

    credit_multiplier = float(profile.credit_multiplier or credit_multiplier_for_role(profile.role))
    credits_to_earn = credits_for_visit(credit_multiplier)

    try:
        visit = Visit(
            visitor_id=visitor_id,
            campaign_id=campaign_id,
            attempt_number=visit_count + 1,
            is_valid=True,
            credits_earned=credits_to_earn,
            visit_duration=0.0,
            fraud_score=0.0,
            start_time=started_at,
        )
        db.add(visit)
        await db.flush()
        visit_id = visit.id

        if credits_to_earn > 0:
            await apply_credit_delta(
                visitor_id,
                db,
                amount=credits_to_earn,
                reason=REASON_VISIT_EARNED,
                ref_table="visits",
                ref_id=visit_id,
            )
        debit = await _debit_campaign(campaign_id, db)
        await db.commit()
    except _CampaignDebitRejected:
        await db.rollback()
        error = await _rejected_debit_error(campaign_id, db)
        raise error from None
    except HTTPException:
        await db.rollback()
        raise
    except IntegrityError as exc:
        await db.rollback()
        logger.warning(
            "record_visit conflict visitor=%s campaign=%s attempt=%s: %s",
            visitor_id,
            campaign_id,
            visit_count + 1,
            exc.orig,
        )
        raise TransactionFailure(
            "Another visit to this campaign was recorded at the same time. Please try again.",
            retryable=True,
        ) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("record_visit failed visitor=%s campaign=%s", visitor_id, campaign_id)
        raise TransactionFailure("Failed to record visit. Please try again.", retryable=True) from exc

    campaign_completed = debit["status"] == "completed"
    visit_number = visit_count + 1
    balance_after = await get_credit_balance(visitor_id, db)
    logger.info(
        "visit_recorded visitor=%s campaign=%s visit=%s earned=%s completed=%s",
        visitor_id,
        campaign_id,
        visit_id,
        credits_to_earn,
        campaign_completed,
    )

    progress = f"({visit_number}/{max_visits} visits)"
    return {
        "success": True,
        "visit_id": visit_id,
        "credits_earned": credits_to_earn,
        "credit_multiplier": credit_multiplier,
        "visit_count": visit_number,
        "max_visits": max_visits,
        "campaign_completed": campaign_completed,
        "balance_after": balance_after,
        "message": (
            f"Visit recorded and credits awarded! Campaign completed! {progress}"
            if campaign_completed
            else f"Visit recorded and credits awarded! {progress}"
        ),
    }


async def complete_visit(
    visitor_id: str,
    visit_id: str,
    db: AsyncSession,
    *,
    duration: float = 0.0,
    fraud_score: float = 0.0,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Attach duration and fraud score to the caller's visit.

    Metadata only: credits and campaign budget were settled by ``record_visit``.
    """
    ended_at = now or datetime.now(timezone.utc)
    bounded_score = max(0.0, min(float(fraud_score), 100.0))

    result = await db.execute(
        update(Visit)
        .where(
            Visit.id == visit_id,
            Visit.visitor_id == visitor_id,
            Visit.end_time.is_(None),
        )
        .values(
            visit_duration=max(float(duration), 0.0),
            fraud_score=bounded_score,
            end_time=ended_at,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        owned = await db.execute(
            select(Visit.id).where(Visit.id == visit_id, Visit.visitor_id == visitor_id)
        )
        if owned.scalar_one_or_none() is None:
            raise NotFound("Visit not found")
        raise VisitAlreadyCompleted("This visit has already been completed")

    await db.commit()
    return {"success": True, "visit_id": visit_id, "message": "Visit completed successfully!"}
