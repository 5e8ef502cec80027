"""Credit ledger and balance accounting helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException
from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_transaction import CreditTransaction
from models.profile import Profile


REASON_VISIT_EARNED = "visit_earned"
REASON_CAMPAIGN_ALLOCATION = "campaign_allocation"
REASON_CAMPAIGN_ALLOCATION_INCREASE = "campaign_allocation_increase"
REASON_CAMPAIGN_ALLOCATION_DECREASE = "campaign_allocation_decrease"
REASON_CAMPAIGN_DELETION_RETURN = "campaign_deletion_return"
REASON_CREDIT_PURCHASE = "credit_purchase"
REASON_PREMIUM_SUBSCRIPTION = "premium_subscription"

PURCHASE_REF_TABLE = "credit_purchases"


async def get_credit_balance(user_id: str, db: AsyncSession) -> int:
    """Materialized balance from the profile row."""
    result = await db.execute(select(Profile.credits).where(Profile.id == user_id))
    return int(result.scalar() or 0)


async def get_ledger_sum(user_id: str, db: AsyncSession) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(CreditTransaction.user_id == user_id)
    )
    return int(result.scalar() or 0)


async def reconcile_balance(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    """Compare the cached balance with the transaction ledger (off the hot path)."""
    balance = await get_credit_balance(user_id, db)
    ledger_sum = await get_ledger_sum(user_id, db)
    return {
        "user_id": user_id,
        "balance": balance,
        "ledger_sum": ledger_sum,
        "in_sync": balance == ledger_sum,
    }


async def apply_credit_delta(
    user_id: str,
    db: AsyncSession,
    *,
    amount: int,
    reason: str,
    ref_table: Optional[str] = None,
    ref_id: Optional[str] = None,
) -> CreditTransaction:
    """Append a ledger entry and move the balance by ``amount`` atomically.

    Runs inside the caller's transaction and never commits. Debits only apply
    when the balance covers them, so the balance cannot go negative even under
    concurrent spends.
    """
    delta = int(amount)
    statement = update(Profile).where(Profile.id == user_id)
    if delta < 0:
        statement = statement.where(Profile.credits >= -delta)
    result = await db.execute(
        statement.values(credits=Profile.credits + delta).execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        exists = await db.execute(select(Profile.id).where(Profile.id == user_id))
        if exists.scalar_one_or_none() is None:
            raise HTTPException(status_code=404, detail="Profile not found")
        balance = await get_credit_balance(user_id, db)
        raise HTTPException(
            status_code=402,
            detail=f"Insufficient credits. Required: {-delta}, available: {balance}.",
        )

    entry = CreditTransaction(
        user_id=user_id,
        amount=delta,
        reason=reason,
        ref_table=ref_table,
        ref_id=ref_id,
    )
    db.add(entry)
    await db.flush()
    return entry


async def add_credit_purchase(
    user_id: str,
    db: AsyncSession,
    *,
    credits: int,
    provider: str,
    billing_reference: str,
    reason: str = REASON_CREDIT_PURCHASE,
) -> Dict[str, Any]:
    grant = max(int(credits), 0)
    if grant <= 0:
        raise HTTPException(status_code=422, detail="credits must be greater than 0")

    reference = f"{provider}:{billing_reference}"
    existing = await db.execute(
        select(CreditTransaction.id).where(
            CreditTransaction.ref_table == PURCHASE_REF_TABLE,
            CreditTransaction.ref_id == reference,
        )
    )
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="This purchase has already been credited.")

    await apply_credit_delta(
        user_id,
        db,
        amount=grant,
        reason=reason,
        ref_table=PURCHASE_REF_TABLE,
        ref_id=reference,
    )
    await db.commit()
    return {"credits_added": grant, "balance_after": await get_credit_balance(user_id, db)}


def _serialize_entry(entry: CreditTransaction) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "amount": entry.amount,
        "reason": entry.reason,
        "ref_table": entry.ref_table,
        "ref_id": entry.ref_id,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


async def get_credit_summary(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    balance = await get_credit_balance(user_id, db)
    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc())
        .limit(30)
    )
    entries = result.scalars().all()
    day_ago = datetime.now(timezone.utc) - timedelta(days=1)
    earned_today = (
        await db.execute(
            select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
                CreditTransaction.user_id == user_id,
                CreditTransaction.reason == REASON_VISIT_EARNED,
                CreditTransaction.created_at >= day_ago,
            )
        )
    ).scalar() or 0
    return {
        "balance": balance,
        "earned_last_24h": int(earned_today),
        "recent_entries": [_serialize_entry(entry) for entry in entries],
    }


async def list_credit_transactions(
    user_id: str,
    db: AsyncSession,
    *,
    kind: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> Dict[str, Any]:
    filters = [CreditTransaction.user_id == user_id]
    if kind == "earned":
        filters.append(CreditTransaction.amount > 0)
    elif kind == "spent":
        filters.append(CreditTransaction.amount < 0)

    total_result = await db.execute(select(func.count(CreditTransaction.id)).where(*filters))
    total = int(total_result.scalar() or 0)

    page_result = await db.execute(
        select(CreditTransaction)
        .where(*filters)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id)
        .offset(max(offset, 0))
        .limit(max(limit, 1))
    )
    entries = page_result.scalars().all()

    # Summary is bounded to the most recent 1000 rows.
    recent_amounts = (
        await db.execute(
            select(CreditTransaction.amount)
            .where(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.created_at.desc())
            .limit(1000)
        )
    ).scalars().all()

    return {
        "transactions": [_serialize_entry(entry) for entry in entries],
        "summary": {
            "total_earned": sum(amount for amount in recent_amounts if amount > 0),
            "total_spent": abs(sum(amount for amount in recent_amounts if amount < 0)),
            "transaction_count": total,
        },
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": total > offset + limit,
        },
    }
