"""Admin dashboard, user management and fraud review."""

from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.profile import Profile
from routers.auth_scope import require_admin
from services.admin import get_admin_stats, list_users, update_user
from services.campaigns import list_campaigns
from services.fraud import review_finding, run_fraud_analysis

router = APIRouter()


class AdminUserUpdateRequest(BaseModel):
    username: Optional[str] = Field(default=None, max_length=30)
    role: Optional[Literal["free", "premium", "admin"]] = None


class FraudReviewRequest(BaseModel):
    status: Literal["reviewed", "blocked", "false_positive"]
    note: Optional[str] = Field(default=None, max_length=1000)


@router.get("/stats")
async def admin_stats(
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await get_admin_stats(db)


@router.get("/users")
async def admin_users(
    limit: int = Query(default=500, ge=1, le=1000),
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await list_users(db, limit=limit)


@router.patch("/users/{user_id}")
async def admin_update_user(
    user_id: str,
    request: AdminUserUpdateRequest,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await update_user(user_id, db, request.model_dump(exclude_unset=True), actor_id=admin.id)


@router.get("/campaigns")
async def admin_campaigns(
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await list_campaigns(admin.id, db, is_admin=True)


@router.get("/fraud")
async def admin_fraud(
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await run_fraud_analysis(db)


@router.post("/fraud/{finding_id}/review")
async def admin_review_fraud(
    finding_id: str,
    request: FraudReviewRequest,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await review_finding(
        finding_id,
        db,
        status=request.status,
        reviewer_id=admin.id,
        note=request.note,
    )
