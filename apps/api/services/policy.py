"""Role-derived policy: visit caps, credit multipliers and campaign limits.

Every free/premium/admin difference lives here so the ledger, campaign and
admin surfaces never branch on role strings themselves.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Optional, Tuple


ROLE_FREE = "free"
ROLE_PREMIUM = "premium"
ROLE_ADMIN = "admin"
ROLES = (ROLE_FREE, ROLE_PREMIUM, ROLE_ADMIN)

FREE_MAX_VISITS = 3
PREMIUM_MAX_VISITS = 10
FREE_CREDIT_MULTIPLIER = 1.0
PREMIUM_CREDIT_MULTIPLIER = 1.2
FREE_CAMPAIGN_LIMIT = 3
PREMIUM_CAMPAIGN_LIMIT = 999

BASE_CREDITS_PER_VISIT = 1
CAMPAIGN_COST_PER_VISIT = 1


def normalize_role(role: Any) -> str:
    text = str(role or "").strip().lower()
    return text if text in ROLES else ROLE_FREE


def max_visits_for_role(role: Any) -> int:
    """Attempt cap per (visitor, campaign)."""
    if normalize_role(role) == ROLE_PREMIUM:
        return PREMIUM_MAX_VISITS
    return FREE_MAX_VISITS


def credit_multiplier_for_role(role: Any) -> float:
    if normalize_role(role) == ROLE_PREMIUM:
        return PREMIUM_CREDIT_MULTIPLIER
    return FREE_CREDIT_MULTIPLIER


def campaign_limit_for_role(role: Any) -> Optional[int]:
    """Maximum live campaigns; ``None`` means unlimited."""
    resolved = normalize_role(role)
    if resolved == ROLE_ADMIN:
        return None
    if resolved == ROLE_PREMIUM:
        return PREMIUM_CAMPAIGN_LIMIT
    return FREE_CAMPAIGN_LIMIT


def credits_for_visit(multiplier: Any) -> int:
    """Credits a visitor earns for one visit.

    The award is floored, so a 1.2x multiplier still yields 1 credit at the
    base rate.
    """
    try:
        value = float(multiplier)
    except (TypeError, ValueError):
        value = FREE_CREDIT_MULTIPLIER
    if value <= 0:
        value = FREE_CREDIT_MULTIPLIER
    return int(math.floor(BASE_CREDITS_PER_VISIT * value))


def check_campaign_limit(role: Any, current_count: int, limit: Optional[int] = None) -> Tuple[bool, Optional[str]]:
    resolved = normalize_role(role)
    if resolved == ROLE_ADMIN:
        return True, None

    effective_limit = limit if limit else campaign_limit_for_role(resolved)
    if effective_limit is None or current_count < effective_limit:
        return True, None
    if resolved == ROLE_FREE:
        return False, (
            f"Free users can only create {effective_limit} campaigns. "
            "Upgrade to Premium for unlimited campaigns."
        )
    return False, "Campaign limit reached"


def upgrade_prompt(role: Any) -> Optional[str]:
    if normalize_role(role) == ROLE_FREE:
        return (
            "Upgrade to Premium to unlock unlimited campaigns, 1.2x credit multiplier, "
            "and advanced targeting options!"
        )
    return None


def permissions_for_profile(profile: Any) -> Dict[str, Any]:
    """Permission summary for a profile row (or ``None`` for an unknown user)."""
    role = normalize_role(getattr(profile, "role", None))
    stored_limit = getattr(profile, "campaign_limit", None)
    stored_multiplier = getattr(profile, "credit_multiplier", None)
    return {
        "role": role,
        "campaign_limit": stored_limit or campaign_limit_for_role(role),
        "credit_multiplier": float(stored_multiplier or credit_multiplier_for_role(role)),
        "max_visits_per_campaign": max_visits_for_role(role),
        "can_create_campaign": True,
        "can_access_advanced_targeting": role in (ROLE_PREMIUM, ROLE_ADMIN),
        "can_access_analytics": True,
        "can_manage_users": role == ROLE_ADMIN,
        "upgrade_prompt": upgrade_prompt(role),
    }


def role_defaults(role: Any) -> Dict[str, Any]:
    """Profile column values a role change resets."""
    resolved = normalize_role(role)
    return {
        "role": resolved,
        "credit_multiplier": credit_multiplier_for_role(resolved),
        "campaign_limit": campaign_limit_for_role(resolved),
    }
