"""Fraud heuristics over a bounded recent window of visits, profiles and credits.

Advisory only: findings are surfaced to admins after the fact and never block
a ledger write. Each heuristic is an independent pass over the same dataset;
``analyze`` concatenates and ranks their output.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.campaign import Campaign
from models.credit_transaction import CreditTransaction
from models.fraud_review import FraudReview
from models.profile import Profile
from models.visit import Visit

logger = logging.getLogger(__name__)

CATEGORY_SUSPICIOUS_VISIT = "suspicious_visit"
CATEGORY_BOT_ACTIVITY = "bot_activity"
CATEGORY_CREDIT_MANIPULATION = "credit_manipulation"

SEVERITY_MEDIUM = "medium"
SEVERITY_CRITICAL = "critical"
SEVERITY_RANK = {"critical": 0, "medium": 1, "low": 2}

STATUS_REVIEWED = "reviewed"
STATUS_BLOCKED = "blocked"
STATUS_FALSE_POSITIVE = "false_positive"
REVIEW_STATUSES = (STATUS_REVIEWED, STATUS_BLOCKED, STATUS_FALSE_POSITIVE)

PATTERN_RAPID_VISITS = "rapid_visits"
PATTERN_SHORT_VISITS = "short_visits"
PATTERN_SELF_VISITS = "self_visits"
PATTERN_NEW_USER_HIGH_CREDITS = "new_user_high_credits"
PATTERN_HIGH_FAILURE_RATE = "high_failure_rate"
PATTERN_RAPID_CREDIT_EARNING = "rapid_credit_earning"
PATTERNS = (
    PATTERN_RAPID_VISITS,
    PATTERN_SHORT_VISITS,
    PATTERN_SELF_VISITS,
    PATTERN_NEW_USER_HIGH_CREDITS,
    PATTERN_HIGH_FAILURE_RATE,
    PATTERN_RAPID_CREDIT_EARNING,
)

RAPID_VISIT_WINDOW = timedelta(hours=1)
RAPID_VISIT_THRESHOLD = 10
RAPID_VISIT_CRITICAL_THRESHOLD = 20
SHORT_VISIT_SECONDS = 5.0
SHORT_VISIT_RATIO = 0.8
SELF_VISIT_SCORE = 95.0
NEW_ACCOUNT_WINDOW = timedelta(hours=24)
NEW_ACCOUNT_BALANCE_THRESHOLD = 100
FAILURE_RATIO_THRESHOLD = 0.7
RAPID_CREDIT_WINDOW = timedelta(hours=1)
RAPID_CREDIT_THRESHOLD = 50


class FraudAnalysisUnavailable(HTTPException):
    def __init__(self, detail: str = "Fraud analysis unavailable"):
        super().__init__(status_code=503, detail=detail)


@dataclass
class FraudFinding:
    id: str
    user_id: str
    category: str
    pattern: str
    severity: str
    description: str
    score: float
    detected_at: datetime
    username: str = "Unknown"
    status: str = STATUS_REVIEWED

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["detected_at"] = self.detected_at.isoformat()
        return payload


@dataclass
class FraudDataset:
    visits: List[Dict[str, Any]]
    profiles: List[Dict[str, Any]]
    transactions: List[Dict[str, Any]]
    now: datetime
    usernames: Dict[str, str] = field(default_factory=dict)

    def visits_by_visitor(self) -> Dict[str, List[Dict[str, Any]]]:
        grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for visit in self.visits:
            visitor_id = str(visit.get("visitor_id") or "")
            if visitor_id:
                grouped[visitor_id].append(visit)
        return grouped

    def username_for(self, user_id: str) -> str:
        return self.usernames.get(user_id) or "Unknown"


def _as_utc(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _safe_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _cap(score: float) -> float:
    return float(max(0.0, min(score, 100.0)))


def _occurred_after(row: Mapping[str, Any], cutoff: datetime) -> bool:
    occurred = _as_utc(row.get("created_at")) or _as_utc(row.get("start_time"))
    return occurred is not None and occurred > cutoff


def _finding(dataset: FraudDataset, pattern: str, user_id: str, **values: Any) -> FraudFinding:
    return FraudFinding(
        id=f"{pattern}_{user_id}",
        user_id=user_id,
        pattern=pattern,
        detected_at=dataset.now,
        username=dataset.username_for(user_id),
        **values,
    )


def rapid_visit_pass(dataset: FraudDataset) -> List[FraudFinding]:
    cutoff = dataset.now - RAPID_VISIT_WINDOW
    findings: List[FraudFinding] = []
    for visitor_id, visits in dataset.visits_by_visitor().items():
        recent = sum(1 for visit in visits if _occurred_after(visit, cutoff))
        if recent <= RAPID_VISIT_THRESHOLD:
            continue
        findings.append(
            _finding(
                dataset,
                PATTERN_RAPID_VISITS,
                visitor_id,
                category=CATEGORY_SUSPICIOUS_VISIT,
                severity=SEVERITY_CRITICAL if recent > RAPID_VISIT_CRITICAL_THRESHOLD else SEVERITY_MEDIUM,
                description=f"{recent} visits in the last hour from user {visitor_id}",
                score=_cap(recent * 5),
            )
        )
    return findings


def bot_duration_pass(dataset: FraudDataset) -> List[FraudFinding]:
    findings: List[FraudFinding] = []
    for visitor_id, visits in dataset.visits_by_visitor().items():
        # A single visit is not a pattern.
        if len(visits) < 2:
            continue
        short = sum(1 for visit in visits if _safe_float(visit.get("visit_duration")) < SHORT_VISIT_SECONDS)
        if short < len(visits) * SHORT_VISIT_RATIO:
            continue
        findings.append(
            _finding(
                dataset,
                PATTERN_SHORT_VISITS,
                visitor_id,
                category=CATEGORY_BOT_ACTIVITY,
                severity=SEVERITY_MEDIUM,
                description=f"{short}/{len(visits)} visits were extremely short (< 5 seconds)",
                score=_cap(short * 10),
            )
        )
    return findings


def self_visit_pass(dataset: FraudDataset) -> List[FraudFinding]:
    # The ledger forbids self-visits; this catches legacy rows and bypassed checks.
    findings: List[FraudFinding] = []
    for visitor_id, visits in dataset.visits_by_visitor().items():
        self_visits = sum(1 for visit in visits if visit.get("campaign_owner_id") == visitor_id)
        if not self_visits:
            continue
        findings.append(
            _finding(
                dataset,
                PATTERN_SELF_VISITS,
                visitor_id,
                category=CATEGORY_CREDIT_MANIPULATION,
                severity=SEVERITY_CRITICAL,
                description=f"User visited their own campaign {self_visits} times",
                score=SELF_VISIT_SCORE,
            )
        )
    return findings


def new_account_balance_pass(dataset: FraudDataset) -> List[FraudFinding]:
    cutoff = dataset.now - NEW_ACCOUNT_WINDOW
    findings: List[FraudFinding] = []
    for profile in dataset.profiles:
        user_id = str(profile.get("id") or "")
        created_at = _as_utc(profile.get("created_at"))
        balance = _safe_float(profile.get("credits"))
        if not user_id or created_at is None or created_at <= cutoff:
            continue
        if balance <= NEW_ACCOUNT_BALANCE_THRESHOLD:
            continue
        username = profile.get("username") or dataset.username_for(user_id)
        findings.append(
            _finding(
                dataset,
                PATTERN_NEW_USER_HIGH_CREDITS,
                user_id,
                category=CATEGORY_CREDIT_MANIPULATION,
                severity=SEVERITY_MEDIUM,
                description=f"New user ({username}) has unusually high credits: {int(balance)}",
                score=_cap(balance / 10),
            )
        )
    return findings


def failure_rate_pass(dataset: FraudDataset) -> List[FraudFinding]:
    findings: List[FraudFinding] = []
    for visitor_id, visits in dataset.visits_by_visitor().items():
        failed = sum(1 for visit in visits if not visit.get("is_valid", True))
        if failed <= len(visits) * FAILURE_RATIO_THRESHOLD:
            continue
        findings.append(
            _finding(
                dataset,
                PATTERN_HIGH_FAILURE_RATE,
                visitor_id,
                category=CATEGORY_SUSPICIOUS_VISIT,
                severity=SEVERITY_MEDIUM,
                description=f"User has high visit failure rate: {failed}/{len(visits)} failed",
                score=_cap(failed * 15),
            )
        )
    return findings


def rapid_credit_pass(dataset: FraudDataset) -> List[FraudFinding]:
    cutoff = dataset.now - RAPID_CREDIT_WINDOW
    earned_by_user: Dict[str, int] = defaultdict(int)
    for transaction in dataset.transactions:
        amount = int(_safe_float(transaction.get("amount")))
        user_id = str(transaction.get("user_id") or "")
        if user_id and amount > 0 and _occurred_after(transaction, cutoff):
            earned_by_user[user_id] += amount

    findings: List[FraudFinding] = []
    for user_id, earned in earned_by_user.items():
        if earned <= RAPID_CREDIT_THRESHOLD:
            continue
        findings.append(
            _finding(
                dataset,
                PATTERN_RAPID_CREDIT_EARNING,
                user_id,
                category=CATEGORY_CREDIT_MANIPULATION,
                severity=SEVERITY_CRITICAL,
                description=f"User earned {earned} credits in the last hour",
                score=_cap(earned * 2),
            )
        )
    return findings


FraudPass = Callable[[FraudDataset], List[FraudFinding]]

DEFAULT_PASSES: Sequence[FraudPass] = (
    rapid_visit_pass,
    bot_duration_pass,
    self_visit_pass,
    new_account_balance_pass,
    failure_rate_pass,
    rapid_credit_pass,
)


def analyze(
    visits: Iterable[Mapping[str, Any]],
    profiles: Iterable[Mapping[str, Any]],
    transactions: Iterable[Mapping[str, Any]],
    *,
    now: Optional[datetime] = None,
    dispositions: Optional[Mapping[str, str]] = None,
    passes: Sequence[FraudPass] = DEFAULT_PASSES,
) -> List[FraudFinding]:
    """Run every heuristic pass and return findings ranked most suspicious first."""
    profile_rows = [dict(profile) for profile in profiles]
    dataset = FraudDataset(
        visits=[dict(visit) for visit in visits],
        profiles=profile_rows,
        transactions=[dict(transaction) for transaction in transactions],
        now=_as_utc(now) or datetime.now(timezone.utc),
        usernames={
            str(profile["id"]): str(profile["username"])
            for profile in profile_rows
            if profile.get("id") and profile.get("username")
        },
    )

    findings: List[FraudFinding] = []
    for heuristic in passes:
        findings.extend(heuristic(dataset))

    for finding in findings:
        status = (dispositions or {}).get(finding.id)
        if status in REVIEW_STATUSES:
            finding.status = status

    findings.sort(key=lambda item: (-item.score, SEVERITY_RANK.get(item.severity, 9), item.user_id, item.pattern))
    return findings


def calculate_fraud_stats(findings: Sequence[FraudFinding], *, now: Optional[datetime] = None) -> Dict[str, Any]:
    current = _as_utc(now) or datetime.now(timezone.utc)
    day_ago = current - timedelta(hours=24)
    blocked_today = sum(
        1 for finding in findings if finding.status == STATUS_BLOCKED and _as_utc(finding.detected_at) > day_ago
    )
    false_positives = sum(1 for finding in findings if finding.status == STATUS_FALSE_POSITIVE)
    average_score = sum(finding.score for finding in findings) / len(findings) if findings else 0.0
    return {
        "total_attempts": len(findings),
        "blocked_today": blocked_today,
        "false_positives": false_positives,
        "average_score": round(average_score, 1),
    }


async def _load_window(db: AsyncSession, now: datetime) -> Dict[str, Any]:
    since = now - timedelta(days=max(int(settings.FRAUD_LOOKBACK_DAYS), 1))

    visit_rows = (
        await db.execute(
            select(
                Visit.id,
                Visit.visitor_id,
                Visit.campaign_id,
                Visit.is_valid,
                Visit.visit_duration,
                Visit.fraud_score,
                Visit.start_time,
                Visit.end_time,
                Visit.created_at,
                Campaign.user_id.label("campaign_owner_id"),
            )
            .outerjoin(Campaign, Campaign.id == Visit.campaign_id)
            .where(Visit.created_at >= since)
            .order_by(Visit.created_at.desc())
            .limit(max(int(settings.FRAUD_MAX_VISITS), 1))
        )
    ).mappings().all()

    profile_rows = (
        await db.execute(
            select(Profile.id, Profile.username, Profile.created_at, Profile.credits, Profile.role)
            .order_by(Profile.created_at.desc())
            .limit(max(int(settings.FRAUD_MAX_PROFILES), 1))
        )
    ).mappings().all()

    transaction_rows = (
        await db.execute(
            select(
                CreditTransaction.id,
                CreditTransaction.user_id,
                CreditTransaction.amount,
                CreditTransaction.reason,
                CreditTransaction.created_at,
            )
            .where(CreditTransaction.created_at >= since)
            .order_by(CreditTransaction.created_at.desc())
            .limit(max(int(settings.FRAUD_MAX_TRANSACTIONS), 1))
        )
    ).mappings().all()

    review_rows = (await db.execute(select(FraudReview.finding_id, FraudReview.status))).all()

    return {
        "visits": [dict(row) for row in visit_rows],
        "profiles": [dict(row) for row in profile_rows],
        "transactions": [dict(row) for row in transaction_rows],
        "dispositions": {finding_id: status for finding_id, status in review_rows},
    }


async def run_fraud_analysis(db: AsyncSession, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Load the recent window and analyze it; any failed read fails the whole call."""
    current = _as_utc(now) or datetime.now(timezone.utc)
    try:
        window = await _load_window(db, current)
    except SQLAlchemyError as exc:
        logger.exception("Fraud analysis read failed: %s", exc)
        raise FraudAnalysisUnavailable() from exc

    findings = analyze(
        window["visits"],
        window["profiles"],
        window["transactions"],
        now=current,
        dispositions=window["dispositions"],
    )
    return {
        "fraud_attempts": [finding.to_dict() for finding in findings],
        "stats": calculate_fraud_stats(findings, now=current),
        "analysis": {
            "total_visits_analyzed": len(window["visits"]),
            "total_users_analyzed": len(window["profiles"]),
            "total_transactions_analyzed": len(window["transactions"]),
            "suspicious_patterns_found": len(findings),
        },
    }


def _user_id_from_finding(finding_id: str) -> Optional[str]:
    for pattern in PATTERNS:
        prefix = f"{pattern}_"
        if finding_id.startswith(prefix) and len(finding_id) > len(prefix):
            return finding_id[len(prefix):]
    return None


async def review_finding(
    finding_id: str,
    db: AsyncSession,
    *,
    status: str,
    reviewer_id: str,
    note: Optional[str] = None,
) -> Dict[str, Any]:
    """Record an admin disposition for a finding. Never touches the ledger."""
    if status not in REVIEW_STATUSES:
        raise HTTPException(status_code=422, detail=f"status must be one of {', '.join(REVIEW_STATUSES)}")
    user_id = _user_id_from_finding(finding_id)
    if user_id is None:
        raise HTTPException(status_code=404, detail="Unknown fraud finding")

    review = (
        await db.execute(select(FraudReview).where(FraudReview.finding_id == finding_id))
    ).scalar_one_or_none()
    if review is None:
        review = FraudReview(finding_id=finding_id, user_id=user_id)
        db.add(review)
    review.status = status
    review.reviewer_id = reviewer_id
    review.note = note
    await db.commit()

    logger.info("fraud_review finding=%s status=%s reviewer=%s", finding_id, status, reviewer_id)
    return {"finding_id": finding_id, "user_id": user_id, "status": status, "note": note}
