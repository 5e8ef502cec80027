from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from services.fraud import (
    FraudAnalysisUnavailable,
    FraudDataset,
    analyze,
    bot_duration_pass,
    calculate_fraud_stats,
    run_fraud_analysis,
)


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _visit(visitor_id, *, minutes_ago=5, duration=30.0, is_valid=True, owner_id="owner-1"):
    return {
        "visitor_id": visitor_id,
        "campaign_id": "campaign-1",
        "is_valid": is_valid,
        "visit_duration": duration,
        "created_at": NOW - timedelta(minutes=minutes_ago),
        "campaign_owner_id": owner_id,
    }


def _by_pattern(findings):
    return {finding.pattern: finding for finding in findings}


def test_rapid_visits_above_twenty_are_critical():
    visits = [_visit("u1", minutes_ago=i) for i in range(1, 26)]
    findings = analyze(visits, [], [], now=NOW)

    rapid = _by_pattern(findings)["rapid_visits"]
    assert rapid.severity == "critical"
    assert rapid.score == 100
    assert rapid.category == "suspicious_visit"
    assert rapid.id == "rapid_visits_u1"


def test_rapid_visits_between_thresholds_are_medium():
    visits = [_visit("u1", minutes_ago=i) for i in range(1, 16)]
    rapid = _by_pattern(analyze(visits, [], [], now=NOW))["rapid_visits"]
    assert rapid.severity == "medium"
    assert rapid.score == 75


def test_ten_visits_in_an_hour_are_not_flagged():
    visits = [_visit("u1", minutes_ago=i) for i in range(1, 11)]
    visits.append(_visit("u1", minutes_ago=90))
    assert "rapid_visits" not in _by_pattern(analyze(visits, [], [], now=NOW))


def test_new_account_with_high_balance():
    profiles = [
        {"id": "new", "username": "fresh", "credits": 500, "created_at": NOW - timedelta(hours=1)},
        {"id": "old", "username": "veteran", "credits": 5000, "created_at": NOW - timedelta(days=3)},
        {"id": "poor", "username": "modest", "credits": 100, "created_at": NOW - timedelta(hours=2)},
    ]
    findings = analyze([], profiles, [], now=NOW)

    assert len(findings) == 1
    finding = findings[0]
    assert finding.pattern == "new_user_high_credits"
    assert finding.user_id == "new"
    assert finding.username == "fresh"
    assert finding.severity == "medium"
    assert finding.score == 50


def test_mostly_short_visits_flag_bot_activity():
    visits = [_visit("bot", minutes_ago=120 + i, duration=1.5) for i in range(4)]
    visits.append(_visit("bot", minutes_ago=200, duration=45))
    finding = _by_pattern(analyze(visits, [], [], now=NOW))["short_visits"]
    assert finding.category == "bot_activity"
    assert finding.score == 40


def test_single_short_visit_is_not_a_pattern():
    dataset = FraudDataset(visits=[_visit("u1", duration=0.5)], profiles=[], transactions=[], now=NOW)
    assert bot_duration_pass(dataset) == []


def test_self_visit_is_critical():
    findings = analyze([_visit("owner-1", owner_id="owner-1")], [], [], now=NOW)
    finding = _by_pattern(findings)["self_visits"]
    assert finding.severity == "critical"
    assert finding.score == 95
    assert finding.category == "credit_manipulation"


def test_high_failure_rate():
    visits = [_visit("u2", minutes_ago=100 + i, is_valid=False) for i in range(3)]
    visits.append(_visit("u2", minutes_ago=150))
    finding = _by_pattern(analyze(visits, [], [], now=NOW))["high_failure_rate"]
    assert finding.score == 45
    assert finding.severity == "medium"


def test_rapid_credit_accumulation_counts_only_recent_positive_amounts():
    transactions = [
        {"user_id": "u3", "amount": 30, "created_at": NOW - timedelta(minutes=10)},
        {"user_id": "u3", "amount": 30, "created_at": NOW - timedelta(minutes=20)},
        {"user_id": "u3", "amount": -40, "created_at": NOW - timedelta(minutes=30)},
        {"user_id": "u4", "amount": 30, "created_at": NOW - timedelta(minutes=10)},
        {"user_id": "u4", "amount": 30, "created_at": NOW - timedelta(hours=3)},
    ]
    findings = analyze([], [], transactions, now=NOW)
    assert [finding.user_id for finding in findings] == ["u3"]
    assert findings[0].pattern == "rapid_credit_earning"
    assert findings[0].score == 100


def test_clean_data_yields_no_findings():
    visits = [_visit("u1", minutes_ago=30 * i) for i in range(1, 4)]
    profiles = [{"id": "u1", "username": "calm", "credits": 10, "created_at": NOW - timedelta(days=30)}]
    assert analyze(visits, profiles, [], now=NOW) == []


def test_findings_are_ranked_by_score_then_severity():
    visits = [_visit("owner-1", owner_id="owner-1")]
    visits += [_visit("u1", minutes_ago=i) for i in range(1, 13)]
    profiles = [{"id": "new", "username": "fresh", "credits": 300, "created_at": NOW - timedelta(hours=1)}]
    findings = analyze(visits, profiles, [], now=NOW)

    assert [finding.score for finding in findings] == sorted((f.score for f in findings), reverse=True)
    assert findings[0].pattern == "self_visits"
    assert findings[-1].pattern == "new_user_high_credits"


def test_dispositions_and_stats():
    visits = [_visit("owner-1", owner_id="owner-1")]
    profiles = [{"id": "new", "username": "fresh", "credits": 500, "created_at": NOW - timedelta(hours=1)}]
    findings = analyze(
        visits,
        profiles,
        [],
        now=NOW,
        dispositions={"self_visits_owner-1": "blocked", "new_user_high_credits_new": "false_positive"},
    )
    statuses = {finding.id: finding.status for finding in findings}
    assert statuses == {"self_visits_owner-1": "blocked", "new_user_high_credits_new": "false_positive"}

    stats = calculate_fraud_stats(findings, now=NOW)
    assert stats == {
        "total_attempts": 2,
        "blocked_today": 1,
        "false_positives": 1,
        "average_score": 72.5,
    }


def test_stats_for_empty_findings():
    assert calculate_fraud_stats([], now=NOW) == {
        "total_attempts": 0,
        "blocked_today": 0,
        "false_positives": 0,
        "average_score": 0.0,
    }


def test_finding_serializes_detected_at():
    payload = analyze([_visit("owner-1", owner_id="owner-1")], [], [], now=NOW)[0].to_dict()
    assert payload["detected_at"] == NOW.isoformat()
    assert payload["status"] == "reviewed"
    assert payload["username"] == "Unknown"


class _FailingSession:
    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))


@pytest.mark.asyncio
async def test_read_failure_never_returns_partial_results():
    with pytest.raises(FraudAnalysisUnavailable) as exc_info:
        await run_fraud_analysis(_FailingSession(), now=NOW)
    assert exc_info.value.status_code == 503
