import pytest

from config import settings


@pytest.mark.asyncio
async def test_topup_credits_once_per_reference(integration_client, auth_header):
    headers = auth_header("buyer")

    resp = await integration_client.post(
        "/billing/topup",
        json={"credits": 40, "billing_reference": "order-1001"},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "credits_added": 40, "balance_after": 40}

    replay = await integration_client.post(
        "/billing/topup",
        json={"credits": 40, "billing_reference": "order-1001"},
        headers=headers,
    )
    assert replay.status_code == 409

    summary = (await integration_client.get("/billing/credits", headers=headers)).json()
    assert summary["balance"] == 40
    assert summary["recent_entries"][0]["reason"] == "credit_purchase"
    assert summary["recent_entries"][0]["ref_id"] == "manual:order-1001"


@pytest.mark.asyncio
async def test_topup_disabled_when_gateway_billing_is_on(integration_client, auth_header, monkeypatch):
    monkeypatch.setattr(settings, "BILLING_ENABLED", True)
    resp = await integration_client.post(
        "/billing/topup",
        json={"credits": 10, "billing_reference": "order-1"},
        headers=auth_header("buyer"),
    )
    assert resp.status_code == 503


@pytest.mark.asyncio
async def test_transactions_filter_and_paginate(integration_client, seed_profile, auth_header):
    await seed_profile("owner", credits=0)
    headers = auth_header("owner")
    for index in range(3):
        await integration_client.post(
            "/billing/topup",
            json={"credits": 10, "billing_reference": f"order-{index}"},
            headers=headers,
        )
    await integration_client.post(
        "/campaigns",
        json={"title": "Site", "url": "https://example.com", "credits_allocated": 7},
        headers=headers,
    )

    earned = (await integration_client.get("/billing/transactions?kind=earned&limit=2", headers=headers)).json()
    assert len(earned["transactions"]) == 2
    assert earned["pagination"]["total"] == 3
    assert earned["pagination"]["has_more"] is True
    assert earned["summary"] == {"total_earned": 30, "total_spent": 7, "transaction_count": 3}

    everything = (await integration_client.get("/billing/transactions", headers=headers)).json()
    assert everything["pagination"]["total"] == 4


@pytest.mark.asyncio
async def test_premium_upgrade_and_cancel(integration_client, auth_header):
    headers = auth_header("member")

    upgrade = await integration_client.post(
        "/billing/subscription/upgrade",
        json={"plan_id": "premium_monthly", "subscription_reference": "sub-1"},
        headers=headers,
    )
    assert upgrade.status_code == 200
    payload = upgrade.json()
    assert payload["role"] == "premium"
    assert payload["credits_awarded"] == 500
    assert payload["credit_multiplier"] == 1.2
    assert payload["campaign_limit"] == 999
    assert payload["balance_after"] == 500

    replay = await integration_client.post(
        "/billing/subscription/upgrade",
        json={"plan_id": "premium_monthly", "subscription_reference": "sub-1"},
        headers=headers,
    )
    assert replay.status_code == 409

    profile = (await integration_client.get("/profile/me", headers=headers)).json()
    assert profile["permissions"]["max_visits_per_campaign"] == 10

    cancel = await integration_client.post("/billing/subscription/cancel", headers=headers)
    assert cancel.status_code == 200
    assert cancel.json()["role"] == "free"
    assert cancel.json()["campaign_limit"] == 3

    balance = (await integration_client.get("/billing/credits", headers=headers)).json()["balance"]
    assert balance == 500

    again = await integration_client.post("/billing/subscription/cancel", headers=headers)
    assert again.status_code == 400


@pytest.mark.asyncio
async def test_yearly_plan_awards_more_credits(integration_client, auth_header):
    resp = await integration_client.post(
        "/billing/subscription/upgrade",
        json={"plan_id": "premium_yearly", "subscription_reference": "sub-yearly"},
        headers=auth_header("member"),
    )
    assert resp.json()["credits_awarded"] == 6000


@pytest.mark.asyncio
async def test_unknown_plan_is_rejected(integration_client, auth_header):
    resp = await integration_client.post(
        "/billing/subscription/upgrade",
        json={"plan_id": "platinum", "subscription_reference": "sub-2"},
        headers=auth_header("member"),
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_subscription_reference_grants_credits_once(integration_client, auth_header):
    headers = auth_header("member")
    upgrade_a = {"plan_id": "premium_monthly", "subscription_reference": "sub-a"}

    first = await integration_client.post("/billing/subscription/upgrade", json=upgrade_a, headers=headers)
    assert first.status_code == 200
    await integration_client.post("/billing/subscription/cancel", headers=headers)

    after_cancel = await integration_client.post("/billing/subscription/upgrade", json=upgrade_a, headers=headers)
    assert after_cancel.status_code == 409

    upgrade_b = await integration_client.post(
        "/billing/subscription/upgrade",
        json={"plan_id": "premium_monthly", "subscription_reference": "sub-b"},
        headers=headers,
    )
    assert upgrade_b.status_code == 200
    assert upgrade_b.json()["balance_after"] == 1000

    older = await integration_client.post("/billing/subscription/upgrade", json=upgrade_a, headers=headers)
    assert older.status_code == 409

    summary = (await integration_client.get("/billing/transactions?kind=earned", headers=headers)).json()
    refs = [entry["ref_id"] for entry in summary["transactions"]]
    assert sorted(refs) == ["sub-a", "sub-b"]
    balance = (await integration_client.get("/billing/credits", headers=headers)).json()["balance"]
    assert balance == 1000
