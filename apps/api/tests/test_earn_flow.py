import pytest


@pytest.mark.asyncio
async def test_visit_flow_moves_credits_from_campaign_to_visitor(integration_client, seed_profile, auth_header):
    await seed_profile("owner", credits=20, username="owner")
    owner_headers = auth_header("owner")
    visitor_headers = auth_header("visitor")

    create_resp = await integration_client.post(
        "/campaigns",
        json={"title": "My blog", "url": "https://blog.example.com", "credits_allocated": 2},
        headers=owner_headers,
    )
    assert create_resp.status_code == 201
    campaign_id = create_resp.json()["campaign"]["id"]

    available_resp = await integration_client.get("/earn/campaigns", headers=visitor_headers)
    assert available_resp.status_code == 200
    listed = available_resp.json()["campaigns"]
    assert [item["campaign_id"] for item in listed] == [campaign_id]
    assert listed[0]["visit_status"] == "new"
    assert listed[0]["can_visit"] is True
    assert listed[0]["owner_username"] == "owner"

    visit_resp = await integration_client.post(
        "/earn/visit",
        json={"campaign_id": campaign_id},
        headers=visitor_headers,
    )
    assert visit_resp.status_code == 200
    visit_payload = visit_resp.json()
    assert visit_payload["credits_earned"] == 1
    assert visit_payload["campaign_completed"] is False

    complete_resp = await integration_client.post(
        "/earn/complete-visit",
        json={"visit_id": visit_payload["visit_id"], "duration": 31.5, "fraud_score": 12},
        headers=visitor_headers,
    )
    assert complete_resp.status_code == 200

    credits_resp = await integration_client.get("/billing/credits", headers=visitor_headers)
    assert credits_resp.json()["balance"] == 1

    received_resp = await integration_client.get("/visits", headers=owner_headers)
    assert received_resp.status_code == 200
    received = received_resp.json()
    assert received["pagination"]["total"] == 1
    assert received["visits"][0]["visit_duration"] == 31.5
    assert received["stats"]["total_credits_earned"] == 1

    campaign_resp = await integration_client.get(f"/campaigns/{campaign_id}", headers=owner_headers)
    assert campaign_resp.json()["campaign"]["credits_spent"] == 1
    assert campaign_resp.json()["stats"]["valid_visits"] == 1

    second_visit = await integration_client.post(
        "/earn/visit",
        json={"campaign_id": campaign_id},
        headers=visitor_headers,
    )
    assert second_visit.json()["campaign_completed"] is True

    exhausted = await integration_client.post(
        "/earn/visit",
        json={"campaign_id": campaign_id},
        headers=visitor_headers,
    )
    assert exhausted.status_code == 400
    assert exhausted.json()["detail"]["code"] == "no_credits"

    available_after = await integration_client.get("/earn/campaigns", headers=visitor_headers)
    assert available_after.json()["campaigns"] == []


@pytest.mark.asyncio
async def test_owner_cannot_visit_own_campaign(integration_client, seed_profile, auth_header):
    await seed_profile("owner", credits=5)
    headers = auth_header("owner")
    create_resp = await integration_client.post(
        "/campaigns",
        json={"title": "Shop", "url": "https://shop.example.com", "credits_allocated": 5},
        headers=headers,
    )
    campaign_id = create_resp.json()["campaign"]["id"]

    resp = await integration_client.post("/earn/visit", json={"campaign_id": campaign_id}, headers=headers)
    assert resp.status_code == 400
    detail = resp.json()["detail"]
    assert detail["code"] == "self_visit"
    assert detail["self_visit"] is True


@pytest.mark.asyncio
async def test_unknown_campaign_returns_not_found(integration_client, auth_header):
    resp = await integration_client.post(
        "/earn/visit",
        json={"campaign_id": "missing"},
        headers=auth_header("visitor"),
    )
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "not_found"


@pytest.mark.asyncio
async def test_earn_requires_session_token(integration_client):
    resp = await integration_client.post("/earn/visit", json={"campaign_id": "anything"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_complete_visit_rejects_negative_duration(integration_client, auth_header):
    resp = await integration_client.post(
        "/earn/complete-visit",
        json={"visit_id": "v1", "duration": -1},
        headers=auth_header("visitor"),
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_complete_unknown_visit_is_not_found(integration_client, auth_header):
    resp = await integration_client.post(
        "/earn/complete-visit",
        json={"visit_id": "v1", "duration": 12},
        headers=auth_header("visitor"),
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_health_live(integration_client):
    resp = await integration_client.get("/health/live")
    assert resp.status_code == 200
    assert resp.json() == {"alive": True}
