import pytest


async def _create(client, headers, **overrides):
    payload = {"title": "Campaign", "url": "https://example.com", "credits_allocated": 10}
    payload.update(overrides)
    return await client.post("/campaigns", json=payload, headers=headers)


async def _balance(client, headers):
    resp = await client.get("/billing/credits", headers=headers)
    return resp.json()["balance"]


@pytest.mark.asyncio
async def test_create_debits_allocation(integration_client, seed_profile, auth_header):
    await seed_profile("owner", credits=25)
    headers = auth_header("owner")

    resp = await _create(integration_client, headers, device_target="mobile")
    assert resp.status_code == 201
    campaign = resp.json()["campaign"]
    assert campaign["status"] == "active"
    assert campaign["remaining_credits"] == 10
    assert campaign["device_target"] == "mobile"
    assert await _balance(integration_client, headers) == 15

    transactions = (await integration_client.get("/billing/transactions?kind=spent", headers=headers)).json()
    assert [entry["reason"] for entry in transactions["transactions"]] == ["campaign_allocation"]
    assert transactions["summary"]["total_spent"] == 10


@pytest.mark.asyncio
async def test_create_without_enough_credits_leaves_nothing_behind(integration_client, seed_profile, auth_header):
    await seed_profile("owner", credits=5)
    headers = auth_header("owner")

    resp = await _create(integration_client, headers, credits_allocated=6)
    assert resp.status_code == 402

    listing = await integration_client.get("/campaigns", headers=headers)
    assert listing.json()["campaigns"] == []
    assert await _balance(integration_client, headers) == 5


@pytest.mark.asyncio
async def test_create_validates_input(integration_client, seed_profile, auth_header):
    await seed_profile("owner", credits=50)
    headers = auth_header("owner")

    bad_url = await _create(integration_client, headers, url="ftp://example.com")
    assert bad_url.status_code == 400
    bad_device = await _create(integration_client, headers, device_target="smartwatch")
    assert bad_device.status_code == 400
    zero_budget = await _create(integration_client, headers, credits_allocated=0)
    assert zero_budget.status_code == 422


@pytest.mark.asyncio
async def test_free_users_are_limited_to_three_campaigns(integration_client, seed_profile, auth_header):
    await seed_profile("owner", credits=100)
    headers = auth_header("owner")

    for _ in range(3):
        assert (await _create(integration_client, headers, credits_allocated=1)).status_code == 201

    resp = await _create(integration_client, headers, credits_allocated=1)
    assert resp.status_code == 403
    assert "Upgrade to Premium" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_allocation_changes_move_credits(integration_client, seed_profile, auth_header):
    await seed_profile("owner", credits=30)
    headers = auth_header("owner")
    campaign_id = (await _create(integration_client, headers)).json()["campaign"]["id"]

    grow = await integration_client.patch(f"/campaigns/{campaign_id}", json={"credits_allocated": 15}, headers=headers)
    assert grow.status_code == 200
    assert await _balance(integration_client, headers) == 15

    shrink = await integration_client.patch(f"/campaigns/{campaign_id}", json={"credits_allocated": 5}, headers=headers)
    assert shrink.status_code == 200
    assert shrink.json()["campaign"]["credits_allocated"] == 5
    assert await _balance(integration_client, headers) == 25

    too_much = await integration_client.patch(
        f"/campaigns/{campaign_id}", json={"credits_allocated": 500}, headers=headers
    )
    assert too_much.status_code == 402
    assert await _balance(integration_client, headers) == 25


@pytest.mark.asyncio
async def test_allocation_cannot_drop_below_spent(integration_client, seed_profile, auth_header):
    await seed_profile("owner", credits=10)
    headers = auth_header("owner")
    campaign_id = (await _create(integration_client, headers, credits_allocated=3)).json()["campaign"]["id"]
    await integration_client.post("/earn/visit", json={"campaign_id": campaign_id}, headers=auth_header("visitor"))

    resp = await integration_client.patch(f"/campaigns/{campaign_id}", json={"credits_allocated": 0}, headers=headers)
    assert resp.status_code == 400

    exact = await integration_client.patch(f"/campaigns/{campaign_id}", json={"credits_allocated": 1}, headers=headers)
    assert exact.status_code == 200
    assert exact.json()["campaign"]["status"] == "completed"

    reactivate = await integration_client.patch(f"/campaigns/{campaign_id}", json={"status": "active"}, headers=headers)
    assert reactivate.status_code == 400


@pytest.mark.asyncio
async def test_pause_and_resume(integration_client, seed_profile, auth_header):
    await seed_profile("owner", credits=10)
    headers = auth_header("owner")
    campaign_id = (await _create(integration_client, headers)).json()["campaign"]["id"]

    paused = await integration_client.patch(f"/campaigns/{campaign_id}", json={"status": "paused"}, headers=headers)
    assert paused.json()["campaign"]["status"] == "paused"

    visit = await integration_client.post(
        "/earn/visit", json={"campaign_id": campaign_id}, headers=auth_header("visitor")
    )
    assert visit.json()["detail"]["code"] == "inactive_campaign"

    resumed = await integration_client.patch(f"/campaigns/{campaign_id}", json={"status": "active"}, headers=headers)
    assert resumed.json()["campaign"]["status"] == "active"

    deleted_status = await integration_client.patch(
        f"/campaigns/{campaign_id}", json={"status": "deleted"}, headers=headers
    )
    assert deleted_status.status_code == 400


@pytest.mark.asyncio
async def test_delete_refunds_unspent_budget(integration_client, seed_profile, auth_header):
    await seed_profile("owner", credits=10)
    headers = auth_header("owner")
    campaign_id = (await _create(integration_client, headers, credits_allocated=4)).json()["campaign"]["id"]
    await integration_client.post("/earn/visit", json={"campaign_id": campaign_id}, headers=auth_header("visitor"))

    resp = await integration_client.delete(f"/campaigns/{campaign_id}", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["credits_returned"] == 3
    assert await _balance(integration_client, headers) == 9

    again = await integration_client.delete(f"/campaigns/{campaign_id}", headers=headers)
    assert again.status_code == 404
    edit = await integration_client.patch(f"/campaigns/{campaign_id}", json={"title": "x"}, headers=headers)
    assert edit.status_code == 404
    assert (await integration_client.get("/campaigns", headers=headers)).json()["campaigns"] == []


@pytest.mark.asyncio
async def test_campaigns_are_private_to_their_owner(integration_client, seed_profile, auth_header):
    await seed_profile("owner", credits=10)
    campaign_id = (await _create(integration_client, auth_header("owner"))).json()["campaign"]["id"]
    stranger = auth_header("stranger")

    assert (await integration_client.get(f"/campaigns/{campaign_id}", headers=stranger)).status_code == 404
    assert (await integration_client.delete(f"/campaigns/{campaign_id}", headers=stranger)).status_code == 404
    assert (await integration_client.get("/campaigns", headers=stranger)).json()["campaigns"] == []
