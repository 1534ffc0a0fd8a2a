import pytest
from httpx import AsyncClient

BILLING = "/api/v1/billing-cycles"


@pytest.mark.asyncio
async def test_sync_missing_is_idempotent(client: AsyncClient, cycle):
	missing = (await client.get(f"{BILLING}/missing")).json()
	assert [c["id"] for c in missing] == [str(cycle.id)]

	response = await client.post(f"{BILLING}/sync-missing")
	assert response.status_code == 200
	created = response.json()
	assert len(created) == 1
	assert created[0]["external_cycle_id"] == str(cycle.id)
	assert created[0]["status"] == "ACTIVE"
	assert created[0]["period_from"] == "2025-01-01"

	response = await client.post(f"{BILLING}/sync-missing")
	assert response.json() == []
	assert (await client.get(f"{BILLING}/missing")).json() == []


@pytest.mark.asyncio
async def test_one_billing_cycle_per_reading_cycle(client: AsyncClient, cycle):
	await client.post(f"{BILLING}/sync-missing")

	response = await client.post(
		f"{BILLING}/",
		json={
			"name": "Duplicate",
			"period_from": "2025-01-01",
			"period_to": "2025-02-01",
			"external_cycle_id": str(cycle.id),
		}
	)
	assert response.status_code == 409
	assert response.json()["error"]["code"] == "conflict"


@pytest.mark.asyncio
async def test_list_by_range_and_year(client: AsyncClient):
	for name, start, end in (
			("Dec 2024", "2024-12-01", "2025-01-01"),
			("Jan 2025", "2025-01-01", "2025-02-01"),
			("Feb 2025", "2025-02-01", "2025-03-01"),
	):
		response = await client.post(f"{BILLING}/", json={"name": name, "period_from": start, "period_to": end})
		assert response.status_code == 201

	response = await client.get(f"{BILLING}/", params={"start_date": "2025-01-15", "end_date": "2025-02-15"})
	assert [b["name"] for b in response.json()] == ["Jan 2025", "Feb 2025"]

	response = await client.get(f"{BILLING}/load-period", params={"year": 2025})
	assert [b["name"] for b in response.json()] == ["Jan 2025", "Feb 2025"]

	response = await client.get(f"{BILLING}/load-period", params={"year": 2024})
	assert [b["name"] for b in response.json()] == ["Dec 2024"]


@pytest.mark.asyncio
async def test_status_update(client: AsyncClient):
	created = await client.post(
		f"{BILLING}/",
		json={"name": "Jan 2025", "period_from": "2025-01-01", "period_to": "2025-02-01"}
	)
	billing_id = created.json()["id"]

	response = await client.put(f"{BILLING}/{billing_id}/status", params={"status": "CLOSED"})
	assert response.status_code == 200
	assert response.json()["status"] == "CLOSED"

	response = await client.put(f"{BILLING}/{billing_id}/status", params={"status": "ARCHIVED"})
	assert response.status_code == 422
	assert response.json()["error"]["details"]["allowed"] == ["ACTIVE", "CLOSED", "CANCELLED"]


@pytest.mark.asyncio
async def test_unknown_billing_cycle(client: AsyncClient):
	response = await client.put(
		f"{BILLING}/00000000-0000-0000-0000-000000000000/status",
		params={"status": "CLOSED"}
	)
	assert response.status_code == 404
