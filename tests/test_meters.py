import pytest
from httpx import AsyncClient

METERS = "/api/v1/meters"


async def _create(client: AsyncClient, unit_id: str = "u-B1-101", code: str = "W-101"):
	return await client.post(
		f"{METERS}/",
		json={"unit_id": unit_id, "service_id": "svc-water", "meter_code": code, "meter_type": "WATER"}
	)


@pytest.mark.asyncio
async def test_create_meter(client: AsyncClient):
	response = await _create(client)
	assert response.status_code == 201
	data = response.json()
	assert data["building_id"] == "B1"
	assert data["active"] is True
	assert data["last_reading"] is None

	listing = (await client.get(f"{METERS}/", params={"building_id": "B1"})).json()
	assert listing["total"] == 1
	assert listing["data"][0]["meter_code"] == "W-101"


@pytest.mark.asyncio
async def test_one_active_meter_per_unit_and_service(client: AsyncClient):
	first = await _create(client)
	response = await _create(client, code="W-101-bis")
	assert response.status_code == 409
	error = response.json()["error"]
	assert error["code"] == "conflict"
	assert error["details"]["meter_id"] == first.json()["id"]

	# A replacement is allowed once the old meter is deactivated
	response = await client.patch(f"{METERS}/{first.json()['id']}/deactivate")
	assert response.json()["active"] is False

	response = await _create(client, code="W-101-bis")
	assert response.status_code == 201

	active = (await client.get(f"{METERS}/", params={"unit_id": "u-B1-101", "active": "true"})).json()
	assert [m["meter_code"] for m in active["data"]] == ["W-101-bis"]


@pytest.mark.asyncio
async def test_unknown_unit_rejected(client: AsyncClient):
	response = await _create(client, unit_id="u-nowhere")
	assert response.status_code == 502


@pytest.mark.asyncio
async def test_update_meter(client: AsyncClient):
	meter = (await _create(client)).json()
	response = await client.put(f"{METERS}/{meter['id']}", json={"location": "Basement"})
	assert response.status_code == 200
	assert response.json()["location"] == "Basement"
	assert response.json()["meter_code"] == "W-101"


@pytest.mark.asyncio
async def test_delete_meter_without_readings(client: AsyncClient):
	meter = (await _create(client)).json()
	response = await client.delete(f"{METERS}/{meter['id']}")
	assert response.status_code == 204

	response = await client.get(f"{METERS}/{meter['id']}")
	assert response.status_code == 404


@pytest.mark.asyncio
async def test_meter_with_readings_cannot_be_deleted(client: AsyncClient, full_assignment):
	meter = (await _create(client)).json()
	await client.post(
		"/api/v1/readings/",
		json={
			"assignment_id": full_assignment["id"],
			"meter_id": meter["id"],
			"reading_date": "2025-01-15",
			"current_index": "10",
		}
	)

	response = await client.delete(f"{METERS}/{meter['id']}")
	assert response.status_code == 409
	assert response.json()["error"]["code"] == "invalid_state"


@pytest.mark.asyncio
async def test_units_missing_meters(client: AsyncClient):
	await _create(client)
	missing = (await client.get(
		f"{METERS}/missing", params={"building_id": "B1", "service_id": "svc-water"}
	)).json()
	assert len(missing) == 9
	assert "u-B1-101" not in [u["id"] for u in missing]


@pytest.mark.asyncio
async def test_staff_cycle_meters(client: AsyncClient, cycle, full_assignment):
	await _create(client)
	await _create(client, unit_id="u-B1-301", code="W-301")

	response = await client.get(f"{METERS}/staff/staff-1/cycle/{cycle.id}")
	assert [m["meter_code"] for m in response.json()] == ["W-101"]

	response = await client.get(f"{METERS}/staff/staff-2/cycle/{cycle.id}")
	assert response.json() == []
