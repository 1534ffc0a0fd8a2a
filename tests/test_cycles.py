import io

import pytest
from decimal import Decimal
from httpx import AsyncClient
from openpyxl import load_workbook

from meterflow.services.cycle_service import CycleService

CYCLES = "/api/v1/reading-cycles"
UNITS = [f"u-B1-{floor}0{n}" for floor in (1, 2) for n in range(1, 6)]


async def _read(client: AsyncClient, assignment: dict, unit_id: str, value: str = "12"):
	response = await client.post(
		"/api/v1/readings/unit",
		json={
			"assignment_id": assignment["id"],
			"unit_id": unit_id,
			"reading_date": "2025-01-15",
			"current_index": value,
		}
	)
	assert response.status_code in (200, 201), response.text
	return response


async def _water_tier(client: AsyncClient):
	response = await client.post(
		"/api/v1/pricing-tiers/",
		json={
			"service_code": "WATER",
			"tier_order": 1,
			"min_quantity": "0",
			"unit_price": "2.50",
			"effective_from": "2024-01-01",
		}
	)
	assert response.status_code == 201


@pytest.mark.asyncio
async def test_create_cycle(client: AsyncClient):
	response = await client.post(
		f"{CYCLES}/",
		json={
			"name": "Water 2025-03",
			"service_id": "svc-water",
			"period_from": "2025-03-01",
			"period_to": "2025-04-01",
		}
	)
	assert response.status_code == 201
	data = response.json()
	assert data["status"] == "OPEN"
	assert data["export_status"] == "NOT_EXPORTED"


@pytest.mark.asyncio
async def test_create_cycle_unknown_service(client: AsyncClient):
	response = await client.post(
		f"{CYCLES}/",
		json={
			"name": "Gas 2025-03",
			"service_id": "svc-gas",
			"period_from": "2025-03-01",
			"period_to": "2025-04-01",
		}
	)
	assert response.status_code == 502
	assert response.json()["error"]["code"] == "dependency_error"


@pytest.mark.asyncio
async def test_create_cycle_empty_period(client: AsyncClient):
	response = await client.post(
		f"{CYCLES}/",
		json={
			"name": "Broken",
			"service_id": "svc-water",
			"period_from": "2025-03-01",
			"period_to": "2025-03-01",
		}
	)
	assert response.status_code == 422


@pytest.mark.asyncio
async def test_update_only_while_open(client: AsyncClient, cycle):
	response = await client.put(f"{CYCLES}/{cycle.id}", json={"name": "Water January"})
	assert response.status_code == 200
	assert response.json()["name"] == "Water January"

	response = await client.put(f"{CYCLES}/{cycle.id}", json={"period_to": "2024-12-01"})
	assert response.status_code == 422

	await client.patch(f"{CYCLES}/{cycle.id}/status", params={"status": "IN_PROGRESS"})
	response = await client.put(f"{CYCLES}/{cycle.id}", json={"name": "Too late"})
	assert response.status_code == 409
	assert response.json()["error"]["code"] == "invalid_state"


@pytest.mark.asyncio
async def test_update_rejects_null_name_and_period(client: AsyncClient, cycle):
	for field in ("name", "period_from", "period_to"):
		response = await client.put(f"{CYCLES}/{cycle.id}", json={field: None})
		assert response.status_code == 422, field

	response = await client.put(f"{CYCLES}/{cycle.id}", json={"description": None})
	assert response.status_code == 200
	body = response.json()
	assert body["name"] == "Water 2025-01"
	assert body["period_from"] == "2025-01-01"


@pytest.mark.asyncio
async def test_status_moves_forward_only(client: AsyncClient, cycle):
	response = await client.patch(f"{CYCLES}/{cycle.id}/status", params={"status": "IN_PROGRESS"})
	assert response.status_code == 200
	assert response.json()["status"] == "IN_PROGRESS"

	response = await client.patch(f"{CYCLES}/{cycle.id}/status", params={"status": "IN_PROGRESS"})
	assert response.status_code == 409

	response = await client.patch(f"{CYCLES}/{cycle.id}/status", params={"status": "OPEN"})
	assert response.status_code == 409
	assert response.json()["error"]["details"] == {"current": "IN_PROGRESS", "target": "OPEN"}

	response = await client.patch(f"{CYCLES}/{cycle.id}/status", params={"status": "CLOSED"})
	assert response.status_code == 200


@pytest.mark.asyncio
async def test_list_filters(client: AsyncClient, cycle):
	await client.post(
		f"{CYCLES}/",
		json={
			"name": "Water 2025-03",
			"service_id": "svc-water",
			"period_from": "2025-03-01",
			"period_to": "2025-04-01",
		}
	)
	await client.patch(f"{CYCLES}/{cycle.id}/status", params={"status": "IN_PROGRESS"})

	response = await client.get(f"{CYCLES}/")
	assert [c["name"] for c in response.json()] == ["Water 2025-03", "Water 2025-01"]

	response = await client.get(f"{CYCLES}/", params={"status": "IN_PROGRESS"})
	assert [c["id"] for c in response.json()] == [str(cycle.id)]

	# Overlap with February only: neither cycle touches it
	response = await client.get(f"{CYCLES}/", params={"from": "2025-02-01", "to": "2025-03-01"})
	assert response.json() == []

	response = await client.get(f"{CYCLES}/", params={"from": "2025-01-31", "to": "2025-02-02"})
	assert [c["id"] for c in response.json()] == [str(cycle.id)]


@pytest.mark.asyncio
async def test_read_progress_and_complete(client: AsyncClient, cycle, full_assignment, directory):
	"""Seven of ten units read is 70%, all ten is 100%, then the cycle completes and exports"""
	seen = []
	for unit_id in UNITS[:7]:
		await _read(client, full_assignment, unit_id)
		progress = (await client.get(f"{CYCLES}/{cycle.id}/progress")).json()
		seen.append(progress["progress_percentage"])

	assert seen == sorted(seen)
	assert seen[-1] == 70

	# Correcting a value does not move progress
	await _read(client, full_assignment, UNITS[0], "13")
	progress = (await client.get(f"{CYCLES}/{cycle.id}/progress")).json()
	assert progress["progress_percentage"] == 70
	assert progress["can_complete"] is False

	for unit_id in UNITS[7:]:
		await _read(client, full_assignment, unit_id)
	progress = (await client.get(f"{CYCLES}/{cycle.id}/progress")).json()
	assert progress["progress_percentage"] == 100
	assert progress["readings_done"] == 10
	assert progress["total_unassigned"] == 0

	await client.patch(f"/api/v1/assignments/{full_assignment['id']}/complete")
	await _water_tier(client)

	response = await client.post(f"{CYCLES}/{cycle.id}/complete")
	assert response.status_code == 200
	body = response.json()
	assert body["cycle"]["status"] == "COMPLETED"
	assert body["cycle"]["export_status"] == "EXPORTED"
	assert body["export"]["invoices_created"] == 10
	assert body["export_error"] is None

	response = await client.post(f"{CYCLES}/{cycle.id}/complete")
	assert response.status_code == 409
	assert response.json()["error"]["code"] == "invalid_state"

	response = await client.get(f"{CYCLES}/{cycle.id}/invoices.xlsx")
	assert response.status_code == 200
	assert response.headers["content-type"].startswith(
		"application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
	)
	wb = load_workbook(io.BytesIO(response.content))
	assert wb.sheetnames == ["Invoices", "Summary"]
	ws = wb["Invoices"]
	assert ws.max_row == 11
	# Unit B1-101 consumed 13 at 2.50
	amounts = {ws.cell(row=r, column=2).value: ws.cell(row=r, column=8).value for r in range(2, 12)}
	assert Decimal(str(amounts["u-B1-101"])) == Decimal("32.5")
	assert ws.cell(row=2, column=1).value == "Block 1"

	directory.buildings.clear()
	response = await client.get(f"{CYCLES}/{cycle.id}/invoices.xlsx")
	assert response.status_code == 200
	assert load_workbook(io.BytesIO(response.content))["Invoices"].cell(row=2, column=1).value == "B1"

	response = await client.get("/api/v1/billing-cycles/missing")
	assert str(cycle.id) not in [c["id"] for c in response.json()]


@pytest.mark.asyncio
async def test_complete_blocked_by_open_assignment(client: AsyncClient, cycle, full_assignment):
	response = await client.post(f"{CYCLES}/{cycle.id}/complete")
	assert response.status_code == 409
	assert response.json()["error"]["code"] == "not_ready"

	response = await client.get(f"{CYCLES}/{cycle.id}")
	assert response.json()["status"] == "IN_PROGRESS"


@pytest.mark.asyncio
async def test_complete_blocked_by_unassigned_units(client: AsyncClient, cycle):
	created = await client.post(
		"/api/v1/assignments/",
		json={"cycle_id": str(cycle.id), "building_id": "B1", "assigned_to": "staff-1", "floors": [1]}
	)
	await client.patch(f"/api/v1/assignments/{created.json()['id']}/complete")

	response = await client.post(f"{CYCLES}/{cycle.id}/complete")
	assert response.status_code == 409
	error = response.json()["error"]
	assert error["code"] == "not_ready"
	unassigned = error["details"]["unassigned"]
	assert unassigned["total_unassigned"] == 5
	assert unassigned["floors"][0]["floor"] == 2
	assert unassigned["floors"][0]["unit_codes"] == [f"B1-20{n}" for n in range(1, 6)]


@pytest.mark.asyncio
async def test_unassigned_info(client: AsyncClient, cycle):
	info = (await client.get(f"{CYCLES}/{cycle.id}/unassigned")).json()
	assert info["total_unassigned"] == 10
	assert [f["floor"] for f in info["floors"]] == [1, 2]
	assert "10 unit(s) in 1 building(s)" in info["message"]
	assert len(info["missing_meter_units"]) == 10

	await client.post(
		"/api/v1/assignments/",
		json={"cycle_id": str(cycle.id), "building_id": "B1", "assigned_to": "staff-1", "floors": [1, 2]}
	)
	info = (await client.get(f"{CYCLES}/{cycle.id}/unassigned")).json()
	assert info["total_unassigned"] == 0
	assert info["floors"] == []
	assert info["message"].startswith("All active units are assigned")


@pytest.mark.asyncio
async def test_empty_portfolio_completes(client: AsyncClient, cycle, directory):
	directory.units.clear()
	await _water_tier(client)

	response = await client.post(f"{CYCLES}/{cycle.id}/complete")
	assert response.status_code == 200
	assert response.json()["export"]["invoices_created"] == 0


@pytest.mark.asyncio
async def test_export_failure_keeps_completion(client: AsyncClient, cycle, full_assignment):
	"""Without tiers the export fails, the cycle stays COMPLETED and can be re-exported"""
	await _read(client, full_assignment, UNITS[0])
	await client.patch(f"/api/v1/assignments/{full_assignment['id']}/complete")

	response = await client.post(f"{CYCLES}/{cycle.id}/complete")
	assert response.status_code == 200
	body = response.json()
	assert body["cycle"]["status"] == "COMPLETED"
	assert body["cycle"]["export_status"] == "EXPORT_FAILED"
	assert body["export"] is None
	assert "No active pricing tiers" in body["export_error"]

	response = await client.get(f"{CYCLES}/{cycle.id}/invoices.xlsx")
	assert response.status_code == 409

	await _water_tier(client)
	response = await client.post(f"{CYCLES}/{cycle.id}/export")
	assert response.status_code == 200
	assert response.json()["invoices_created"] == 1

	cycle_data = (await client.get(f"{CYCLES}/{cycle.id}")).json()
	assert cycle_data["export_status"] == "EXPORTED"
	assert cycle_data["export_error"] is None

	# Re-export replaces the batches instead of adding to them
	response = await client.post(f"{CYCLES}/{cycle.id}/export")
	assert response.json()["invoices_created"] == 1


@pytest.mark.asyncio
async def test_export_requires_completed_cycle(client: AsyncClient, cycle):
	response = await client.post(f"{CYCLES}/{cycle.id}/export")
	assert response.status_code == 409

	cycle_data = (await client.get(f"{CYCLES}/{cycle.id}")).json()
	assert cycle_data["export_status"] == "NOT_EXPORTED"


@pytest.mark.asyncio
async def test_retry_failed_exports(client: AsyncClient, session_factory, cycle, full_assignment, directory):
	await _water_tier(client)
	await client.patch(f"/api/v1/assignments/{full_assignment['id']}/complete")

	directory.services_down = True
	body = (await client.post(f"{CYCLES}/{cycle.id}/complete")).json()
	assert body["cycle"]["export_status"] == "EXPORT_FAILED"

	async with session_factory() as session:
		assert await CycleService(session, directory).retry_failed_exports() == (0, 1)

	directory.services_down = False
	async with session_factory() as session:
		assert await CycleService(session, directory).retry_failed_exports() == (1, 0)

	cycle_data = (await client.get(f"{CYCLES}/{cycle.id}")).json()
	assert cycle_data["export_status"] == "EXPORTED"


@pytest.mark.asyncio
async def test_async_export_is_queued(client: AsyncClient, cycle, monkeypatch):
	from types import SimpleNamespace

	from meterflow.core.celery_app import celery_app

	sent = []

	def fake_send_task(name, kwargs=None, **options):
		sent.append((name, kwargs))
		return SimpleNamespace(id="task-1")

	monkeypatch.setattr(celery_app, "send_task", fake_send_task)

	response = await client.post(f"{CYCLES}/{cycle.id}/export/async")
	assert response.status_code == 409
	assert sent == []

	await client.patch(f"{CYCLES}/{cycle.id}/status", params={"status": "COMPLETED"})
	response = await client.post(f"{CYCLES}/{cycle.id}/export/async")
	assert response.status_code == 202
	assert response.json()["task_id"] == "task-1"
	assert sent == [("export_cycle_invoices", {"cycle_id": str(cycle.id)})]
