import asyncio
from datetime import date
from decimal import Decimal

import pytest
from httpx import AsyncClient

from meterflow.core.exceptions import ValidationError
from meterflow.schemas.pricing import PricingTierCreate
from meterflow.services.pricing_service import PricingService
from meterflow.services.pricing_validator import detect_overlaps

BASE = "/api/v1/pricing-tiers/"


def tier(order, low, high=None, price="1000"):
	return {
		"service_code": "WATER",
		"tier_order": order,
		"min_quantity": str(low),
		"max_quantity": str(high) if high is not None else None,
		"unit_price": price,
		"effective_from": "2024-01-01",
	}


@pytest.mark.asyncio
async def test_unbounded_first_tier_needs_no_force(client: AsyncClient):
	response = await client.post(BASE, json=tier(1, 0))
	assert response.status_code == 201
	body = response.json()
	assert body["gaps"] == []
	assert body["forced"] is False
	assert body["tier"]["service_code"] == "WATER"


@pytest.mark.asyncio
async def test_gap_warning_then_force(client: AsyncClient):
	"""A schedule without an unbounded top tier is only saved when forced"""
	response = await client.post(BASE, json=tier(1, 0, 50))
	assert response.status_code == 409
	error = response.json()["error"]
	assert error["code"] == "gap"
	assert error["details"]["kind"] == "gap"
	assert error["details"]["gaps"][0]["end"] is None

	response = await client.get(BASE, params={"service_code": "WATER"})
	assert response.json() == []

	response = await client.post(BASE, params={"force": "true"}, json=tier(1, 0, 50))
	assert response.status_code == 201
	assert response.json()["forced"] is True

	# Adding the top tier closes the schedule
	response = await client.post(BASE, json=tier(2, 51))
	assert response.status_code == 201
	assert response.json()["gaps"] == []


@pytest.mark.asyncio
async def test_overlap_rejected(client: AsyncClient):
	await client.post(BASE, json=tier(2, 51))
	await client.post(BASE, json=tier(1, 0, 50))

	response = await client.post(BASE, params={"force": "true"}, json=tier(3, 40, 60))
	assert response.status_code == 422
	error = response.json()["error"]
	assert error["code"] == "validation_error"
	assert error["details"]["overlaps"]


@pytest.mark.asyncio
async def test_finite_gap_is_reported_not_rejected(client: AsyncClient):
	await client.post(BASE, json=tier(2, 60))
	response = await client.post(BASE, json=tier(1, 0, 50))
	assert response.status_code == 201
	gaps = response.json()["gaps"]
	assert [(Decimal(g["start"]), Decimal(g["end"])) for g in gaps] == [(Decimal("50"), Decimal("60"))]

	report = (await client.get(f"{BASE}validation", params={"service_code": "WATER"})).json()
	assert len(report["gaps"]) == 1
	assert report["overlaps"] == []
	assert report["has_unbounded_tier"] is True


@pytest.mark.asyncio
async def test_max_below_min_rejected(client: AsyncClient):
	response = await client.post(BASE, json=tier(1, 50, 10))
	assert response.status_code == 422


@pytest.mark.asyncio
async def test_deleting_top_tier_needs_force(client: AsyncClient):
	await client.post(BASE, json=tier(2, 51))
	await client.post(BASE, json=tier(1, 0, 50))
	tiers = (await client.get(BASE, params={"service_code": "WATER"})).json()
	top = next(t for t in tiers if t["max_quantity"] is None)

	response = await client.delete(f"{BASE}{top['id']}")
	assert response.status_code == 409
	assert response.json()["error"]["code"] == "gap"

	response = await client.delete(f"{BASE}{top['id']}", params={"force": "true"})
	assert response.status_code == 200
	assert response.json()["tier"] is None
	assert response.json()["forced"] is True


@pytest.mark.asyncio
async def test_update_into_overlap_rejected(client: AsyncClient):
	await client.post(BASE, json=tier(2, 51))
	created = (await client.post(BASE, json=tier(1, 0, 50))).json()["tier"]

	response = await client.put(f"{BASE}{created['id']}", json={"max_quantity": "70"})
	assert response.status_code == 422

	response = await client.put(f"{BASE}{created['id']}", json={"unit_price": "1200"})
	assert response.status_code == 200
	assert Decimal(response.json()["tier"]["unit_price"]) == Decimal("1200")


@pytest.mark.asyncio
async def test_update_rejects_null_for_required_fields(client: AsyncClient):
	created = (await client.post(BASE, json=tier(1, 0))).json()["tier"]

	for field in ("min_quantity", "unit_price", "tier_order", "effective_from", "active"):
		response = await client.put(f"{BASE}{created['id']}", json={field: None})
		assert response.status_code == 422, field

	# Unbounded top and open end date stay clearable
	response = await client.put(f"{BASE}{created['id']}", json={"max_quantity": None, "effective_until": None})
	assert response.status_code == 200
	assert response.json()["tier"]["min_quantity"] == created["min_quantity"]


@pytest.mark.asyncio
async def test_concurrent_tier_writes_cannot_overlap(session_factory):
	async def create(low: int):
		async with session_factory() as session:
			return await PricingService(session).create_tier(
				PricingTierCreate(
					service_code="WATER",
					tier_order=1,
					min_quantity=Decimal(low),
					unit_price=Decimal("1000"),
					effective_from=date(2024, 1, 1),
				)
			)

	results = await asyncio.gather(create(0), create(10), return_exceptions=True)
	errors = [r for r in results if isinstance(r, Exception)]
	assert len(errors) == 1
	assert isinstance(errors[0], ValidationError)

	async with session_factory() as session:
		stored = await PricingService(session).active_tiers("WATER")
	assert len(stored) == 1
	assert detect_overlaps(stored) == []
