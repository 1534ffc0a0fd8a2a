import httpx
import pytest

from meterflow.core.exceptions import DependencyError
from meterflow.directory.http import HttpDirectory


def _directory(handler) -> HttpDirectory:
	client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://directory")
	return HttpDirectory(client)


@pytest.mark.asyncio
async def test_active_units_are_filtered():
	def handler(request: httpx.Request) -> httpx.Response:
		assert request.url.path == "/api/units/building/B7"
		return httpx.Response(200, json=[
			{"id": "u1", "code": "B7-101", "floor": 1, "status": "ACTIVE"},
			{"id": "u2", "code": "B7-102", "floor": 1, "status": "inactive"},
		])

	units = await _directory(handler).list_active_units("B7")
	assert [u.id for u in units] == ["u1"]
	assert units[0].building_id == "B7"


@pytest.mark.asyncio
async def test_staff_lookup_passes_role():
	def handler(request: httpx.Request) -> httpx.Response:
		assert request.url.params["role"] == "TECHNICIAN"
		return httpx.Response(200, json=[{"id": "s1", "full_name": "Reader", "roles": ["TECHNICIAN"], "phone": "x"}])

	staff = await _directory(handler).list_staff_by_role("TECHNICIAN")
	assert staff[0].id == "s1"


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [404, 500])
async def test_error_status_is_dependency_error(status_code):
	directory = _directory(lambda request: httpx.Response(status_code))
	with pytest.raises(DependencyError):
		await directory.get_service("svc-water")


@pytest.mark.asyncio
async def test_transport_failure_is_dependency_error():
	def handler(request: httpx.Request) -> httpx.Response:
		raise httpx.ConnectError("refused", request=request)

	with pytest.raises(DependencyError):
		await _directory(handler).get_unit("u1")


@pytest.mark.asyncio
async def test_find_building_degrades_to_none():
	directory = _directory(lambda request: httpx.Response(503))
	assert await directory.find_building("B1") is None
