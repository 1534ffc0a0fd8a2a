import logging
from typing import Any, List

import httpx

from meterflow.config import settings
from meterflow.core.exceptions import DependencyError
from meterflow.directory.port import (
	BuildingInfo,
	DirectoryPort,
	ServiceInfo,
	StaffInfo,
	UnitInfo,
)

logger = logging.getLogger(__name__)


class HttpDirectory(DirectoryPort):
	"""Directory adapter over the property-management REST API."""

	def __init__(self, client: httpx.AsyncClient):
		self.client = client

	async def _get(self, path: str, **params) -> Any:
		try:
			response = await self.client.get(path, params=params or None)
		except httpx.HTTPError as e:
			logger.error(f"Directory request {path} failed: {e}")
			raise DependencyError(f"Directory unavailable: {path}") from e

		if response.status_code == 404:
			raise DependencyError(f"Directory returned nothing for {path}")
		if response.status_code >= 400:
			logger.error(f"Directory request {path} returned {response.status_code}")
			raise DependencyError(f"Directory error {response.status_code} for {path}")
		return response.json()

	async def list_buildings(self) -> List[BuildingInfo]:
		data = await self._get("/api/buildings")
		return [BuildingInfo.model_validate(b) for b in data]

	async def get_building(self, building_id: str) -> BuildingInfo:
		return BuildingInfo.model_validate(await self._get(f"/api/buildings/{building_id}"))

	async def list_active_units(self, building_id: str) -> List[UnitInfo]:
		data = await self._get(f"/api/units/building/{building_id}")
		units = [UnitInfo.model_validate({"building_id": building_id, **u}) for u in data]
		return [u for u in units if u.active]

	async def get_unit(self, unit_id: str) -> UnitInfo:
		return UnitInfo.model_validate(await self._get(f"/api/units/{unit_id}"))

	async def list_staff_by_role(self, role: str) -> List[StaffInfo]:
		data = await self._get("/api/employees", role=role)
		return [StaffInfo.model_validate(s) for s in data]

	async def get_service(self, service_id: str) -> ServiceInfo:
		return ServiceInfo.model_validate(await self._get(f"/api/services/{service_id}"))


_client: httpx.AsyncClient | None = None


def new_http_client() -> httpx.AsyncClient:
	return httpx.AsyncClient(
		base_url=settings.DIRECTORY_BASE_URL,
		timeout=settings.DIRECTORY_TIMEOUT_SECONDS,
	)


def get_http_client() -> httpx.AsyncClient:
	"""Process-wide client shared by API requests"""
	global _client
	if _client is None:
		_client = new_http_client()
	return _client


async def close_http_client():
	global _client
	if _client is not None:
		await _client.aclose()
		_client = None
