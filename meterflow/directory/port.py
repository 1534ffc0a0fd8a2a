"""Read-only view of the building/unit/staff directory.

The directory is owned by another system; the reconciliation engine only
reads from it.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from meterflow.core.exceptions import DependencyError


class BuildingInfo(BaseModel):
	id: str
	code: str
	name: Optional[str] = None

	model_config = ConfigDict(extra="ignore")


class UnitInfo(BaseModel):
	id: str
	code: str
	building_id: str
	floor: Optional[int] = None
	status: str = "ACTIVE"

	model_config = ConfigDict(extra="ignore")

	@property
	def active(self) -> bool:
		return self.status.upper() == "ACTIVE"


class StaffInfo(BaseModel):
	id: str
	full_name: Optional[str] = None
	roles: List[str] = []

	model_config = ConfigDict(extra="ignore")


class ServiceInfo(BaseModel):
	id: str
	code: str
	name: Optional[str] = None

	model_config = ConfigDict(extra="ignore")


class DirectoryPort(ABC):
	"""Every method raises DependencyError when the lookup fails."""

	@abstractmethod
	async def list_buildings(self) -> List[BuildingInfo]:
		...

	@abstractmethod
	async def get_building(self, building_id: str) -> BuildingInfo:
		...

	@abstractmethod
	async def list_active_units(self, building_id: str) -> List[UnitInfo]:
		...

	@abstractmethod
	async def get_unit(self, unit_id: str) -> UnitInfo:
		...

	@abstractmethod
	async def list_staff_by_role(self, role: str) -> List[StaffInfo]:
		...

	@abstractmethod
	async def get_service(self, service_id: str) -> ServiceInfo:
		...

	async def find_building(self, building_id: str) -> Optional[BuildingInfo]:
		"""Non-essential lookup: degrade to None instead of failing."""
		try:
			return await self.get_building(building_id)
		except DependencyError:
			return None
