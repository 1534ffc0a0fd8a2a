import pytest
from datetime import date
from typing import AsyncGenerator, Dict, List
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from meterflow.main import app
from meterflow.database import Base, get_session
from meterflow.auth.jwt import token_service
from meterflow.core.exceptions import DependencyError
from meterflow.directory import (
	BuildingInfo,
	DirectoryPort,
	ServiceInfo,
	StaffInfo,
	UnitInfo,
	get_directory,
)
from meterflow.models.cycle import CycleStatus, ReadingCycle
from meterflow import models  # noqa: F401

SERVICE_ID = "svc-water"
SERVICE_CODE = "WATER"
READER_ID = "staff-1"
OTHER_READER_ID = "staff-2"


class FakeDirectory(DirectoryPort):
	"""In-memory directory: one building with ten active units over two floors"""

	def __init__(self):
		self.buildings: Dict[str, BuildingInfo] = {
			"B1": BuildingInfo(id="B1", code="B1", name="Block 1"),
		}
		self.units: Dict[str, UnitInfo] = {}
		for floor in (1, 2):
			for n in range(1, 6):
				self.add_unit("B1", floor, n)
		# Vacated unit, never counted
		self.add_unit("B1", 3, 1, status="INACTIVE")

		self.staff: Dict[str, List[StaffInfo]] = {
			"TECHNICIAN": [
				StaffInfo(id=READER_ID, full_name="Reader One", roles=["TECHNICIAN"]),
				StaffInfo(id=OTHER_READER_ID, full_name="Reader Two", roles=["TECHNICIAN"]),
			],
			"ACCOUNTANT": [StaffInfo(id="staff-9", full_name="Accountant", roles=["ACCOUNTANT"])],
		}
		self.services: Dict[str, ServiceInfo] = {
			SERVICE_ID: ServiceInfo(id=SERVICE_ID, code=SERVICE_CODE, name="Water"),
		}
		self.services_down = False

	def add_unit(self, building_id: str, floor: int, n: int, status: str = "ACTIVE") -> UnitInfo:
		unit = UnitInfo(
			id=f"u-{building_id}-{floor}0{n}",
			code=f"{building_id}-{floor}0{n}",
			building_id=building_id,
			floor=floor,
			status=status,
		)
		self.units[unit.id] = unit
		return unit

	def active_unit_ids(self, building_id: str = "B1") -> List[str]:
		return sorted(u.id for u in self.units.values() if u.building_id == building_id and u.active)

	async def list_buildings(self) -> List[BuildingInfo]:
		return list(self.buildings.values())

	async def get_building(self, building_id: str) -> BuildingInfo:
		if building_id not in self.buildings:
			raise DependencyError(f"Unknown building {building_id}")
		return self.buildings[building_id]

	async def list_active_units(self, building_id: str) -> List[UnitInfo]:
		return [u for u in self.units.values() if u.building_id == building_id and u.active]

	async def get_unit(self, unit_id: str) -> UnitInfo:
		if unit_id not in self.units:
			raise DependencyError(f"Unknown unit {unit_id}")
		return self.units[unit_id]

	async def list_staff_by_role(self, role: str) -> List[StaffInfo]:
		return self.staff.get(role, [])

	async def get_service(self, service_id: str) -> ServiceInfo:
		if self.services_down or service_id not in self.services:
			raise DependencyError(f"Unknown service {service_id}")
		return self.services[service_id]


@pytest.fixture
async def engine(tmp_path):
	"""File-backed SQLite so that several sessions see each other's commits"""
	engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

	async with engine.begin() as conn:
		await conn.run_sync(Base.metadata.create_all)

	yield engine

	await engine.dispose()


@pytest.fixture
def session_factory(engine):
	return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
	async with session_factory() as session:
		yield session


@pytest.fixture
def directory() -> FakeDirectory:
	return FakeDirectory()


@pytest.fixture
async def client(session_factory, directory: FakeDirectory) -> AsyncGenerator[AsyncClient, None]:
	"""Test client with a fresh session per request and the fake directory"""

	async def override_get_session():
		async with session_factory() as session:
			try:
				yield session
				await session.commit()
			except Exception:
				await session.rollback()
				raise

	app.dependency_overrides[get_session] = override_get_session
	app.dependency_overrides[get_directory] = lambda: directory

	async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
		yield client

	app.dependency_overrides.clear()


@pytest.fixture
def reader_token() -> str:
	return token_service.create_token({"sub": READER_ID, "role": "TECHNICIAN"})


@pytest.fixture
def auth_headers(reader_token: str) -> Dict[str, str]:
	return {"Authorization": f"Bearer {reader_token}"}


@pytest.fixture
async def cycle(db_session: AsyncSession) -> ReadingCycle:
	"""OPEN water cycle for January 2025"""
	cycle = ReadingCycle(
		name="Water 2025-01",
		service_id=SERVICE_ID,
		period_from=date(2025, 1, 1),
		period_to=date(2025, 2, 1),
		status=CycleStatus.OPEN,
	)
	db_session.add(cycle)
	await db_session.commit()
	return cycle


@pytest.fixture
async def full_assignment(client: AsyncClient, cycle: ReadingCycle) -> dict:
	"""One assignment covering every active unit of building B1"""
	response = await client.post(
		"/api/v1/assignments/",
		json={
			"cycle_id": str(cycle.id),
			"building_id": "B1",
			"assigned_to": READER_ID,
			"floors": [1, 2],
		}
	)
	assert response.status_code == 201, response.text
	return response.json()
