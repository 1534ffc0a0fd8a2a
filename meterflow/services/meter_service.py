# meterflow/services/meter_service.py

from typing import List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from meterflow.core.exceptions import ConflictError, DependencyError, InvalidStateError, NotFoundError
from meterflow.core.locks import keyed_lock
from meterflow.directory import DirectoryPort, UnitInfo
from meterflow.models.assignment import Assignment, AssignmentUnit
from meterflow.models.meter import Meter
from meterflow.models.reading import MeterReading
from meterflow.monitoring.metrics import meters_provisioned
from meterflow.schemas.meter import MeterCreate, MeterUpdate

logger = logging.getLogger(__name__)


def synthesize_meter_code(unit_code: str, service_code: str) -> str:
    """Meter code given to meters provisioned on first reading."""
    return f"{unit_code}-{service_code}"


class MeterService:
    def __init__(self, session: AsyncSession, directory: DirectoryPort):
        self.session = session
        self.directory = directory

    async def list_meters(
            self,
            unit_id: Optional[str] = None,
            service_id: Optional[str] = None,
            building_id: Optional[str] = None,
            active: Optional[bool] = None,
    ) -> List[Meter]:
        query = select(Meter)

        filters = []
        if unit_id:
            filters.append(Meter.unit_id == unit_id)
        if service_id:
            filters.append(Meter.service_id == service_id)
        if building_id:
            filters.append(Meter.building_id == building_id)
        if active is not None:
            filters.append(Meter.active == active)
        if filters:
            query = query.where(*filters)

        result = await self.session.execute(query.order_by(Meter.meter_code))
        return list(result.scalars().all())

    async def get_meter(self, meter_id: UUID) -> Meter:
        meter = await self.session.get(Meter, meter_id)
        if not meter:
            raise NotFoundError(f"Meter {meter_id} not found")
        return meter

    async def find_active(self, unit_id: str, service_id: str) -> Optional[Meter]:
        result = await self.session.execute(
            select(Meter).where(
                Meter.unit_id == unit_id,
                Meter.service_id == service_id,
                Meter.active.is_(True),
            )
        )
        return result.scalars().first()

    async def list_by_staff_and_cycle(self, staff_id: str, cycle_id: UUID) -> List[Meter]:
        """Active meters of every unit the staff member holds in the cycle"""
        query = (
            select(Meter)
            .join(
                AssignmentUnit,
                (AssignmentUnit.unit_id == Meter.unit_id)
                & (AssignmentUnit.service_id == Meter.service_id),
            )
            .join(Assignment, Assignment.id == AssignmentUnit.assignment_id)
            .where(
                Assignment.assigned_to == staff_id,
                Assignment.cycle_id == cycle_id,
                Meter.active.is_(True),
            )
            .order_by(Meter.meter_code)
        )
        result = await self.session.execute(query)
        return list(result.scalars().unique().all())

    async def create_meter(self, meter_data: MeterCreate) -> Meter:
        """Explicit creation by an operator"""
        unit = await self.directory.get_unit(meter_data.unit_id)

        async with keyed_lock("meter", meter_data.unit_id, meter_data.service_id):
            existing = await self.find_active(meter_data.unit_id, meter_data.service_id)
            if existing:
                raise ConflictError(
                    f"Unit {unit.code} already has active meter {existing.meter_code}",
                    details={"meter_id": str(existing.id)},
                )

            meter = Meter(**meter_data.model_dump(), building_id=unit.building_id, active=True)
            self.session.add(meter)
            try:
                await self.session.commit()
            except IntegrityError as e:
                await self.session.rollback()
                raise ConflictError(f"Unit {unit.code} already has an active meter") from e

        logger.info(f"Meter {meter.meter_code} created for unit {unit.code}")
        return meter

    async def find_or_create(self, unit_id: str, service_id: str) -> Tuple[Meter, bool]:
        """Return the unit's active meter for the service, creating it if needed.

        Serialized per (unit, service); a concurrent insert that slips past the
        lock hits the partial unique index and the winner's row is returned.
        """
        async with keyed_lock("meter", unit_id, service_id):
            meter = await self.find_active(unit_id, service_id)
            if meter:
                return meter, False

            unit = await self.directory.get_unit(unit_id)
            service_code = await self._service_code(service_id)

            meter = Meter(
                unit_id=unit_id,
                building_id=unit.building_id,
                service_id=service_id,
                meter_code=synthesize_meter_code(unit.code, service_code),
                meter_type=service_code,
                active=True,
            )
            self.session.add(meter)
            try:
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                meter = await self.find_active(unit_id, service_id)
                if meter is None:
                    raise
                return meter, False

        meters_provisioned.inc()
        logger.info(f"Meter {meter.meter_code} provisioned for unit {unit.code}")
        return meter, True

    async def update_meter(self, meter_id: UUID, meter_update: MeterUpdate) -> Meter:
        meter = await self.get_meter(meter_id)
        for field, value in meter_update.model_dump(exclude_unset=True).items():
            setattr(meter, field, value)
        await self.session.commit()
        return meter

    async def deactivate_meter(self, meter_id: UUID) -> Meter:
        meter = await self.get_meter(meter_id)
        meter.active = False
        await self.session.commit()
        logger.info(f"Meter {meter.meter_code} deactivated")
        return meter

    async def delete_meter(self, meter_id: UUID) -> None:
        meter = await self.get_meter(meter_id)
        reading_count = await self.session.scalar(
            select(func.count()).select_from(MeterReading).where(MeterReading.meter_id == meter_id)
        )
        if reading_count:
            raise InvalidStateError(
                f"Meter {meter.meter_code} has {reading_count} readings; deactivate it instead"
            )
        await self.session.delete(meter)
        await self.session.commit()

    async def units_missing_meters(self, building_id: str, service_id: str) -> List[UnitInfo]:
        """Active units of the building with no active meter for the service"""
        units = await self.directory.list_active_units(building_id)
        result = await self.session.execute(
            select(Meter.unit_id).where(
                Meter.service_id == service_id,
                Meter.active.is_(True),
                Meter.unit_id.in_([u.id for u in units]),
            )
        )
        metered = set(result.scalars().all())
        return [u for u in units if u.id not in metered]

    async def _service_code(self, service_id: str) -> str:
        try:
            service = await self.directory.get_service(service_id)
            return service.code
        except DependencyError:
            logger.warning(f"Service {service_id} not resolvable, using id as meter code suffix")
            return service_id
