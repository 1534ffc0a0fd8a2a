from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Set
from uuid import UUID
import logging

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from meterflow.config import settings
from meterflow.core.exceptions import (
	ConflictError,
	InvalidStateError,
	ValidationError,
)
from meterflow.core.locks import keyed_lock
from meterflow.directory import DirectoryPort, UnitInfo
from meterflow.models.assignment import Assignment, AssignmentUnit
from meterflow.models.cycle import CycleStatus, ReadingCycle
from meterflow.models.meter import Meter
from meterflow.models.reading import MeterReading
from meterflow.models.session import ReadingSession
from meterflow.monitoring.metrics import assignments_created
from meterflow.schemas.assignment import AssignmentCreate
from meterflow.services.common import load_assignment, load_cycle

logger = logging.getLogger(__name__)

CLOSED_FOR_ASSIGNMENT = (CycleStatus.COMPLETED, CycleStatus.CLOSED)


def resolve_assignment_window(
		cycle: ReadingCycle,
		start_date: Optional[date],
		end_date: Optional[date],
) -> tuple[date, date]:
	"""Default and validate an assignment's dates against the cycle period.

	The period is half-open, so the last valid day is period_to - 1.
	"""
	last_day = cycle.period_to - timedelta(days=1)
	start = start_date or cycle.period_from
	end = end_date or last_day

	if end < start:
		raise ValidationError(
			"end_date must not be before start_date",
			details={"start_date": start.isoformat(), "end_date": end.isoformat()},
		)
	if start < cycle.period_from or end > last_day:
		raise ValidationError(
			"Assignment dates must lie within the cycle period",
			details={
				"period_from": cycle.period_from.isoformat(),
				"period_to": cycle.period_to.isoformat(),
				"start_date": start.isoformat(),
				"end_date": end.isoformat(),
			},
		)
	return start, end


class AssignmentService:
	"""Partitions a cycle's units among field staff"""

	def __init__(self, session: AsyncSession, directory: DirectoryPort):
		self.session = session
		self.directory = directory

	async def create_assignment(self, data: AssignmentCreate, assigned_by: Optional[str] = None) -> Assignment:
		cycle = await load_cycle(self.session, data.cycle_id)
		if cycle.status in CLOSED_FOR_ASSIGNMENT:
			raise InvalidStateError(f"Cycle {cycle.name} is {cycle.status.value}; assignments are frozen")

		service_id = data.service_id or cycle.service_id
		if service_id != cycle.service_id:
			raise ValidationError(
				f"Cycle {cycle.name} is for service {cycle.service_id}, not {service_id}"
			)

		start, end = resolve_assignment_window(cycle, data.start_date, data.end_date)
		await self._check_staff(data.assigned_to)
		units = await self._resolve_units(data.building_id, data.unit_ids, data.floors)

		cycle_id = cycle.id
		unit_ids = set(units)

		async with keyed_lock("cycle", cycle_id), keyed_lock("assignment", cycle_id, service_id):
			# Completion may have committed since the cycle was loaded
			await self.session.refresh(cycle)
			if cycle.status in CLOSED_FOR_ASSIGNMENT:
				raise InvalidStateError(f"Cycle {cycle.name} is {cycle.status.value}; assignments are frozen")

			taken = await self._claimed_units(cycle_id, service_id, unit_ids)
			if taken:
				assignments_created.labels(outcome="conflict").inc()
				raise ConflictError(
					f"{len(taken)} unit(s) already assigned in this cycle",
					details={"unit_ids": sorted(taken)},
				)

			assignment = Assignment(
				cycle_id=cycle_id,
				service_id=service_id,
				building_id=data.building_id,
				assigned_to=data.assigned_to,
				assigned_by=assigned_by,
				floors=sorted(set(data.floors)) if data.floors else sorted(
					{u.floor for u in units.values() if u.floor is not None}
				),
				start_date=start,
				end_date=end,
				note=data.note,
				units=[
					AssignmentUnit(
						cycle_id=cycle_id,
						service_id=service_id,
						building_id=unit.building_id,
						unit_id=unit_id,
					)
					for unit_id, unit in sorted(units.items())
				],
			)
			self.session.add(assignment)

			if cycle.status == CycleStatus.OPEN:
				cycle.status = CycleStatus.IN_PROGRESS
				logger.info(f"Cycle {cycle.name} moved to IN_PROGRESS")

			try:
				await self.session.commit()
			except IntegrityError as e:
				# A claim committed by another worker between check and insert
				await self.session.rollback()
				assignments_created.labels(outcome="conflict").inc()
				raise ConflictError("Units were assigned concurrently; reload unassigned units") from e

		assignments_created.labels(outcome="created").inc()
		logger.info(
			f"Assignment {assignment.id} created: {len(unit_ids)} units of cycle {cycle_id} "
			f"to staff {data.assigned_to}"
		)
		return assignment

	async def delete_assignment(self, assignment_id: UUID) -> None:
		assignment = await load_assignment(self.session, assignment_id)
		if assignment.completed_at is not None:
			raise InvalidStateError("A completed assignment cannot be deleted")

		has_readings = await self.session.scalar(
			select(MeterReading.id).where(MeterReading.assignment_id == assignment_id).limit(1)
		)
		if has_readings:
			raise InvalidStateError("Assignment already has readings and cannot be deleted")

		await self.session.execute(
			delete(ReadingSession).where(ReadingSession.assignment_id == assignment_id)
		)
		await self.session.delete(assignment)
		await self.session.commit()
		logger.info(f"Assignment {assignment_id} deleted")

	async def complete_assignment(self, assignment_id: UUID) -> Assignment:
		"""Mark done by staff. Gaps are allowed here; the cycle gate enforces coverage."""
		assignment = await load_assignment(self.session, assignment_id)

		async with keyed_lock("cycle", assignment.cycle_id):
			if assignment.completed_at is None:
				assignment.completed_at = datetime.now(timezone.utc)
				await self.session.commit()
				logger.info(f"Assignment {assignment_id} completed by staff {assignment.assigned_to}")
		return assignment

	async def get_assignment(self, assignment_id: UUID) -> Assignment:
		return await load_assignment(self.session, assignment_id)

	async def list_by_cycle(self, cycle_id: UUID) -> List[Assignment]:
		await load_cycle(self.session, cycle_id)
		result = await self.session.execute(
			select(Assignment).where(Assignment.cycle_id == cycle_id).order_by(Assignment.created_at)
		)
		return list(result.scalars().all())

	async def list_by_staff(self, staff_id: str) -> List[Assignment]:
		result = await self.session.execute(
			select(Assignment)
			.where(Assignment.assigned_to == staff_id)
			.order_by(Assignment.created_at.desc())
		)
		return list(result.scalars().all())

	async def list_active_by_staff(self, staff_id: str) -> List[Assignment]:
		result = await self.session.execute(
			select(Assignment)
			.join(ReadingCycle, ReadingCycle.id == Assignment.cycle_id)
			.where(
				Assignment.assigned_to == staff_id,
				Assignment.completed_at.is_(None),
				ReadingCycle.status != CycleStatus.CLOSED,
			)
			.order_by(Assignment.start_date)
		)
		return list(result.scalars().all())

	async def meters_for_assignment(self, assignment_id: UUID) -> List[Meter]:
		assignment = await load_assignment(self.session, assignment_id)
		result = await self.session.execute(
			select(Meter)
			.join(AssignmentUnit, AssignmentUnit.unit_id == Meter.unit_id)
			.where(
				AssignmentUnit.assignment_id == assignment_id,
				Meter.service_id == assignment.service_id,
				Meter.active.is_(True),
			)
			.order_by(Meter.meter_code)
		)
		return list(result.scalars().all())

	async def _check_staff(self, staff_id: str) -> None:
		staff = await self.directory.list_staff_by_role(settings.READER_ROLE)
		if staff_id not in {s.id for s in staff}:
			raise ValidationError(
				f"Staff {staff_id} does not have role {settings.READER_ROLE}"
			)

	async def _resolve_units(
			self,
			building_id: Optional[str],
			unit_ids: Optional[List[str]],
			floors: Optional[List[int]],
	) -> Dict[str, UnitInfo]:
		"""Turn the requested unit ids and floors into the authoritative unit set"""
		resolved: Dict[str, UnitInfo] = {}

		if floors and not building_id:
			raise ValidationError("floors can only be used together with building_id")

		if building_id:
			active_units = {u.id: u for u in await self.directory.list_active_units(building_id)}
			if floors:
				wanted = set(floors)
				for unit in active_units.values():
					if unit.floor in wanted:
						resolved[unit.id] = unit
			for unit_id in unit_ids or []:
				if unit_id not in active_units:
					raise ValidationError(
						f"Unit {unit_id} is not an active unit of building {building_id}"
					)
				resolved[unit_id] = active_units[unit_id]
		else:
			for unit_id in unit_ids or []:
				unit = await self.directory.get_unit(unit_id)
				if not unit.active:
					raise ValidationError(f"Unit {unit.code} is not active")
				resolved[unit_id] = unit

		if not resolved:
			raise ValidationError("The assignment does not cover any active unit")
		return resolved

	async def _claimed_units(self, cycle_id: UUID, service_id: str, unit_ids: Set[str]) -> Set[str]:
		result = await self.session.execute(
			select(AssignmentUnit.unit_id).where(
				AssignmentUnit.cycle_id == cycle_id,
				AssignmentUnit.service_id == service_id,
				AssignmentUnit.unit_id.in_(unit_ids),
			)
		)
		return set(result.scalars().all())
