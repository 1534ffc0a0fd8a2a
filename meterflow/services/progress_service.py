from collections import defaultdict
from typing import Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from meterflow.directory import DirectoryPort
from meterflow.models.assignment import Assignment, AssignmentUnit
from meterflow.models.meter import Meter
from meterflow.models.reading import MeterReading
from meterflow.schemas.cycle import (
	AssignmentProgress,
	CycleProgress,
	CycleUnassignedInfo,
	MissingMeterUnit,
	UnassignedFloor,
)
from meterflow.services.common import assignment_unit_ids, load_assignment, load_cycle

logger = logging.getLogger(__name__)


def progress_percentage(done: int, total: int) -> int:
	return round(done / max(total, 1) * 100)


class ProgressService:
	"""Completion figures for assignments and cycles.

	``completed`` (staff marked the assignment done) and ``is_fully_read``
	(every unit has a reading) are reported side by side and never merged.
	"""

	def __init__(self, session: AsyncSession, directory: DirectoryPort):
		self.session = session
		self.directory = directory

	async def get_assignment_progress(self, assignment_id: UUID) -> AssignmentProgress:
		assignment = await load_assignment(self.session, assignment_id)
		return await self._progress_for(assignment)

	async def _progress_for(self, assignment: Assignment) -> AssignmentProgress:
		unit_ids = await assignment_unit_ids(self.session, assignment.id)
		total = len(unit_ids)

		done = 0
		if unit_ids:
			done = await self.session.scalar(
				select(func.count(func.distinct(MeterReading.unit_id))).where(
					MeterReading.assignment_id == assignment.id,
					MeterReading.unit_id.in_(unit_ids),
				)
			) or 0

		return AssignmentProgress(
			assignment_id=assignment.id,
			total_meters=total,
			readings_done=done,
			remaining_meters=total - done,
			progress_percentage=progress_percentage(done, total),
			is_fully_read=total > 0 and done == total,
			completed=assignment.completed_at is not None,
		)

	async def all_assignments_completed(self, cycle_id: UUID) -> bool:
		pending = await self.session.scalar(
			select(func.count()).select_from(Assignment).where(
				Assignment.cycle_id == cycle_id,
				Assignment.completed_at.is_(None),
			)
		)
		return not pending

	async def get_cycle_progress(self, cycle_id: UUID) -> CycleProgress:
		await load_cycle(self.session, cycle_id)
		result = await self.session.execute(
			select(Assignment).where(Assignment.cycle_id == cycle_id).order_by(Assignment.created_at)
		)
		assignments = list(result.scalars().all())

		items = [await self._progress_for(a) for a in assignments]
		total = sum(p.total_meters for p in items)
		done = sum(p.readings_done for p in items)
		all_completed = all(p.completed for p in items)
		unassigned = await self.get_cycle_unassigned_info(cycle_id)

		return CycleProgress(
			cycle_id=cycle_id,
			total_assignments=len(items),
			completed_assignments=sum(1 for p in items if p.completed),
			total_meters=total,
			readings_done=done,
			progress_percentage=progress_percentage(done, total),
			all_assignments_completed=all_completed,
			total_unassigned=unassigned.total_unassigned,
			can_complete=all_completed and unassigned.total_unassigned == 0,
			assignments=items,
		)

	async def get_cycle_unassigned_info(self, cycle_id: UUID) -> CycleUnassignedInfo:
		"""Active units of the portfolio not covered by any assignment of the cycle"""
		cycle = await load_cycle(self.session, cycle_id)
		service_id = cycle.service_id

		claimed_result = await self.session.execute(
			select(AssignmentUnit.unit_id).where(
				AssignmentUnit.cycle_id == cycle.id,
				AssignmentUnit.service_id == service_id,
			)
		)
		claimed = set(claimed_result.scalars().all())

		metered_result = await self.session.execute(
			select(Meter.unit_id).where(Meter.service_id == service_id, Meter.active.is_(True))
		)
		metered = set(metered_result.scalars().all())

		floors: List[UnassignedFloor] = []
		missing_meter_units: List[MissingMeterUnit] = []
		buildings_with_gaps = 0

		buildings = sorted(await self.directory.list_buildings(), key=lambda b: b.code)
		for building in buildings:
			units = await self.directory.list_active_units(building.id)

			by_floor: Dict[Optional[int], List[str]] = defaultdict(list)
			for unit in units:
				if unit.id not in claimed:
					by_floor[unit.floor].append(unit.code)
				if unit.id not in metered:
					missing_meter_units.append(MissingMeterUnit(
						unit_id=unit.id,
						unit_code=unit.code,
						building_id=building.id,
						floor=unit.floor,
					))

			if by_floor:
				buildings_with_gaps += 1
			for floor in sorted(by_floor, key=lambda f: (f is None, f or 0)):
				floors.append(UnassignedFloor(
					building_id=building.id,
					building_code=building.code,
					building_name=building.name,
					floor=floor,
					unit_codes=sorted(by_floor[floor]),
				))

		total_unassigned = sum(len(f.unit_codes) for f in floors)
		if total_unassigned:
			message = (
				f"{total_unassigned} unit(s) in {buildings_with_gaps} building(s) "
				f"are not assigned for cycle {cycle.name}"
			)
		else:
			message = f"All active units are assigned for cycle {cycle.name}"

		return CycleUnassignedInfo(
			cycle_id=cycle.id,
			service_id=service_id,
			total_unassigned=total_unassigned,
			floors=floors,
			missing_meter_units=missing_meter_units,
			message=message,
		)
