"""Entity loaders shared by the services."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from meterflow.core.exceptions import NotFoundError
from meterflow.models.assignment import Assignment, AssignmentUnit
from meterflow.models.cycle import ReadingCycle


async def load_cycle(session: AsyncSession, cycle_id: UUID) -> ReadingCycle:
	cycle = await session.get(ReadingCycle, cycle_id)
	if not cycle:
		raise NotFoundError(f"Reading cycle {cycle_id} not found")
	return cycle


async def load_assignment(session: AsyncSession, assignment_id: UUID) -> Assignment:
	assignment = await session.get(Assignment, assignment_id)
	if not assignment:
		raise NotFoundError(f"Assignment {assignment_id} not found")
	return assignment


async def assignment_unit_ids(session: AsyncSession, assignment_id: UUID) -> set[str]:
	"""Unit ids claimed by an assignment, read straight from the claim table"""
	result = await session.execute(
		select(AssignmentUnit.unit_id).where(AssignmentUnit.assignment_id == assignment_id)
	)
	return set(result.scalars().all())
