from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from meterflow.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from meterflow.models.cycle import CycleStatus
from meterflow.models.session import ReadingSession
from meterflow.services.common import load_assignment, load_cycle

logger = logging.getLogger(__name__)


class SessionService:
	def __init__(self, session: AsyncSession):
		self.session = session

	async def start_session(self, assignment_id: UUID, reader_id: str, device_info: Optional[str] = None) -> ReadingSession:
		assignment = await load_assignment(self.session, assignment_id)
		if assignment.assigned_to != reader_id:
			raise ValidationError(f"Assignment {assignment_id} belongs to another staff member")
		if assignment.completed_at is not None:
			raise InvalidStateError(f"Assignment {assignment_id} is already completed")

		cycle = await load_cycle(self.session, assignment.cycle_id)
		if cycle.status in (CycleStatus.COMPLETED, CycleStatus.CLOSED):
			raise InvalidStateError(f"Cycle {cycle.name} is {cycle.status.value}")

		reading_session = ReadingSession(
			assignment_id=assignment.id,
			cycle_id=assignment.cycle_id,
			building_id=assignment.building_id,
			service_id=assignment.service_id,
			reader_id=reader_id,
			device_info=device_info,
			units_read=0,
		)
		self.session.add(reading_session)
		await self.session.commit()
		logger.info(f"Reading session {reading_session.id} started by {reader_id}")
		return reading_session

	async def complete_session(self, session_id: UUID) -> ReadingSession:
		reading_session = await self.get_session(session_id)
		if reading_session.completed_at is None:
			reading_session.completed_at = datetime.now(timezone.utc)
			await self.session.commit()
			logger.info(f"Reading session {session_id} completed, {reading_session.units_read} units read")
		return reading_session

	async def get_session(self, session_id: UUID) -> ReadingSession:
		reading_session = await self.session.get(ReadingSession, session_id)
		if not reading_session:
			raise NotFoundError(f"Reading session {session_id} not found")
		return reading_session

	async def list_by_assignment(self, assignment_id: UUID) -> List[ReadingSession]:
		result = await self.session.execute(
			select(ReadingSession)
			.where(ReadingSession.assignment_id == assignment_id)
			.order_by(ReadingSession.started_at.desc())
		)
		return list(result.scalars().all())

	async def list_by_reader(self, reader_id: str) -> List[ReadingSession]:
		result = await self.session.execute(
			select(ReadingSession)
			.where(ReadingSession.reader_id == reader_id)
			.order_by(ReadingSession.started_at.desc())
		)
		return list(result.scalars().all())

	async def active_session(self, reader_id: str) -> Optional[ReadingSession]:
		"""Most recent session of the reader that is still open"""
		result = await self.session.execute(
			select(ReadingSession)
			.where(
				ReadingSession.reader_id == reader_id,
				ReadingSession.completed_at.is_(None),
			)
			.order_by(ReadingSession.started_at.desc())
			.limit(1)
		)
		return result.scalar_one_or_none()
