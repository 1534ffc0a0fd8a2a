from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from meterflow.config import settings
from meterflow.core.exceptions import AppError, InvalidStateError, NotFoundError, ValidationError
from meterflow.directory import DirectoryPort
from meterflow.models.assignment import Assignment
from meterflow.models.cycle import CycleStatus
from meterflow.models.meter import Meter
from meterflow.models.reading import MeterReading
from meterflow.models.session import ReadingSession
from meterflow.monitoring.metrics import readings_submitted
from meterflow.schemas.reading import BulkItemError, BulkReadingRequest, BulkReadingResponse
from meterflow.services.common import assignment_unit_ids, load_assignment, load_cycle
from meterflow.services.meter_service import MeterService

logger = logging.getLogger(__name__)

READ_ONLY_CYCLE_STATES = (CycleStatus.COMPLETED, CycleStatus.CLOSED)


class ReadingService:
	"""Idempotent reading upserts keyed by (meter, assignment)"""

	def __init__(self, session: AsyncSession, directory: DirectoryPort):
		self.session = session
		self.directory = directory
		self.meters = MeterService(session, directory)

	async def submit_reading(
			self,
			assignment_id: UUID,
			meter_id: UUID,
			reading_date: date,
			current_index: Decimal,
			note: Optional[str] = None,
			session_id: Optional[UUID] = None,
			created_by: Optional[str] = None,
	) -> Tuple[MeterReading, str]:
		"""Insert or update the reading of a meter for an assignment.

		Returns the row and the outcome: ``created``, ``updated`` or
		``unchanged`` (same values submitted again).
		"""
		assignment = await self._open_assignment(assignment_id)

		meter = await self.session.get(Meter, meter_id)
		if not meter:
			raise NotFoundError(f"Meter {meter_id} not found")
		await self._check_meter_belongs(assignment, meter)
		if current_index < 0:
			raise ValidationError("current_index must not be negative")

		existing = await self._find(meter_id, assignment_id)
		if existing:
			outcome = self._apply_update(existing, reading_date, current_index, note)
		else:
			existing, outcome = await self._insert(assignment, meter, reading_date, current_index, note, session_id, created_by)
			meter = await self.session.get(Meter, meter_id)

		if outcome != "unchanged":
			self._refresh_meter_cache(meter, reading_date, current_index)
			await self.session.commit()

		if existing.current_index < existing.prev_index:
			logger.warning(
				f"Reading for meter {meter.meter_code} went backwards: "
				f"{existing.prev_index} -> {existing.current_index}"
			)

		readings_submitted.labels(outcome=outcome).inc()
		return existing, outcome

	async def submit_reading_for_unit(
			self,
			assignment_id: UUID,
			unit_id: str,
			reading_date: date,
			current_index: Decimal,
			note: Optional[str] = None,
			session_id: Optional[UUID] = None,
			created_by: Optional[str] = None,
	) -> Tuple[MeterReading, str]:
		"""Reading for a unit that may not have a meter yet; one is provisioned on demand"""
		assignment = await self._open_assignment(assignment_id)
		service_id = assignment.service_id

		if unit_id not in await assignment_unit_ids(self.session, assignment_id):
			raise ValidationError(f"Unit {unit_id} is not part of assignment {assignment_id}")

		meter, _ = await self.meters.find_or_create(unit_id, service_id)
		return await self.submit_reading(
			assignment_id,
			meter.id,
			reading_date,
			current_index,
			note=note,
			session_id=session_id,
			created_by=created_by,
		)

	async def submit_bulk(self, request: BulkReadingRequest, created_by: Optional[str] = None) -> BulkReadingResponse:
		"""Fan out a form submission into independent upserts.

		Each item commits on its own; a failing item is recorded and the
		rest of the batch carries on.
		"""
		if len(request.items) > settings.BULK_MAX_ITEMS:
			raise ValidationError(f"A batch may hold at most {settings.BULK_MAX_ITEMS} readings")

		succeeded = 0
		skipped = 0
		errors: List[BulkItemError] = []

		for index, item in enumerate(request.items):
			if item.loaded_index is not None and item.current_index == item.loaded_index:
				skipped += 1
				readings_submitted.labels(outcome="skipped").inc()
				continue

			try:
				if item.meter_id is not None:
					await self.submit_reading(
						request.assignment_id,
						item.meter_id,
						request.reading_date,
						item.current_index,
						note=item.note,
						session_id=request.session_id,
						created_by=created_by,
					)
				else:
					await self.submit_reading_for_unit(
						request.assignment_id,
						item.unit_id,
						request.reading_date,
						item.current_index,
						note=item.note,
						session_id=request.session_id,
						created_by=created_by,
					)
				succeeded += 1
			except (AppError, SQLAlchemyError) as e:
				await self.session.rollback()
				message = e.message if isinstance(e, AppError) else "Database error while saving the reading"
				logger.error(f"Bulk reading item {index} failed: {e}")
				readings_submitted.labels(outcome="failed").inc()
				errors.append(BulkItemError(
					index=index,
					meter_id=item.meter_id,
					unit_id=item.unit_id,
					error=message,
				))

		logger.info(
			f"Bulk submission for assignment {request.assignment_id}: "
			f"{succeeded} succeeded, {len(errors)} failed, {skipped} skipped"
		)
		return BulkReadingResponse(succeeded=succeeded, failed=len(errors), skipped=skipped, errors=errors)

	async def list_readings(
			self,
			cycle_id: UUID,
			unit_id: Optional[str] = None,
			assignment_id: Optional[UUID] = None,
	) -> List[MeterReading]:
		query = select(MeterReading).where(MeterReading.cycle_id == cycle_id)
		if unit_id:
			query = query.where(MeterReading.unit_id == unit_id)
		if assignment_id:
			query = query.where(MeterReading.assignment_id == assignment_id)
		result = await self.session.execute(query.order_by(MeterReading.unit_id, MeterReading.created_at))
		return list(result.scalars().all())

	async def list_by_assignment(self, assignment_id: UUID) -> List[MeterReading]:
		await load_assignment(self.session, assignment_id)
		result = await self.session.execute(
			select(MeterReading)
			.where(MeterReading.assignment_id == assignment_id)
			.order_by(MeterReading.unit_id)
		)
		return list(result.scalars().all())

	async def _open_assignment(self, assignment_id: UUID) -> Assignment:
		assignment = await load_assignment(self.session, assignment_id)
		cycle = await load_cycle(self.session, assignment.cycle_id)
		if cycle.status in READ_ONLY_CYCLE_STATES:
			raise InvalidStateError(f"Cycle {cycle.name} is {cycle.status.value}; readings are frozen")
		return assignment

	async def _check_meter_belongs(self, assignment: Assignment, meter: Meter) -> None:
		if meter.service_id != assignment.service_id:
			raise ValidationError(
				f"Meter {meter.meter_code} measures service {meter.service_id}, "
				f"assignment is for {assignment.service_id}"
			)
		if meter.unit_id not in await assignment_unit_ids(self.session, assignment.id):
			raise ValidationError(f"Meter {meter.meter_code} is not in assignment {assignment.id}")
		if not meter.active:
			raise ValidationError(f"Meter {meter.meter_code} is inactive")

	async def _find(self, meter_id: UUID, assignment_id: UUID) -> Optional[MeterReading]:
		result = await self.session.execute(
			select(MeterReading).where(
				MeterReading.meter_id == meter_id,
				MeterReading.assignment_id == assignment_id,
			)
		)
		return result.scalar_one_or_none()

	@staticmethod
	def _apply_update(reading: MeterReading, reading_date: date, current_index: Decimal, note: Optional[str]) -> str:
		if (
				Decimal(reading.current_index) == Decimal(current_index)
				and reading.reading_date == reading_date
				and reading.note == note
		):
			return "unchanged"
		reading.current_index = current_index
		reading.reading_date = reading_date
		reading.note = note
		return "updated"

	async def _insert(
			self,
			assignment: Assignment,
			meter: Meter,
			reading_date: date,
			current_index: Decimal,
			note: Optional[str],
			session_id: Optional[UUID],
			created_by: Optional[str],
	) -> Tuple[MeterReading, str]:
		# Captured before anything below can expire the objects
		meter_id = meter.id
		assignment_id = assignment.id

		if session_id is not None:
			await self._count_in_session(session_id, assignment_id)

		reading = MeterReading(
			meter_id=meter_id,
			assignment_id=assignment_id,
			cycle_id=assignment.cycle_id,
			unit_id=meter.unit_id,
			session_id=session_id,
			reading_date=reading_date,
			current_index=current_index,
			prev_index=meter.last_reading if meter.last_reading is not None else Decimal("0"),
			note=note,
			created_by=created_by,
		)
		self.session.add(reading)
		try:
			await self.session.flush()
		except IntegrityError:
			# Lost an insert race on (meter_id, assignment_id): the row exists now
			await self.session.rollback()
			existing = await self._find(meter_id, assignment_id)
			if existing is None:
				raise
			return existing, self._apply_update(existing, reading_date, current_index, note)
		return reading, "created"

	async def _count_in_session(self, session_id: UUID, assignment_id: UUID) -> None:
		reading_session = await self.session.get(ReadingSession, session_id)
		if not reading_session or reading_session.assignment_id != assignment_id:
			raise ValidationError(f"Reading session {session_id} does not belong to assignment {assignment_id}")
		if reading_session.completed_at is not None:
			raise InvalidStateError(f"Reading session {session_id} is already completed")
		reading_session.units_read += 1

	@staticmethod
	def _refresh_meter_cache(meter: Meter, reading_date: date, current_index: Decimal) -> None:
		if meter.last_reading_date is None or reading_date >= meter.last_reading_date:
			meter.last_reading = current_index
			meter.last_reading_date = reading_date
