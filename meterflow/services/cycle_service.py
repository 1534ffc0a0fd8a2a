from datetime import date
from typing import List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from meterflow.core.exceptions import AppError, InvalidStateError, NotReadyError, ValidationError
from meterflow.core.locks import keyed_lock
from meterflow.directory import DirectoryPort
from meterflow.models.cycle import CYCLE_STATUS_ORDER, CycleStatus, ExportStatus, ReadingCycle
from meterflow.monitoring.metrics import cycle_completions, invoice_exports
from meterflow.schemas.cycle import (
	CycleCompletionResponse,
	InvoiceExportResult,
	ReadingCycleCreate,
	ReadingCycleResponse,
	ReadingCycleUpdate,
)
from meterflow.services.common import load_cycle
from meterflow.services.invoice_service import InvoiceService
from meterflow.services.progress_service import ProgressService

logger = logging.getLogger(__name__)

COMPLETABLE_STATES = (CycleStatus.OPEN, CycleStatus.IN_PROGRESS)


class CycleService:
	"""Reading cycle lifecycle: OPEN -> IN_PROGRESS -> COMPLETED -> CLOSED"""

	def __init__(self, session: AsyncSession, directory: DirectoryPort):
		self.session = session
		self.directory = directory

	async def create_cycle(self, data: ReadingCycleCreate, created_by: Optional[str] = None) -> ReadingCycle:
		service = await self.directory.get_service(data.service_id)

		cycle = ReadingCycle(
			**data.model_dump(),
			status=CycleStatus.OPEN,
			export_status=ExportStatus.NOT_EXPORTED,
			created_by=created_by,
		)
		self.session.add(cycle)
		await self.session.commit()
		logger.info(f"Reading cycle {cycle.name} created for service {service.code}")
		return cycle

	async def update_cycle(self, cycle_id: UUID, data: ReadingCycleUpdate) -> ReadingCycle:
		cycle = await load_cycle(self.session, cycle_id)
		if cycle.status != CycleStatus.OPEN:
			raise InvalidStateError(f"Cycle {cycle.name} is {cycle.status.value}; only OPEN cycles can be edited")

		changes = data.model_dump(exclude_unset=True)
		period_from = changes.get("period_from", cycle.period_from)
		period_to = changes.get("period_to", cycle.period_to)
		if period_to <= period_from:
			raise ValidationError("period_to must be after period_from")

		for field, value in changes.items():
			setattr(cycle, field, value)
		await self.session.commit()
		return cycle

	async def get_cycle(self, cycle_id: UUID) -> ReadingCycle:
		return await load_cycle(self.session, cycle_id)

	async def list_cycles(
			self,
			status: Optional[CycleStatus] = None,
			period_from: Optional[date] = None,
			period_to: Optional[date] = None,
	) -> List[ReadingCycle]:
		"""Optionally filtered by status and by overlap with [period_from, period_to)"""
		query = select(ReadingCycle)
		if status:
			query = query.where(ReadingCycle.status == status)
		if period_from:
			query = query.where(ReadingCycle.period_to > period_from)
		if period_to:
			query = query.where(ReadingCycle.period_from < period_to)
		result = await self.session.execute(query.order_by(ReadingCycle.period_from.desc()))
		return list(result.scalars().all())

	async def change_status(self, cycle_id: UUID, target: CycleStatus) -> ReadingCycle:
		"""Operator override. Forward moves only; completion is not re-checked."""
		async with keyed_lock("cycle", cycle_id):
			cycle = await load_cycle(self.session, cycle_id)
			current = cycle.status
			if CYCLE_STATUS_ORDER.index(target) <= CYCLE_STATUS_ORDER.index(current):
				raise InvalidStateError(
					f"Cannot move cycle from {current.value} to {target.value}",
					details={"current": current.value, "target": target.value},
				)
			cycle.status = target
			await self.session.commit()

		logger.info(f"Cycle {cycle.name} moved {current.value} -> {target.value} by override")
		return cycle

	async def complete_cycle(self, cycle_id: UUID) -> CycleCompletionResponse:
		"""Gate on coverage, mark COMPLETED, then export invoices.

		A failed export leaves the cycle COMPLETED with export_status
		EXPORT_FAILED so it can be retried.
		"""
		progress = ProgressService(self.session, self.directory)

		async with keyed_lock("cycle", cycle_id):
			cycle = await load_cycle(self.session, cycle_id)

			if not await progress.all_assignments_completed(cycle_id):
				cycle_completions.labels(outcome="not_ready").inc()
				raise NotReadyError(f"Cycle {cycle.name} still has assignments that are not completed")

			unassigned = await progress.get_cycle_unassigned_info(cycle_id)
			if unassigned.total_unassigned:
				cycle_completions.labels(outcome="not_ready").inc()
				raise NotReadyError(
					unassigned.message,
					details={"unassigned": unassigned.model_dump(mode="json", include={"total_unassigned", "floors"})},
				)

			if cycle.status not in COMPLETABLE_STATES:
				raise InvalidStateError(f"Cycle {cycle.name} is already {cycle.status.value}")

			cycle.status = CycleStatus.COMPLETED
			await self.session.commit()

		cycle_completions.labels(outcome="completed").inc()
		logger.info(f"Cycle {cycle.name} completed")

		export, export_error = await self._export_capturing(cycle_id)
		cycle = await load_cycle(self.session, cycle_id)
		return CycleCompletionResponse(
			cycle=ReadingCycleResponse.model_validate(cycle),
			export=export,
			export_error=export_error,
		)

	async def export_cycle(self, cycle_id: UUID) -> InvoiceExportResult:
		"""Explicit (re-)export. Failures are recorded on the cycle and re-raised."""
		try:
			return await InvoiceService(self.session, self.directory).export_invoices(cycle_id)
		except (AppError, SQLAlchemyError) as e:
			await self._record_export_failure(cycle_id, e)
			raise

	async def retry_failed_exports(self) -> Tuple[int, int]:
		"""Re-run the export of every completed cycle whose export failed; returns (ok, failed)"""
		result = await self.session.execute(
			select(ReadingCycle.id).where(
				ReadingCycle.status == CycleStatus.COMPLETED,
				ReadingCycle.export_status == ExportStatus.EXPORT_FAILED,
			)
		)
		cycle_ids = list(result.scalars().all())

		ok = 0
		for cycle_id in cycle_ids:
			export, _ = await self._export_capturing(cycle_id)
			if export is not None:
				ok += 1
		if cycle_ids:
			logger.info(f"Export retry: {ok} succeeded, {len(cycle_ids) - ok} still failing")
		return ok, len(cycle_ids) - ok

	async def _export_capturing(self, cycle_id: UUID) -> Tuple[Optional[InvoiceExportResult], Optional[str]]:
		try:
			return await InvoiceService(self.session, self.directory).export_invoices(cycle_id), None
		except (AppError, SQLAlchemyError) as e:
			message = await self._record_export_failure(cycle_id, e)
			return None, message

	async def _record_export_failure(self, cycle_id: UUID, error: Exception) -> str:
		await self.session.rollback()
		message = error.message if isinstance(error, AppError) else str(error)

		cycle = await load_cycle(self.session, cycle_id)
		# An export refused for a non-completed cycle is not a failed export
		if cycle.status == CycleStatus.COMPLETED:
			cycle.export_status = ExportStatus.EXPORT_FAILED
			cycle.export_error = message[:2000]
			await self.session.commit()

		invoice_exports.labels(outcome="failed").inc()
		logger.error(f"Invoice export for cycle {cycle_id} failed: {message}")
		return message
