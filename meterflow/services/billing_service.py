from datetime import date
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from meterflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from meterflow.models.billing import BillingCycle
from meterflow.models.cycle import ReadingCycle
from meterflow.schemas.billing import BillingCycleCreate

logger = logging.getLogger(__name__)

BILLING_STATUSES = ("ACTIVE", "CLOSED", "CANCELLED")


class BillingService:
	"""Keeps one billing cycle per reading cycle"""

	def __init__(self, session: AsyncSession):
		self.session = session

	async def load_missing_reading_cycles(self) -> List[ReadingCycle]:
		"""Reading cycles that no billing cycle points back to"""
		linked = select(BillingCycle.external_cycle_id).where(BillingCycle.external_cycle_id.is_not(None))
		result = await self.session.execute(
			select(ReadingCycle)
			.where(ReadingCycle.id.not_in(linked))
			.order_by(ReadingCycle.period_from)
		)
		return list(result.scalars().all())

	async def sync_missing_billing_cycles(self) -> List[BillingCycle]:
		"""Create the billing cycles that are missing. Running it twice creates nothing new."""
		created: List[BillingCycle] = []
		for cycle in await self.load_missing_reading_cycles():
			billing = self._from_reading_cycle(cycle)
			self.session.add(billing)
			created.append(billing)

		if created:
			try:
				await self.session.commit()
			except IntegrityError as e:
				await self.session.rollback()
				raise ConflictError("Billing cycles were synchronized concurrently; retry") from e
			logger.info(f"Created {len(created)} missing billing cycles")
		return created

	async def ensure_for_cycle(self, cycle: ReadingCycle) -> BillingCycle:
		"""Billing cycle of a reading cycle, added to the session when absent (not committed)"""
		result = await self.session.execute(
			select(BillingCycle).where(BillingCycle.external_cycle_id == cycle.id)
		)
		billing = result.scalar_one_or_none()
		if billing is None:
			billing = self._from_reading_cycle(cycle)
			self.session.add(billing)
			await self.session.flush()
			logger.info(f"Billing cycle created for reading cycle {cycle.name}")
		return billing

	async def list_by_range(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> List[BillingCycle]:
		"""Billing cycles whose period overlaps [start_date, end_date)"""
		query = select(BillingCycle)
		if start_date:
			query = query.where(BillingCycle.period_to > start_date)
		if end_date:
			query = query.where(BillingCycle.period_from < end_date)
		result = await self.session.execute(query.order_by(BillingCycle.period_from))
		return list(result.scalars().all())

	async def list_by_year(self, year: int) -> List[BillingCycle]:
		return await self.list_by_range(date(year, 1, 1), date(year + 1, 1, 1))

	async def create(self, data: BillingCycleCreate) -> BillingCycle:
		self._check_status(data.status)
		billing = BillingCycle(**data.model_dump())
		self.session.add(billing)
		try:
			await self.session.commit()
		except IntegrityError as e:
			await self.session.rollback()
			raise ConflictError(
				f"Reading cycle {data.external_cycle_id} already has a billing cycle"
			) from e
		return billing

	async def update_status(self, billing_cycle_id: UUID, status: str) -> BillingCycle:
		self._check_status(status)
		billing = await self.session.get(BillingCycle, billing_cycle_id)
		if not billing:
			raise NotFoundError(f"Billing cycle {billing_cycle_id} not found")
		billing.status = status
		await self.session.commit()
		logger.info(f"Billing cycle {billing.name} set to {status}")
		return billing

	@staticmethod
	def _check_status(status: str) -> None:
		if status not in BILLING_STATUSES:
			raise ValidationError(
				f"Unknown billing cycle status {status}",
				details={"allowed": list(BILLING_STATUSES)},
			)

	@staticmethod
	def _from_reading_cycle(cycle: ReadingCycle) -> BillingCycle:
		return BillingCycle(
			name=cycle.name,
			external_cycle_id=cycle.id,
			service_id=cycle.service_id,
			period_from=cycle.period_from,
			period_to=cycle.period_to,
			status="ACTIVE",
		)
