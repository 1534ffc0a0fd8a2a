from dataclasses import replace
from datetime import date
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from meterflow.core.exceptions import GapWarning, NotFoundError, ValidationError
from meterflow.core.locks import keyed_lock
from meterflow.models.pricing import PricingTier
from meterflow.schemas.pricing import (
	PricingTierCreate,
	PricingTierResponse,
	PricingTierUpdate,
	PricingTierWriteResponse,
	QuantityRange,
	TierScheduleReport,
)
from meterflow.services.pricing_validator import (
	TierBand,
	currently_active,
	detect_gaps,
	detect_overlaps,
	has_infinite_gap,
	schedule_report,
)

logger = logging.getLogger(__name__)


def check_tier_bounds(band: TierBand) -> None:
	if band.min_quantity < 0:
		raise ValidationError("min_quantity must not be negative")
	if band.max_quantity is not None and band.max_quantity < band.min_quantity:
		raise ValidationError(
			"max_quantity must not be below min_quantity",
			details={"min_quantity": str(band.min_quantity), "max_quantity": str(band.max_quantity)},
		)
	if band.unit_price < 0:
		raise ValidationError("unit_price must not be negative")
	if band.effective_until is not None and band.effective_from is not None and band.effective_until < band.effective_from:
		raise ValidationError("effective_until must not be before effective_from")


class PricingService:
	"""Tier CRUD guarded by the coverage checks"""

	def __init__(self, session: AsyncSession):
		self.session = session

	async def list_by_service(self, service_code: str) -> List[PricingTier]:
		result = await self.session.execute(
			select(PricingTier)
			.where(PricingTier.service_code == service_code)
			.order_by(PricingTier.tier_order, PricingTier.min_quantity)
			# Writers re-check under the pricing lock and need rows as committed
			.execution_options(populate_existing=True)
		)
		return list(result.scalars().all())

	async def active_tiers(self, service_code: str, today: Optional[date] = None) -> List[PricingTier]:
		return currently_active(await self.list_by_service(service_code), today)

	async def validation_report(self, service_code: str) -> TierScheduleReport:
		return schedule_report(service_code, await self.active_tiers(service_code))

	async def create_tier(self, data: PricingTierCreate, force: bool = False) -> PricingTierWriteResponse:
		band = TierBand(id=None, **data.model_dump(exclude={"service_code", "description"}))
		check_tier_bounds(band)

		async with keyed_lock("pricing", data.service_code):
			before = [TierBand.of(t) for t in await self.list_by_service(data.service_code)]
			gaps, forced = self._guard(before, before + [band], force)

			tier = PricingTier(**data.model_dump())
			self.session.add(tier)
			await self.session.commit()
		logger.info(f"Pricing tier {tier.tier_order} created for {tier.service_code}")
		return self._write_response(tier, gaps, forced)

	async def update_tier(self, tier_id: UUID, data: PricingTierUpdate, force: bool = False) -> PricingTierWriteResponse:
		tier = await self._get(tier_id)
		changes = data.model_dump(exclude_unset=True)

		async with keyed_lock("pricing", tier.service_code):
			before = [TierBand.of(t) for t in await self.list_by_service(tier.service_code)]
			current = next((b for b in before if b.id == tier_id), None)
			if current is None:
				raise NotFoundError(f"Pricing tier {tier_id} not found")
			band = replace(current, **{k: v for k, v in changes.items() if hasattr(current, k)})
			check_tier_bounds(band)

			after = [band if b.id == tier_id else b for b in before]
			gaps, forced = self._guard(before, after, force)

			for field, value in changes.items():
				setattr(tier, field, value)
			await self.session.commit()
		logger.info(f"Pricing tier {tier.tier_order} of {tier.service_code} updated")
		return self._write_response(tier, gaps, forced)

	async def delete_tier(self, tier_id: UUID, force: bool = False) -> PricingTierWriteResponse:
		tier = await self._get(tier_id)
		service_code = tier.service_code

		async with keyed_lock("pricing", service_code):
			before = [TierBand.of(t) for t in await self.list_by_service(service_code)]
			if not any(b.id == tier_id for b in before):
				raise NotFoundError(f"Pricing tier {tier_id} not found")
			after = [b for b in before if b.id != tier_id]
			gaps, forced = self._guard(before, after, force)

			await self.session.delete(tier)
			await self.session.commit()
		logger.info(f"Pricing tier {tier_id} of {service_code} deleted")
		return PricingTierWriteResponse(tier=None, gaps=gaps, forced=forced)

	def _guard(self, before: List[TierBand], after: List[TierBand], force: bool) -> tuple[List[QuantityRange], bool]:
		"""Re-run the coverage checks on the tier set as it would be after the write.

		Overlaps always reject. A newly missing unbounded top tier rejects
		unless forced. Finite gaps are only reported.
		"""
		active_after = currently_active(after)
		overlaps = detect_overlaps(active_after)
		if overlaps:
			raise ValidationError(
				"Tier quantity ranges overlap",
				details={"overlaps": [o.model_dump(mode="json") for o in overlaps]},
			)

		gaps = detect_gaps(active_after)
		introduced = has_infinite_gap(gaps) and not has_infinite_gap(detect_gaps(currently_active(before)))
		if introduced and not force:
			raise GapWarning(
				"No unbounded top tier would remain; repeat with force=true to save anyway",
				details={"kind": "gap", "gaps": [g.model_dump(mode="json") for g in gaps]},
			)
		if introduced:
			logger.warning("Pricing tier write forced despite a missing unbounded top tier")
		return gaps, introduced

	async def _get(self, tier_id: UUID) -> PricingTier:
		tier = await self.session.get(PricingTier, tier_id)
		if not tier:
			raise NotFoundError(f"Pricing tier {tier_id} not found")
		return tier

	@staticmethod
	def _write_response(tier: PricingTier, gaps: List[QuantityRange], forced: bool) -> PricingTierWriteResponse:
		return PricingTierWriteResponse(
			tier=PricingTierResponse.model_validate(tier),
			gaps=gaps,
			forced=forced,
		)
