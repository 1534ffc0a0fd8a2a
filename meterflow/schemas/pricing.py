from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict, model_validator


class PricingTierCreate(BaseModel):
	service_code: str = Field(..., max_length=50)
	tier_order: int = Field(1, ge=1)
	min_quantity: Decimal = Field(Decimal("0"), ge=0)
	max_quantity: Optional[Decimal] = None
	unit_price: Decimal = Field(..., ge=0)
	effective_from: date
	effective_until: Optional[date] = None
	active: bool = True
	description: Optional[str] = None


class PricingTierUpdate(BaseModel):
	tier_order: Optional[int] = Field(None, ge=1)
	min_quantity: Optional[Decimal] = Field(None, ge=0)
	max_quantity: Optional[Decimal] = None
	unit_price: Optional[Decimal] = Field(None, ge=0)
	effective_from: Optional[date] = None
	effective_until: Optional[date] = None
	active: Optional[bool] = None
	description: Optional[str] = None

	@model_validator(mode="after")
	def reject_null_required(self):
		nulled = sorted(
			name for name in ("tier_order", "min_quantity", "unit_price", "effective_from", "active")
			if name in self.model_fields_set and getattr(self, name) is None
		)
		if nulled:
			raise ValueError(f"{', '.join(nulled)} cannot be null")
		return self


class PricingTierResponse(BaseModel):
	id: UUID
	service_code: str
	tier_order: int
	min_quantity: Decimal
	max_quantity: Optional[Decimal]
	unit_price: Decimal
	effective_from: date
	effective_until: Optional[date]
	active: bool
	description: Optional[str]
	created_at: datetime
	updated_at: datetime

	model_config = ConfigDict(from_attributes=True)


class QuantityRange(BaseModel):
	start: Decimal
	end: Optional[Decimal]  # None = unbounded


class TierOverlap(BaseModel):
	# None for a tier that is not saved yet
	tier_a: Optional[UUID]
	tier_b: Optional[UUID]
	tier_a_order: int
	tier_b_order: int
	range: QuantityRange


class TierScheduleReport(BaseModel):
	service_code: str
	gaps: List[QuantityRange]
	overlaps: List[TierOverlap]
	has_unbounded_tier: bool


class PricingTierWriteResponse(BaseModel):
	tier: Optional[PricingTierResponse]
	gaps: List[QuantityRange]
	forced: bool = False
