from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict, model_validator


class BillingCycleCreate(BaseModel):
	name: str = Field(..., max_length=255)
	period_from: date
	period_to: date
	status: str = "ACTIVE"
	service_id: Optional[str] = None
	external_cycle_id: Optional[UUID] = None

	@model_validator(mode="after")
	def check_period(self):
		if self.period_to <= self.period_from:
			raise ValueError("period_to must be after period_from")
		return self


class BillingCycleResponse(BaseModel):
	id: UUID
	name: str
	external_cycle_id: Optional[UUID]
	service_id: Optional[str]
	period_from: date
	period_to: date
	status: str
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)
