from datetime import date, datetime
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, ConfigDict, model_validator


class AssignmentCreate(BaseModel):
	cycle_id: UUID
	service_id: Optional[str] = None  # defaults to the cycle's service
	building_id: Optional[str] = None
	assigned_to: str
	unit_ids: Optional[List[str]] = None
	floors: Optional[List[int]] = None
	start_date: Optional[date] = None
	end_date: Optional[date] = None
	note: Optional[str] = None

	@model_validator(mode="after")
	def check_units_or_floors(self):
		if not self.unit_ids and not self.floors:
			raise ValueError("Either unit_ids or floors is required")
		return self


class AssignmentResponse(BaseModel):
	id: UUID
	cycle_id: UUID
	service_id: str
	building_id: Optional[str]
	assigned_to: str
	assigned_by: Optional[str]
	unit_ids: List[str]
	floors: Optional[List[int]] = None
	start_date: date
	end_date: date
	note: Optional[str]
	completed_at: Optional[datetime]
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)
