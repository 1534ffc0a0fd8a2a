from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict, model_validator


class ReadingCreate(BaseModel):
	assignment_id: UUID
	meter_id: UUID
	reading_date: date
	current_index: Decimal = Field(..., ge=0)
	note: Optional[str] = None
	session_id: Optional[UUID] = None


class UnitReadingCreate(BaseModel):
	assignment_id: UUID
	unit_id: str
	reading_date: date
	current_index: Decimal = Field(..., ge=0)
	note: Optional[str] = None
	session_id: Optional[UUID] = None


class BulkReadingItem(BaseModel):
	"""One value of a bulk form. Exactly one of meter_id / unit_id is set.

	loaded_index is the value shown when the form was opened; an item whose
	current_index still equals it is skipped.
	"""

	meter_id: Optional[UUID] = None
	unit_id: Optional[str] = None
	current_index: Decimal = Field(..., ge=0)
	loaded_index: Optional[Decimal] = None
	note: Optional[str] = None

	@model_validator(mode="after")
	def check_target(self):
		if (self.meter_id is None) == (self.unit_id is None):
			raise ValueError("Exactly one of meter_id or unit_id is required")
		return self


class BulkReadingRequest(BaseModel):
	assignment_id: UUID
	reading_date: date
	session_id: Optional[UUID] = None
	items: List[BulkReadingItem]


class BulkItemError(BaseModel):
	index: int
	meter_id: Optional[UUID] = None
	unit_id: Optional[str] = None
	error: str


class BulkReadingResponse(BaseModel):
	succeeded: int
	failed: int
	skipped: int
	errors: List[BulkItemError]


class ReadingResponse(BaseModel):
	id: UUID
	meter_id: UUID
	assignment_id: UUID
	cycle_id: UUID
	unit_id: str
	session_id: Optional[UUID]
	reading_date: date
	current_index: Decimal
	prev_index: Decimal
	note: Optional[str]
	created_by: Optional[str]
	created_at: datetime
	updated_at: datetime

	model_config = ConfigDict(from_attributes=True)
