from datetime import date, datetime
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict, model_validator

from meterflow.models.cycle import CycleStatus, ExportStatus


class ReadingCycleCreate(BaseModel):
	name: str = Field(..., max_length=255)
	service_id: str
	period_from: date
	period_to: date
	description: Optional[str] = None

	@model_validator(mode="after")
	def check_period(self):
		if self.period_to <= self.period_from:
			raise ValueError("period_to must be after period_from")
		return self


class ReadingCycleUpdate(BaseModel):
	name: Optional[str] = Field(None, max_length=255)
	period_from: Optional[date] = None
	period_to: Optional[date] = None
	description: Optional[str] = None

	@model_validator(mode="after")
	def reject_null_required(self):
		nulled = sorted(
			name for name in ("name", "period_from", "period_to")
			if name in self.model_fields_set and getattr(self, name) is None
		)
		if nulled:
			raise ValueError(f"{', '.join(nulled)} cannot be null")
		return self


class ReadingCycleResponse(BaseModel):
	id: UUID
	name: str
	description: Optional[str]
	service_id: str
	period_from: date
	period_to: date
	status: CycleStatus
	created_by: Optional[str]
	export_status: ExportStatus
	export_error: Optional[str]
	exported_at: Optional[datetime]
	created_at: datetime
	updated_at: datetime

	model_config = ConfigDict(from_attributes=True)


class UnassignedFloor(BaseModel):
	building_id: str
	building_code: Optional[str] = None
	building_name: Optional[str] = None
	floor: Optional[int] = None
	unit_codes: List[str]


class MissingMeterUnit(BaseModel):
	unit_id: str
	unit_code: str
	building_id: str
	floor: Optional[int] = None


class CycleUnassignedInfo(BaseModel):
	cycle_id: UUID
	service_id: str
	total_unassigned: int
	floors: List[UnassignedFloor]
	missing_meter_units: List[MissingMeterUnit] = []
	message: str


class AssignmentProgress(BaseModel):
	assignment_id: UUID
	total_meters: int
	readings_done: int
	remaining_meters: int
	progress_percentage: int
	is_fully_read: bool
	completed: bool


class CycleProgress(BaseModel):
	cycle_id: UUID
	total_assignments: int
	completed_assignments: int
	total_meters: int
	readings_done: int
	progress_percentage: int
	all_assignments_completed: bool
	total_unassigned: int
	can_complete: bool
	assignments: List[AssignmentProgress]


class InvoiceExportResult(BaseModel):
	invoices_created: int
	total_readings: int
	message: str


class CycleCompletionResponse(BaseModel):
	cycle: ReadingCycleResponse
	export: Optional[InvoiceExportResult] = None
	export_error: Optional[str] = None
