from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class SessionStart(BaseModel):
	assignment_id: UUID
	device_info: Optional[str] = None


class SessionResponse(BaseModel):
	id: UUID
	assignment_id: UUID
	cycle_id: UUID
	building_id: Optional[str]
	service_id: str
	reader_id: str
	device_info: Optional[str]
	started_at: datetime
	completed_at: Optional[datetime]
	units_read: int
	is_completed: bool

	model_config = ConfigDict(from_attributes=True)
