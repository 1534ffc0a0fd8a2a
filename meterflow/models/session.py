# models/session.py
from sqlalchemy import Column, ForeignKey, String, Integer, DateTime, Uuid

from meterflow.database import Base
from meterflow.models.base import BaseModel, utcnow


class ReadingSession(Base, BaseModel):
	"""A reader's sitting on one assignment (one device, one walk-through)."""

	__tablename__ = "reading_sessions"

	assignment_id = Column(Uuid(as_uuid=True), ForeignKey("assignments.id"), nullable=False, index=True)
	cycle_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
	building_id = Column(String(64))
	service_id = Column(String(64), nullable=False)
	reader_id = Column(String(64), nullable=False, index=True)
	device_info = Column(String(255))
	started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
	completed_at = Column(DateTime(timezone=True), index=True)
	units_read = Column(Integer, nullable=False, default=0)

	@property
	def is_completed(self) -> bool:
		return self.completed_at is not None
