# models/reading.py
from sqlalchemy import Column, ForeignKey, String, Text, Date, Numeric, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from meterflow.database import Base
from meterflow.models.base import BaseModel


class MeterReading(Base, BaseModel):
	__tablename__ = "meter_readings"

	meter_id = Column(Uuid(as_uuid=True), ForeignKey("meters.id"), nullable=False, index=True)
	assignment_id = Column(Uuid(as_uuid=True), ForeignKey("assignments.id"), nullable=False, index=True)
	cycle_id = Column(Uuid(as_uuid=True), ForeignKey("reading_cycles.id"), nullable=False, index=True)
	unit_id = Column(String(64), nullable=False, index=True)
	session_id = Column(Uuid(as_uuid=True), ForeignKey("reading_sessions.id"), nullable=True)
	reading_date = Column(Date, nullable=False)
	current_index = Column(Numeric(14, 3), nullable=False)
	prev_index = Column(Numeric(14, 3), nullable=False, default=0)
	note = Column(Text)
	created_by = Column(String(64))

	meter = relationship("Meter", back_populates="readings")

	__table_args__ = (
		UniqueConstraint("meter_id", "assignment_id", name="uq_reading_meter_assignment"),
	)
