# models/assignment.py
from sqlalchemy import Column, ForeignKey, String, Text, Date, DateTime, JSON, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from meterflow.database import Base
from meterflow.models.base import BaseModel


class Assignment(Base, BaseModel):
	__tablename__ = "assignments"

	cycle_id = Column(Uuid(as_uuid=True), ForeignKey("reading_cycles.id"), nullable=False, index=True)
	service_id = Column(String(64), nullable=False, index=True)
	building_id = Column(String(64), nullable=True, index=True)  # None = every building
	assigned_to = Column(String(64), nullable=False, index=True)
	assigned_by = Column(String(64))
	floors = Column(JSON, default=list)
	start_date = Column(Date, nullable=False)
	end_date = Column(Date, nullable=False)
	note = Column(Text)
	completed_at = Column(DateTime(timezone=True), index=True)

	cycle = relationship("ReadingCycle", back_populates="assignments")
	units = relationship(
		"AssignmentUnit",
		back_populates="assignment",
		cascade="all, delete-orphan",
		lazy="selectin",
	)

	@property
	def unit_ids(self) -> list[str]:
		return sorted(u.unit_id for u in self.units)


class AssignmentUnit(Base, BaseModel):
	"""One unit claimed by an assignment.

	Within a cycle and service a unit can be claimed by one assignment
	only; the unique constraint enforces it.
	"""

	__tablename__ = "assignment_units"

	assignment_id = Column(Uuid(as_uuid=True), ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False, index=True)
	cycle_id = Column(Uuid(as_uuid=True), nullable=False)
	service_id = Column(String(64), nullable=False)
	building_id = Column(String(64))
	unit_id = Column(String(64), nullable=False, index=True)

	assignment = relationship("Assignment", back_populates="units")

	__table_args__ = (
		UniqueConstraint("cycle_id", "service_id", "unit_id", name="uq_assignment_unit_claim"),
	)
