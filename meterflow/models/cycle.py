# models/cycle.py
import enum

from sqlalchemy import Column, String, Text, Date, DateTime, Enum as SQLEnum
from sqlalchemy.orm import relationship

from meterflow.database import Base
from meterflow.models.base import BaseModel


class CycleStatus(str, enum.Enum):
	OPEN = "OPEN"
	IN_PROGRESS = "IN_PROGRESS"
	COMPLETED = "COMPLETED"
	CLOSED = "CLOSED"


# Canonical forward order of the cycle state machine
CYCLE_STATUS_ORDER = [
	CycleStatus.OPEN,
	CycleStatus.IN_PROGRESS,
	CycleStatus.COMPLETED,
	CycleStatus.CLOSED,
]


class ExportStatus(str, enum.Enum):
	NOT_EXPORTED = "NOT_EXPORTED"
	EXPORTED = "EXPORTED"
	EXPORT_FAILED = "EXPORT_FAILED"


class ReadingCycle(Base, BaseModel):
	__tablename__ = "reading_cycles"

	name = Column(String(255), nullable=False)
	description = Column(Text)
	service_id = Column(String(64), nullable=False, index=True)
	# Half-open period [period_from, period_to)
	period_from = Column(Date, nullable=False, index=True)
	period_to = Column(Date, nullable=False, index=True)
	status = Column(SQLEnum(CycleStatus), nullable=False, default=CycleStatus.OPEN, index=True)
	created_by = Column(String(64))

	export_status = Column(SQLEnum(ExportStatus), nullable=False, default=ExportStatus.NOT_EXPORTED, index=True)
	export_error = Column(Text)
	exported_at = Column(DateTime(timezone=True))

	assignments = relationship("Assignment", back_populates="cycle", cascade="all, delete-orphan")
