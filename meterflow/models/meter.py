# models/meter.py
from sqlalchemy import Column, String, Boolean, Numeric, Date, Index, text
from sqlalchemy.orm import relationship

from meterflow.database import Base
from meterflow.models.base import BaseModel


class Meter(Base, BaseModel):
	__tablename__ = "meters"

	unit_id = Column(String(64), nullable=False, index=True)
	building_id = Column(String(64), index=True)
	service_id = Column(String(64), nullable=False, index=True)
	meter_code = Column(String(100), nullable=False, index=True)
	meter_type = Column(String(50))
	location = Column(String(255))
	last_reading = Column(Numeric(14, 3))
	last_reading_date = Column(Date)
	active = Column(Boolean, nullable=False, default=True, index=True)

	readings = relationship("MeterReading", back_populates="meter")

	__table_args__ = (
		# At most one active meter per (unit, service)
		Index(
			"uq_meter_active_unit_service",
			"unit_id",
			"service_id",
			unique=True,
			sqlite_where=text("active = 1"),
			postgresql_where=text("active"),
		),
	)
