# models/billing.py
from sqlalchemy import Column, ForeignKey, String, Date, Numeric, Integer, JSON, Uuid
from sqlalchemy.orm import relationship

from meterflow.database import Base
from meterflow.models.base import BaseModel


class BillingCycle(Base, BaseModel):
	__tablename__ = "billing_cycles"

	name = Column(String(255), nullable=False)
	# One billing cycle per reading cycle
	external_cycle_id = Column(Uuid(as_uuid=True), unique=True, nullable=True, index=True)
	service_id = Column(String(64))
	period_from = Column(Date, nullable=False, index=True)
	period_to = Column(Date, nullable=False, index=True)
	status = Column(String(50), nullable=False, default="ACTIVE", index=True)


class InvoiceBatch(Base, BaseModel):
	__tablename__ = "invoice_batches"

	cycle_id = Column(Uuid(as_uuid=True), ForeignKey("reading_cycles.id"), nullable=False, index=True)
	billing_cycle_id = Column(Uuid(as_uuid=True), ForeignKey("billing_cycles.id"), nullable=False, index=True)
	building_id = Column(String(64), index=True)
	service_code = Column(String(50), nullable=False)
	invoice_count = Column(Integer, nullable=False, default=0)
	total_amount = Column(Numeric(16, 2), nullable=False, default=0)

	invoices = relationship("Invoice", back_populates="batch", cascade="all, delete-orphan", lazy="selectin")


class Invoice(Base, BaseModel):
	__tablename__ = "invoices"

	batch_id = Column(Uuid(as_uuid=True), ForeignKey("invoice_batches.id", ondelete="CASCADE"), nullable=False, index=True)
	unit_id = Column(String(64), nullable=False, index=True)
	meter_id = Column(Uuid(as_uuid=True), ForeignKey("meters.id"), nullable=False)
	reading_id = Column(Uuid(as_uuid=True), ForeignKey("meter_readings.id"), nullable=False)
	prev_index = Column(Numeric(14, 3), nullable=False)
	current_index = Column(Numeric(14, 3), nullable=False)
	consumption = Column(Numeric(14, 3), nullable=False)
	amount = Column(Numeric(16, 2), nullable=False)
	lines = Column(JSON, default=list)

	batch = relationship("InvoiceBatch", back_populates="invoices")
