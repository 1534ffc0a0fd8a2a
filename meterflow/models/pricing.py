# models/pricing.py
from sqlalchemy import Column, String, Integer, Boolean, Numeric, Date, Text

from meterflow.database import Base
from meterflow.models.base import BaseModel


class PricingTier(Base, BaseModel):
	__tablename__ = "pricing_tiers"

	service_code = Column(String(50), nullable=False, index=True)
	tier_order = Column(Integer, nullable=False, default=1)
	min_quantity = Column(Numeric(14, 3), nullable=False, default=0)
	max_quantity = Column(Numeric(14, 3))  # None = unbounded above
	unit_price = Column(Numeric(14, 2), nullable=False)
	effective_from = Column(Date, nullable=False)
	effective_until = Column(Date)
	active = Column(Boolean, nullable=False, default=True)
	description = Column(Text)
