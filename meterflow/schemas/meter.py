# schemas/meter.py
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class MeterBase(BaseModel):
    unit_id: str
    service_id: str
    meter_code: str = Field(..., max_length=100)
    meter_type: Optional[str] = Field(None, max_length=50)
    location: Optional[str] = None


class MeterCreate(MeterBase):
    last_reading: Optional[Decimal] = Field(None, ge=0)
    last_reading_date: Optional[date] = None


class MeterUpdate(BaseModel):
    meter_code: Optional[str] = Field(None, max_length=100)
    meter_type: Optional[str] = None
    location: Optional[str] = None
    last_reading: Optional[Decimal] = Field(None, ge=0)
    last_reading_date: Optional[date] = None


class MeterResponse(MeterBase):
    id: UUID
    building_id: Optional[str]
    active: bool
    last_reading: Optional[Decimal]
    last_reading_date: Optional[date]
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class MeterListResponse(BaseModel):
    total: int
    data: List[MeterResponse]
