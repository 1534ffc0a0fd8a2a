from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from meterflow.database import get_session
from meterflow.schemas.billing import BillingCycleCreate, BillingCycleResponse
from meterflow.schemas.cycle import ReadingCycleResponse
from meterflow.services.billing_service import BillingService

router = APIRouter()


@router.get("/", response_model=List[BillingCycleResponse])
async def list_billing_cycles(
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        session: AsyncSession = Depends(get_session),
):
    """Billing cycles overlapping [start_date, end_date)"""
    return await BillingService(session).list_by_range(start_date, end_date)


@router.get("/load-period", response_model=List[BillingCycleResponse])
async def load_period(
        year: int = Query(..., ge=2000, le=2100),
        session: AsyncSession = Depends(get_session),
):
    return await BillingService(session).list_by_year(year)


@router.post("/", response_model=BillingCycleResponse, status_code=status.HTTP_201_CREATED)
async def create_billing_cycle(
        billing_data: BillingCycleCreate,
        session: AsyncSession = Depends(get_session),
):
    return await BillingService(session).create(billing_data)


@router.put("/{billing_cycle_id}/status", response_model=BillingCycleResponse)
async def update_billing_status(
        billing_cycle_id: UUID,
        status: str = Query(...),
        session: AsyncSession = Depends(get_session),
):
    return await BillingService(session).update_status(billing_cycle_id, status)


@router.post("/sync-missing", response_model=List[BillingCycleResponse])
async def sync_missing(session: AsyncSession = Depends(get_session)):
    """Create a billing cycle for every reading cycle that lacks one"""
    return await BillingService(session).sync_missing_billing_cycles()


@router.get("/missing", response_model=List[ReadingCycleResponse])
async def missing_billing_cycles(session: AsyncSession = Depends(get_session)):
    """Reading cycles without a billing cycle"""
    return await BillingService(session).load_missing_reading_cycles()
