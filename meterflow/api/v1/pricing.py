from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from meterflow.database import get_session
from meterflow.schemas.pricing import (
    PricingTierCreate,
    PricingTierResponse,
    PricingTierUpdate,
    PricingTierWriteResponse,
    TierScheduleReport,
)
from meterflow.services.pricing_service import PricingService

router = APIRouter()


@router.get("/", response_model=List[PricingTierResponse])
async def list_tiers(
        service_code: str = Query(...),
        session: AsyncSession = Depends(get_session),
):
    return await PricingService(session).list_by_service(service_code)


@router.get("/validation", response_model=TierScheduleReport)
async def validate_tiers(
        service_code: str = Query(...),
        session: AsyncSession = Depends(get_session),
):
    """Gaps and overlaps among the currently active tiers of a service"""
    return await PricingService(session).validation_report(service_code)


@router.post("/", response_model=PricingTierWriteResponse, status_code=status.HTTP_201_CREATED)
async def create_tier(
        tier_data: PricingTierCreate,
        force: bool = False,
        session: AsyncSession = Depends(get_session),
):
    """
    Create a tier.

    Overlapping ranges are rejected with 422. Leaving the schedule without
    an unbounded top tier is rejected with 409 `gap` unless `force=true`.
    """
    return await PricingService(session).create_tier(tier_data, force=force)


@router.put("/{tier_id}", response_model=PricingTierWriteResponse)
async def update_tier(
        tier_id: UUID,
        tier_update: PricingTierUpdate,
        force: bool = False,
        session: AsyncSession = Depends(get_session),
):
    return await PricingService(session).update_tier(tier_id, tier_update, force=force)


@router.delete("/{tier_id}", response_model=PricingTierWriteResponse)
async def delete_tier(
        tier_id: UUID,
        force: bool = False,
        session: AsyncSession = Depends(get_session),
):
    return await PricingService(session).delete_tier(tier_id, force=force)
