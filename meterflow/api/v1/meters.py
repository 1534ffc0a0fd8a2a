import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Query, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from meterflow.database import get_session
from meterflow.directory import DirectoryPort, UnitInfo, get_directory
from meterflow.schemas.meter import MeterResponse, MeterCreate, MeterUpdate, MeterListResponse
from meterflow.services.meter_service import MeterService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/", response_model=MeterListResponse)
async def list_meters(
        unit_id: Optional[str] = None,
        service_id: Optional[str] = None,
        building_id: Optional[str] = None,
        active: Optional[bool] = None,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    """List meters with filters"""
    meters = await MeterService(session, directory).list_meters(unit_id, service_id, building_id, active)
    return MeterListResponse(
        total=len(meters),
        data=[MeterResponse.model_validate(m) for m in meters]
    )


@router.post("/", response_model=MeterResponse, status_code=status.HTTP_201_CREATED)
async def create_meter(
        meter_data: MeterCreate,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    """Create a meter; a unit holds at most one active meter per service"""
    return await MeterService(session, directory).create_meter(meter_data)


@router.get("/missing", response_model=List[UnitInfo])
async def units_missing_meters(
        building_id: str = Query(...),
        service_id: str = Query(...),
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    """Active units of a building with no active meter for the service"""
    return await MeterService(session, directory).units_missing_meters(building_id, service_id)


@router.get("/unit/{unit_id}", response_model=List[MeterResponse])
async def get_unit_meters(
        unit_id: str,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    return await MeterService(session, directory).list_meters(unit_id=unit_id)


@router.get("/building/{building_id}", response_model=List[MeterResponse])
async def get_building_meters(
        building_id: str,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    return await MeterService(session, directory).list_meters(building_id=building_id)


@router.get("/staff/{staff_id}/cycle/{cycle_id}", response_model=List[MeterResponse])
async def get_staff_cycle_meters(
        staff_id: str,
        cycle_id: UUID,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    """Meters a staff member has to read in a cycle"""
    return await MeterService(session, directory).list_by_staff_and_cycle(staff_id, cycle_id)


@router.get("/{meter_id}", response_model=MeterResponse)
async def get_meter(
        meter_id: UUID,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    return await MeterService(session, directory).get_meter(meter_id)


@router.put("/{meter_id}", response_model=MeterResponse)
async def update_meter(
        meter_id: UUID,
        meter_update: MeterUpdate,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    return await MeterService(session, directory).update_meter(meter_id, meter_update)


@router.patch("/{meter_id}/deactivate", response_model=MeterResponse)
async def deactivate_meter(
        meter_id: UUID,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    return await MeterService(session, directory).deactivate_meter(meter_id)


@router.delete("/{meter_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_meter(
        meter_id: UUID,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    """Delete a meter that has never been read"""
    await MeterService(session, directory).delete_meter(meter_id)
