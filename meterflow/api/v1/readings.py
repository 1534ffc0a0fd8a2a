import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from meterflow.auth.dependencies import CallerIdentity, get_identity, staff_id_of
from meterflow.database import get_session
from meterflow.directory import DirectoryPort, get_directory
from meterflow.schemas.reading import (
    BulkReadingRequest,
    BulkReadingResponse,
    ReadingCreate,
    ReadingResponse,
    UnitReadingCreate,
)
from meterflow.services.reading_service import ReadingService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/", response_model=ReadingResponse)
async def submit_reading(
        reading_data: ReadingCreate,
        response: Response,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
        identity: Optional[CallerIdentity] = Depends(get_identity),
):
    """
    Record the reading of a meter for an assignment.

    Submitting again for the same meter and assignment updates the
    existing reading (201 on first write, 200 afterwards).
    """
    reading, outcome = await ReadingService(session, directory).submit_reading(
        reading_data.assignment_id,
        reading_data.meter_id,
        reading_data.reading_date,
        reading_data.current_index,
        note=reading_data.note,
        session_id=reading_data.session_id,
        created_by=staff_id_of(identity),
    )
    if outcome == "created":
        response.status_code = status.HTTP_201_CREATED
    return reading


@router.post("/unit", response_model=ReadingResponse)
async def submit_unit_reading(
        reading_data: UnitReadingCreate,
        response: Response,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
        identity: Optional[CallerIdentity] = Depends(get_identity),
):
    """Record a reading for a unit; its meter is provisioned if it has none"""
    reading, outcome = await ReadingService(session, directory).submit_reading_for_unit(
        reading_data.assignment_id,
        reading_data.unit_id,
        reading_data.reading_date,
        reading_data.current_index,
        note=reading_data.note,
        session_id=reading_data.session_id,
        created_by=staff_id_of(identity),
    )
    if outcome == "created":
        response.status_code = status.HTTP_201_CREATED
    return reading


@router.post("/bulk", response_model=BulkReadingResponse)
async def submit_bulk_readings(
        bulk_data: BulkReadingRequest,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
        identity: Optional[CallerIdentity] = Depends(get_identity),
):
    """
    Submit a whole reading form.

    Items are saved independently: failures are listed in `errors` and do
    not affect the other items. Items whose `current_index` equals their
    `loaded_index` are skipped.
    """
    return await ReadingService(session, directory).submit_bulk(bulk_data, created_by=staff_id_of(identity))


@router.get("/", response_model=List[ReadingResponse])
async def list_readings(
        cycle_id: UUID = Query(...),
        unit_id: Optional[str] = None,
        assignment_id: Optional[UUID] = None,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    return await ReadingService(session, directory).list_readings(cycle_id, unit_id, assignment_id)


@router.get("/assignment/{assignment_id}", response_model=List[ReadingResponse])
async def list_assignment_readings(
        assignment_id: UUID,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    return await ReadingService(session, directory).list_by_assignment(assignment_id)
