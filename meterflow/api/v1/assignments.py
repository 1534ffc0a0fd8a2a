import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from meterflow.auth.dependencies import CallerIdentity, get_identity, require_identity, staff_id_of
from meterflow.database import get_session
from meterflow.directory import DirectoryPort, get_directory
from meterflow.schemas.assignment import AssignmentCreate, AssignmentResponse
from meterflow.schemas.cycle import AssignmentProgress
from meterflow.schemas.meter import MeterResponse
from meterflow.services.assignment_service import AssignmentService
from meterflow.services.progress_service import ProgressService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
async def create_assignment(
        assignment_data: AssignmentCreate,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
        identity: Optional[CallerIdentity] = Depends(get_identity),
):
    """
    Assign units of a cycle to a staff member.

    Units come from `unit_ids` and/or every active unit on `floors` of
    `building_id`. Fails with 409 `conflict` when any unit is already
    assigned in the cycle.
    """
    service = AssignmentService(session, directory)
    return await service.create_assignment(assignment_data, assigned_by=staff_id_of(identity))


@router.get("/my-assignments", response_model=List[AssignmentResponse])
async def my_assignments(
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
        identity: CallerIdentity = Depends(require_identity),
):
    return await AssignmentService(session, directory).list_by_staff(identity.staff_id)


@router.get("/my-assignments/active", response_model=List[AssignmentResponse])
async def my_active_assignments(
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
        identity: CallerIdentity = Depends(require_identity),
):
    return await AssignmentService(session, directory).list_active_by_staff(identity.staff_id)


@router.get("/cycle/{cycle_id}", response_model=List[AssignmentResponse])
async def list_cycle_assignments(
        cycle_id: UUID,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    return await AssignmentService(session, directory).list_by_cycle(cycle_id)


@router.get("/staff/{staff_id}", response_model=List[AssignmentResponse])
async def list_staff_assignments(
        staff_id: str,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    return await AssignmentService(session, directory).list_by_staff(staff_id)


@router.get("/staff/{staff_id}/active", response_model=List[AssignmentResponse])
async def list_staff_active_assignments(
        staff_id: str,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    return await AssignmentService(session, directory).list_active_by_staff(staff_id)


@router.get("/{assignment_id}", response_model=AssignmentResponse)
async def get_assignment(
        assignment_id: UUID,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    return await AssignmentService(session, directory).get_assignment(assignment_id)


@router.delete("/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_assignment(
        assignment_id: UUID,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    """Delete an assignment that is neither completed nor read"""
    await AssignmentService(session, directory).delete_assignment(assignment_id)


@router.patch("/{assignment_id}/complete", response_model=AssignmentResponse)
async def complete_assignment(
        assignment_id: UUID,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    """Mark the assignment done. Units without readings do not block this."""
    return await AssignmentService(session, directory).complete_assignment(assignment_id)


@router.get("/{assignment_id}/meters", response_model=List[MeterResponse])
async def get_assignment_meters(
        assignment_id: UUID,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    return await AssignmentService(session, directory).meters_for_assignment(assignment_id)


@router.get("/{assignment_id}/progress", response_model=AssignmentProgress)
async def get_assignment_progress(
        assignment_id: UUID,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    return await ProgressService(session, directory).get_assignment_progress(assignment_id)
