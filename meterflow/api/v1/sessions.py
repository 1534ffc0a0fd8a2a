from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from meterflow.auth.dependencies import CallerIdentity, require_identity
from meterflow.database import get_session
from meterflow.schemas.session import SessionResponse, SessionStart
from meterflow.services.session_service import SessionService

router = APIRouter()


@router.post("/", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def start_session(
        session_data: SessionStart,
        session: AsyncSession = Depends(get_session),
        identity: CallerIdentity = Depends(require_identity),
):
    """Start a reading session on one of the caller's assignments"""
    return await SessionService(session).start_session(
        session_data.assignment_id,
        identity.staff_id,
        device_info=session_data.device_info,
    )


@router.get("/my-active-session", response_model=Optional[SessionResponse])
async def my_active_session(
        session: AsyncSession = Depends(get_session),
        identity: CallerIdentity = Depends(require_identity),
):
    return await SessionService(session).active_session(identity.staff_id)


@router.get("/assignment/{assignment_id}", response_model=List[SessionResponse])
async def list_assignment_sessions(
        assignment_id: UUID,
        session: AsyncSession = Depends(get_session),
):
    return await SessionService(session).list_by_assignment(assignment_id)


@router.get("/staff/{staff_id}", response_model=List[SessionResponse])
async def list_staff_sessions(
        staff_id: str,
        session: AsyncSession = Depends(get_session),
):
    return await SessionService(session).list_by_reader(staff_id)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_reading_session(
        session_id: UUID,
        session: AsyncSession = Depends(get_session),
):
    return await SessionService(session).get_session(session_id)


@router.patch("/{session_id}/complete", response_model=SessionResponse)
async def complete_session(
        session_id: UUID,
        session: AsyncSession = Depends(get_session),
):
    return await SessionService(session).complete_session(session_id)
