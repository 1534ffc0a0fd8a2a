import logging
from datetime import date
from typing import List, Optional
from uuid import UUID

from celery.result import AsyncResult
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from meterflow.auth.dependencies import CallerIdentity, get_identity, staff_id_of
from meterflow.core.celery_app import celery_app
from meterflow.core.exceptions import InvalidStateError
from meterflow.database import get_session
from meterflow.directory import DirectoryPort, get_directory
from meterflow.models.cycle import CycleStatus
from meterflow.schemas.cycle import (
    CycleCompletionResponse,
    CycleProgress,
    CycleUnassignedInfo,
    InvoiceExportResult,
    ReadingCycleCreate,
    ReadingCycleResponse,
    ReadingCycleUpdate,
)
from meterflow.services.cycle_service import CycleService
from meterflow.services.invoice_service import InvoiceService
from meterflow.services.progress_service import ProgressService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/", response_model=List[ReadingCycleResponse])
async def list_cycles(
        status: Optional[CycleStatus] = None,
        period_from: Optional[date] = Query(None, alias="from"),
        period_to: Optional[date] = Query(None, alias="to"),
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    """List reading cycles, optionally by status and by period overlap"""
    return await CycleService(session, directory).list_cycles(status, period_from, period_to)


@router.post("/", response_model=ReadingCycleResponse, status_code=status.HTTP_201_CREATED)
async def create_cycle(
        cycle_data: ReadingCycleCreate,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
        identity: Optional[CallerIdentity] = Depends(get_identity),
):
    return await CycleService(session, directory).create_cycle(cycle_data, created_by=staff_id_of(identity))


@router.get("/{cycle_id}", response_model=ReadingCycleResponse)
async def get_cycle(
        cycle_id: UUID,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    return await CycleService(session, directory).get_cycle(cycle_id)


@router.put("/{cycle_id}", response_model=ReadingCycleResponse)
async def update_cycle(
        cycle_id: UUID,
        cycle_update: ReadingCycleUpdate,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    """Edit name, description or period of an OPEN cycle"""
    return await CycleService(session, directory).update_cycle(cycle_id, cycle_update)


@router.patch("/{cycle_id}/status", response_model=ReadingCycleResponse)
async def change_cycle_status(
        cycle_id: UUID,
        status: CycleStatus = Query(...),
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    """Operator override of the cycle status (forward moves only)"""
    return await CycleService(session, directory).change_status(cycle_id, status)


@router.post("/{cycle_id}/complete", response_model=CycleCompletionResponse)
async def complete_cycle(
        cycle_id: UUID,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    """
    Complete a cycle and export its invoices.

    Fails with 409 `not_ready` while an assignment is not completed or an
    active unit is left unassigned. An export failure does not undo the
    completion; it is reported in `export_error` and the cycle is flagged
    `EXPORT_FAILED`.
    """
    return await CycleService(session, directory).complete_cycle(cycle_id)


@router.post("/{cycle_id}/export", response_model=InvoiceExportResult)
async def export_cycle(
        cycle_id: UUID,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    """(Re-)export the invoices of a completed cycle"""
    return await CycleService(session, directory).export_cycle(cycle_id)


@router.post("/{cycle_id}/export/async", status_code=status.HTTP_202_ACCEPTED)
async def enqueue_export(
        cycle_id: UUID,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    """Queue the export on a worker; poll `/export-tasks/{task_id}` for the outcome"""
    cycle = await CycleService(session, directory).get_cycle(cycle_id)
    if cycle.status != CycleStatus.COMPLETED:
        raise InvalidStateError(f"Cycle {cycle.name} is {cycle.status.value}; only completed cycles are exported")

    task = celery_app.send_task("export_cycle_invoices", kwargs={"cycle_id": str(cycle_id)})
    logger.info(f"Invoice export of cycle {cycle.name} queued as task {task.id}")
    return {
        "task_id": task.id,
        "status_url": f"/api/v1/reading-cycles/export-tasks/{task.id}",
        "detail": "Export task enqueued",
    }


@router.get("/export-tasks/{task_id}")
async def get_export_task(task_id: str):
    res = AsyncResult(task_id, app=celery_app)
    if not res.ready():
        return {"task_id": task_id, "state": res.state}
    if res.failed():
        return {"task_id": task_id, "state": res.state, "error": str(res.info)}
    return {"task_id": task_id, "state": res.state, "result": res.result}


@router.get("/{cycle_id}/unassigned", response_model=CycleUnassignedInfo)
async def get_unassigned(
        cycle_id: UUID,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    return await ProgressService(session, directory).get_cycle_unassigned_info(cycle_id)


@router.get("/{cycle_id}/progress", response_model=CycleProgress)
async def get_cycle_progress(
        cycle_id: UUID,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    return await ProgressService(session, directory).get_cycle_progress(cycle_id)


@router.get("/{cycle_id}/invoices.xlsx")
async def download_invoices(
        cycle_id: UUID,
        session: AsyncSession = Depends(get_session),
        directory: DirectoryPort = Depends(get_directory),
):
    """Excel workbook of the cycle's exported invoices"""
    excel_file = await InvoiceService(session, directory).export_workbook(cycle_id)
    filename = f"invoices_{cycle_id}.xlsx"
    return StreamingResponse(
        excel_file,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )
