# =====================================
# meterflow/workers/export_tasks.py
# =====================================
import asyncio
import logging
from typing import Any, Dict
from uuid import UUID

from meterflow.core.celery_app import celery_app
from meterflow.core.exceptions import DependencyError
from meterflow.database import AsyncSessionLocal, engine
from meterflow.directory.http import HttpDirectory, new_http_client
from meterflow.services.billing_service import BillingService
from meterflow.services.cycle_service import CycleService

logger = logging.getLogger(__name__)


def _run(coro):
	"""Run a coroutine to completion on a fresh event loop"""
	loop = asyncio.new_event_loop()
	asyncio.set_event_loop(loop)
	try:
		return loop.run_until_complete(coro)
	finally:
		loop.close()


@celery_app.task(bind=True, name="export_cycle_invoices", max_retries=3, default_retry_delay=300)
def export_cycle_invoices(self, cycle_id: str) -> Dict[str, Any]:
	"""Export the invoices of one completed cycle"""
	try:
		return _run(_export_cycle_async(UUID(cycle_id)))
	except DependencyError as e:
		# Directory outage; the failure is already recorded on the cycle
		logger.error(f"Export task for cycle {cycle_id} failed: {e.message}")
		raise self.retry(exc=e)


@celery_app.task(name="retry_failed_exports")
def retry_failed_exports() -> Dict[str, int]:
	"""Periodic retry of every cycle flagged EXPORT_FAILED"""
	ok, failed = _run(_retry_failed_async())
	return {"succeeded": ok, "failed": failed}


@celery_app.task(name="sync_missing_billing_cycles")
def sync_missing_billing_cycles() -> Dict[str, int]:
	created = _run(_sync_billing_async())
	return {"created": created}


async def _export_cycle_async(cycle_id: UUID) -> Dict[str, Any]:
	client = new_http_client()
	try:
		async with AsyncSessionLocal() as db:
			result = await CycleService(db, HttpDirectory(client)).export_cycle(cycle_id)
			return result.model_dump()
	finally:
		await client.aclose()
		# Pooled connections belong to this task's event loop
		await engine.dispose()


async def _retry_failed_async() -> tuple[int, int]:
	client = new_http_client()
	try:
		async with AsyncSessionLocal() as db:
			return await CycleService(db, HttpDirectory(client)).retry_failed_exports()
	finally:
		await client.aclose()
		await engine.dispose()


async def _sync_billing_async() -> int:
	try:
		async with AsyncSessionLocal() as db:
			created = await BillingService(db).sync_missing_billing_cycles()
			logger.info(f"Billing sync created {len(created)} cycles")
			return len(created)
	finally:
		await engine.dispose()
