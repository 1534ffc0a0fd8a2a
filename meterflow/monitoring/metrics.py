from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter
from fastapi.responses import Response

router = APIRouter()

# Define metrics
request_count = Counter(
	'http_requests_total',
	'Total HTTP requests',
	['method', 'endpoint', 'status']
)

request_duration = Histogram(
	'http_request_duration_seconds',
	'HTTP request duration',
	['method', 'endpoint'],
	buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

active_requests = Gauge(
	'http_requests_active',
	'Number of active HTTP requests'
)

readings_submitted = Counter(
	'meter_readings_submitted_total',
	'Meter reading upserts',
	['outcome']  # created, updated, unchanged, skipped, failed
)

meters_provisioned = Counter(
	'meters_auto_provisioned_total',
	'Meters created on first reading of a unit'
)

assignments_created = Counter(
	'assignments_created_total',
	'Assignment creation attempts',
	['outcome']  # created, conflict
)

cycle_completions = Counter(
	'cycle_completions_total',
	'Cycle completion attempts',
	['outcome']  # completed, not_ready
)

invoice_exports = Counter(
	'invoice_exports_total',
	'Invoice export runs',
	['outcome']  # exported, failed
)


@router.get("/metrics")
async def metrics():
	"""Prometheus metrics endpoint"""
	return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
