import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from meterflow.monitoring.metrics import request_count, request_duration, active_requests

logger = logging.getLogger(__name__)


class MonitoringMiddleware(BaseHTTPMiddleware):
	"""Track request metrics for Prometheus"""

	async def dispatch(self, request: Request, call_next):
		# Skip metrics endpoint to avoid recursion
		if request.url.path == "/internal/metrics":
			return await call_next(request)

		active_requests.inc()
		start_time = time.time()

		try:
			response = await call_next(request)

			duration = time.time() - start_time

			# Route template keeps label cardinality bounded
			route = request.scope.get("route")
			endpoint = getattr(route, "path", request.url.path)

			request_count.labels(
				method=request.method,
				endpoint=endpoint,
				status=response.status_code
			).inc()

			request_duration.labels(
				method=request.method,
				endpoint=endpoint
			).observe(duration)

			if duration > 1.0:
				logger.warning(
					f"Slow request: {request.method} {request.url.path} "
					f"took {duration:.2f}s"
				)

			return response

		finally:
			active_requests.dec()
