from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request
import logging
import json
import time
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
	"""Structured logging middleware for all requests"""

	async def dispatch(self, request: Request, call_next):
		start_time = time.time()

		response = await call_next(request)

		duration = time.time() - start_time

		log_dict = {
			"timestamp": datetime.now(timezone.utc).isoformat(),
			"level": "INFO",
			"request_id": getattr(request.state, "request_id", None),
			"method": request.method,
			"path": request.url.path,
			"query_params": dict(request.query_params),
			"client_host": request.client.host if request.client else None,
			"user_agent": request.headers.get("user-agent"),
			"status_code": response.status_code,
			"duration_seconds": round(duration, 3),
		}

		# Caller identity, when one was supplied
		if hasattr(request.state, "staff_id"):
			log_dict["staff_id"] = request.state.staff_id

		if response.status_code >= 400:
			log_dict["level"] = "WARNING" if response.status_code < 500 else "ERROR"

		# Log as JSON for structured logging systems
		logger.info(json.dumps(log_dict))

		return response
