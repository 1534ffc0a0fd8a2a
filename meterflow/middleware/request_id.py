from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request
import uuid
import contextvars
import logging

REQUEST_ID_HEADER = "X-Request-ID"

request_id_context: contextvars.ContextVar[str | None] = contextvars.ContextVar("request_id", default=None)


class RequestIDMiddleware(BaseHTTPMiddleware):
	"""Propagate the caller's request id (or a fresh one) into logs and the response"""

	async def dispatch(self, request: Request, call_next):
		request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
		request.state.request_id = request_id
		token = request_id_context.set(request_id)
		try:
			response = await call_next(request)
		finally:
			request_id_context.reset(token)

		response.headers[REQUEST_ID_HEADER] = request_id
		return response


def get_request_id() -> str:
	return request_id_context.get() or "-"


class RequestIDLogFilter(logging.Filter):
	"""Stamp every log record with the current request id"""

	def filter(self, record: logging.LogRecord) -> bool:
		record.request_id = get_request_id()
		return True


def configure_logging(debug: bool = False) -> None:
	"""Root handler whose lines carry the request id"""
	handler = logging.StreamHandler()
	handler.addFilter(RequestIDLogFilter())
	handler.setFormatter(logging.Formatter(
		"%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
	))

	root = logging.getLogger()
	root.handlers = [handler]
	root.setLevel(logging.DEBUG if debug else logging.INFO)
