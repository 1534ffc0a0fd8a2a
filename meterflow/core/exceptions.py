"""Domain error taxonomy and its HTTP rendering."""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
	"""Base application error."""

	code = "app_error"
	http_status = status.HTTP_400_BAD_REQUEST

	def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
		self.message = message
		self.details = details or {}
		super().__init__(message)


class ValidationError(AppError):
	"""Malformed input: bad date range, missing field, overlapping tiers."""

	code = "validation_error"
	http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class ConflictError(AppError):
	"""Unit already assigned, duplicate meter."""

	code = "conflict"
	http_status = status.HTTP_409_CONFLICT


class NotReadyError(AppError):
	"""Completion preconditions are not met."""

	code = "not_ready"
	http_status = status.HTTP_409_CONFLICT


class InvalidStateError(AppError):
	"""Operation is illegal for the entity's current state."""

	code = "invalid_state"
	http_status = status.HTTP_409_CONFLICT


class DependencyError(AppError):
	"""An external collaborator lookup failed or returned nothing."""

	code = "dependency_error"
	http_status = status.HTTP_502_BAD_GATEWAY


class NotFoundError(AppError):
	code = "not_found"
	http_status = status.HTTP_404_NOT_FOUND


class GapWarning(AppError):
	"""A tier write would leave the schedule without an unbounded top tier.

	The caller may repeat the write with ``force=True``.
	"""

	code = "gap"
	http_status = status.HTTP_409_CONFLICT


def error_response(error: AppError) -> Dict[str, Any]:
	"""Create a standardized error response."""
	return {
		"error": {
			"code": error.code,
			"message": error.message,
			"details": error.details,
		}
	}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
	if exc.http_status >= 500:
		logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
	else:
		logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
	return JSONResponse(status_code=exc.http_status, content=error_response(exc))


def register_exception_handlers(app: FastAPI) -> None:
	app.add_exception_handler(AppError, app_error_handler)
