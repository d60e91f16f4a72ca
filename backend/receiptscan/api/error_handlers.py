"""
Custom exception handlers for FastAPI.
Every error is returned in the standard ``{status, message, data, errors}``
envelope so clients only parse one shape.
"""

import logging

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.status import HTTP_422_UNPROCESSABLE_ENTITY, HTTP_500_INTERNAL_SERVER_ERROR

from receiptscan.core.errors import IngestionError, InfrastructureError
from receiptscan.core.observability import capture_exception
from receiptscan.models.schemas import APIResponse

logger = logging.getLogger(__name__)


def envelope(status_code: int, message: str, errors=None, data=None) -> JSONResponse:
    body = APIResponse(status=status_code, message=message, data=data, errors=errors)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def ingestion_exception_handler(request: Request, exc: IngestionError):
    if isinstance(exc, InfrastructureError):
        logger.error("[api] %s %s failed: %s (%s)", request.method, request.url.path, exc.code, exc.message)
    return envelope(exc.http_status, exc.message, errors=exc.to_dict())


def http_exception_handler(request: Request, exc: HTTPException):
    response = envelope(exc.status_code, str(exc.detail), errors={"detail": exc.detail})
    if exc.headers:
        response.headers.update(exc.headers)
    return response


def validation_exception_handler(request: Request, exc: RequestValidationError):
    return envelope(
        HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        errors=exc.errors(),
    )


def generic_exception_handler(request: Request, exc: Exception):
    logger.exception("[api] unhandled error on %s %s", request.method, request.url.path)
    capture_exception(exc)
    return envelope(HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", errors={"detail": str(exc)})
