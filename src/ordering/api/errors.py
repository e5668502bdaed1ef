"""HTTP error mapping for the Ordering API.

Protean's FastAPI handlers cover the framework's own exceptions; the handlers
here are registered after them and take precedence for the ordering errors:

    ValidationError          400  {"error": {field: [messages]}}
    ObjectNotFoundError      404  {"error": "..."}
    ConflictError            409  {"error": {...}}
    IdempotencyViolation     409  {"error": {...}, "status": "in_progress"}
    TerminalExternalError    422  {"error": {...}, "service": "carrier"}
    RetriableExternalError   503  {"error": {...}, "status": "pending"}
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.integrations.fastapi import register_exception_handlers

from ordering.exceptions import (
    ConflictError,
    IdempotencyViolation,
    RetriableExternalError,
    TerminalExternalError,
)

logger = structlog.get_logger(__name__)


async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": exc.messages})


async def _not_found(request: Request, exc: ObjectNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": getattr(exc, "messages", None) or str(exc)})


async def _conflict(request: Request, exc: ConflictError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": exc.messages})


async def _in_flight(request: Request, exc: IdempotencyViolation) -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": exc.messages, "status": "in_progress"})


async def _terminal(request: Request, exc: TerminalExternalError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"error": exc.messages, "service": exc.service})


async def _retriable(request: Request, exc: RetriableExternalError) -> JSONResponse:
    logger.warning("External service unavailable", path=request.url.path, service=exc.service)
    return JSONResponse(status_code=503, content={"error": exc.messages, "status": "pending", "service": exc.service})


def register_ordering_exception_handlers(app: FastAPI) -> None:
    """Install Protean's handlers, then the ordering-specific ones."""
    register_exception_handlers(app)
    app.add_exception_handler(ValidationError, _validation_error)
    app.add_exception_handler(ObjectNotFoundError, _not_found)
    app.add_exception_handler(ConflictError, _conflict)
    app.add_exception_handler(IdempotencyViolation, _in_flight)
    app.add_exception_handler(TerminalExternalError, _terminal)
    app.add_exception_handler(RetriableExternalError, _retriable)
