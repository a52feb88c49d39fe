"""
Error handlers for the negotiation API.

Every failure leaves the service in the same envelope the success path uses:

    {"success": false, "message": "...", "error": {"code": "...", "details": {...}}}

so the client can map `error.code` back onto the exception hierarchy.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from negotiation_service.core.exceptions import NegotiationServiceError

logger = logging.getLogger(__name__)

# Routes whose bodies are message drafts (send, and the opening message of start)
MESSAGE_ROUTE_MARKERS = ("/messages", "/negotiations/start/")


def error_envelope(message: str, code: str, details: dict = None) -> dict:
    return {
        "success": False,
        "message": message,
        "error": {"code": code, "details": details or {}},
    }


async def handle_service_error(request: Request, error: NegotiationServiceError) -> JSONResponse:
    """Handle domain errors raised by the session and purchase order services"""
    log = logger.warning if error.status_code < 500 else logger.error
    log(
        f"{error.error_code} on {request.method} {request.url.path}: {error.message}",
        extra={"details": error.details},
    )
    return JSONResponse(
        status_code=error.status_code,
        content=error_envelope(error.message, error.error_code, error.details),
    )


def _validation_code(request: Request) -> str:
    path = request.url.path
    if any(marker in path for marker in MESSAGE_ROUTE_MARKERS):
        return "MESSAGE_VALIDATION_ERROR"
    return "VALIDATION_ERROR"


async def handle_validation_error(request: Request, error: RequestValidationError) -> JSONResponse:
    """Handle FastAPI request validation errors"""
    errors = []
    for err in error.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        })

    logger.warning(
        f"Validation error on {request.url.path}",
        extra={"errors": errors, "method": request.method},
    )
    message = errors[0]["message"] if errors else "Request validation failed"
    return JSONResponse(
        status_code=422,
        content=error_envelope(
            message,
            _validation_code(request),
            {"field": errors[0]["field"] if errors else None, "validation_errors": errors},
        ),
    )


async def handle_http_error(request: Request, error: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content=error_envelope(str(error.detail), f"HTTP_{error.status_code}"),
        headers=getattr(error, "headers", None),
    )


async def handle_database_error(request: Request, error: SQLAlchemyError) -> JSONResponse:
    logger.error(
        f"Database error: {type(error).__name__}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content=error_envelope(
            "Database operation failed. Please try again.",
            "DATABASE_ERROR",
            {"type": type(error).__name__},
        ),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(NegotiationServiceError, handle_service_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(SQLAlchemyError, handle_database_error)
