"""Mapping of domain errors to HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..contracts.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConcurrencyConflict,
    ContractError,
    InvalidState,
    NotFound,
    TokenExpired,
    UpstreamFailure,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_CODES = {
    NotFound: 404,
    InvalidState: 409,
    ConcurrencyConflict: 409,
    TokenExpired: 410,
    ValidationError: 422,
    AuthenticationError: 401,
    AuthorizationError: 403,
    UpstreamFailure: 502,
}


def error_body(code: str, detail: str) -> dict:
    return {"success": False, "error": code, "detail": detail}


def status_for(exc: ContractError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 500


async def contract_error_handler(request: Request, exc: ContractError):
    status_code = status_for(exc)
    if status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content=error_body(exc.code, str(exc)))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append(f"{location}: {err.get('msg')}" if location else err.get("msg", ""))
    return JSONResponse(
        status_code=422,
        content=error_body(ValidationError.code, "; ".join(messages) or "Invalid request"),
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content=error_body("server_error", "Internal processing error"))


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(ContractError, contract_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
