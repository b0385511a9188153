from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from linkvault.apps.api.response import error_response, is_versioned_request
from linkvault.core.errors import (
    AuthError,
    InsufficientInventoryError,
    IssuanceError,
    LinkExpiredError,
    LinkNotFoundError,
    LinkValidationError,
    LinkVaultError,
    MissingFieldError,
    PartnerExistsError,
    WebhookSignatureError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    410: "GONE",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

# Most specific class first; the first isinstance match wins.
_DOMAIN_ERRORS: tuple[tuple[type[LinkVaultError], int, str], ...] = (
    (LinkNotFoundError, 404, "LINK_NOT_FOUND"),
    (LinkExpiredError, 410, "LINK_EXPIRED"),
    (MissingFieldError, 400, "MISSING_FIELD"),
    (LinkValidationError, 400, "VALIDATION_ERROR"),
    (InsufficientInventoryError, 409, "INSUFFICIENT_INVENTORY"),
    (PartnerExistsError, 409, "PARTNER_EXISTS"),
    (AuthError, 401, "AUTH_UNAUTHORIZED"),
    (WebhookSignatureError, 400, "WEBHOOK_SIGNATURE_INVALID"),
)


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def classify_domain_error(exc: LinkVaultError) -> tuple[int, str, str]:
    """Return (status, code, client message) for a domain exception."""
    for error_type, status_code, code in _DOMAIN_ERRORS:
        if isinstance(exc, error_type):
            return status_code, code, str(exc) or code
    # IssuanceError, ConfigError and anything unmapped stay opaque to clients.
    return 500, "INTERNAL_ERROR", "Internal server error"


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Also receives fastapi.HTTPException, which subclasses the Starlette one.
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Surface request body/query validation errors with structured details.
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=422)


async def domain_exception_handler(request: Request, exc: LinkVaultError) -> JSONResponse:
    status_code, code, message = classify_domain_error(exc)
    if status_code >= 500:
        logger.error(
            "domain_error path=%s error=%s",
            request.url.path,
            type(exc).__name__,
            exc_info=exc if isinstance(exc, IssuanceError) else None,
        )
    payload = error_response(request=request, code=code, message=message)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    # Storage failures are logged with context and returned without internals.
    logger.error("database_error path=%s method=%s", request.url.path, request.method, exc_info=exc)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_error path=%s method=%s", request.url.path, request.method, exc_info=exc)
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": "Internal Server Error"}, status_code=500)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(LinkVaultError, domain_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
