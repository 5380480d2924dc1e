# core/errors.py
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_TOKEN = "invalid_token"
    RATE_LIMITED = "rate_limited"
    DATA_ACCESS = "data_access"
    UNEXPECTED = "unexpected"


STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.INVALID_TOKEN: 401,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.DATA_ACCESS: 500,
    ErrorKind.UNEXPECTED: 500,
}

# Generic messages shown to the caller for server-side failures
DATA_ACCESS_MESSAGE = "Error al acceder a la base de datos."
UNEXPECTED_MESSAGE = "Error interno del servidor."
INVALID_CREDENTIALS_MESSAGE = "Credenciales inválidas."
INVALID_TOKEN_MESSAGE = "Token inválido o expirado."


class ServiceError(Exception):
    """
    Single error type for the service layer.

    `kind` decides the HTTP status at the boundary; `message` is what the
    caller sees. `cause` keeps the original exception for server-side logs.
    """

    def __init__(self, kind: ErrorKind, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.cause = cause

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]


def validation_error(message: str) -> ServiceError:
    return ServiceError(ErrorKind.VALIDATION, message)


def invalid_credentials() -> ServiceError:
    return ServiceError(ErrorKind.INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE)


def invalid_token(message: str = INVALID_TOKEN_MESSAGE) -> ServiceError:
    return ServiceError(ErrorKind.INVALID_TOKEN, message)


def data_access_error(cause: Optional[BaseException] = None, message: str = DATA_ACCESS_MESSAGE) -> ServiceError:
    return ServiceError(ErrorKind.DATA_ACCESS, message, cause)


def error_body(message: str, detail: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"message": message}
    if detail:
        body["detail"] = detail
    return body


def _debug(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return bool(settings and settings.debug)


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, err: ServiceError) -> JSONResponse:
        detail = None
        if err.status_code >= 500:
            logger.error(
                "%s error on %s %s: %s",
                err.kind.value,
                request.method,
                request.url.path,
                err.message,
                exc_info=err.cause,
            )
            # Full detail stays server-side; dev builds echo it back
            if _debug(request) and err.cause is not None:
                detail = f"{err.cause.__class__.__name__}: {err.cause}"
        return JSONResponse(status_code=err.status_code, content=error_body(err.message, detail))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, err: RequestValidationError) -> JSONResponse:
        fields = [".".join(str(p) for p in e.get("loc", ()) if p != "body") for e in err.errors()]
        fields = [f for f in fields if f]
        message = "Datos de entrada inválidos."
        if fields:
            message = f"Datos de entrada inválidos: {', '.join(fields)}."
        return JSONResponse(status_code=400, content=error_body(message))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, err: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=err.status_code,
            content=error_body(str(err.detail)),
            headers=getattr(err, "headers", None),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, err: Exception) -> JSONResponse:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        detail = f"{err.__class__.__name__}: {err}" if _debug(request) else None
        return JSONResponse(status_code=500, content=error_body(UNEXPECTED_MESSAGE, detail))
