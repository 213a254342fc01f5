"""Exception handlers that render every failure as a response envelope.

Body shape: ``{"status": "error", "data": ..., "error": ..., "errorCode": ...}``
plus any extra fields the error carries (``remainingMs``, ``flags``, ...).
"""

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from bloom.errors import EconomyError, InternalError

logger = structlog.get_logger()

_HTTP_ERROR_CODES = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    429: "rate_limited",
}


def error_body(message: str, error_code: str, data: Any = None, **extra: Any) -> dict[str, Any]:  # noqa: ANN401
    body: dict[str, Any] = {"status": "error", "data": data, "error": message, "errorCode": error_code}
    body.update(extra)
    return jsonable_encoder(body)


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(EconomyError)
    async def economy_error_handler(request: Request, exc: EconomyError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("economy_error", path=request.url.path, error_code=exc.error_code, error=exc.message)
        else:
            logger.info("request_rejected", path=request.url.path, error_code=exc.error_code)
        headers = None
        retry_after = exc.extra.get("retryAfter")
        if retry_after is not None:
            headers = {"Retry-After": str(retry_after)}
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.message, exc.error_code, exc.data, **exc.extra),
            headers=headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = _HTTP_ERROR_CODES.get(exc.status_code, "http_error")
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail), code),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else "Invalid request"
        return JSONResponse(
            status_code=400,
            content=error_body(message, "invalid_request", details=errors),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all; the client never sees internal details."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        internal = InternalError()
        return JSONResponse(
            status_code=internal.status_code,
            content=error_body(internal.message, internal.error_code),
        )
