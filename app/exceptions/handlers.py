# app/exceptions/handlers.py
from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from slowapi.util import get_remote_address
from app.core import tracing
from app.exceptions.correlation import CorrelationError
import time


def request_context(request: Request) -> dict:
    """Request fields attached to every error log line"""
    return {
        "url": str(request.url),
        "method": request.method,
        "ip": get_remote_address(request),
        "user_agent": request.headers.get("user-agent", "unknown"),
    }


def error_body(detail, status_code: int, **extra) -> dict:
    body = {
        "detail": detail,
        "status_code": status_code,
        "trace_id": tracing.get_current_trace_id(),
        "timestamp": time.time(),
    }
    body.update(extra)
    return body


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    log = tracing.error if exc.status_code >= 500 else tracing.warning
    log(f"🚨 HTTP {exc.status_code}: {exc.detail}", **request_context(request))

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.detail, exc.status_code, path=request.url.path),
        headers=getattr(exc, 'headers', None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": " -> ".join(str(x) for x in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        }
        for error in exc.errors()
    ]

    tracing.warning(f"⚠️ Validation error: {len(errors)} errors", **request_context(request))

    return JSONResponse(
        status_code=422,
        content=error_body("Validation error", 422, errors=errors)
    )


async def correlation_exception_handler(request: Request, exc: CorrelationError) -> JSONResponse:
    """Correlation failures that escaped an endpoint; the unit of work was rolled back"""
    tracing.error(f"🔥 Correlation failure: {exc}", error_type=type(exc).__name__, **request_context(request))

    return JSONResponse(
        status_code=500,
        content=error_body("Failed to process evidence observables", 500)
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    tracing.log_error_with_context(f"🔥 UNHANDLED EXCEPTION: {exc}", exception=exc, **request_context(request))

    return JSONResponse(
        status_code=500,
        content=error_body("Internal server error", 500, error_type=type(exc).__name__)
    )


async def starlette_http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    tracing.warning(f"🔍 HTTP {exc.status_code}: {exc.detail}", **request_context(request))

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.detail, exc.status_code)
    )
