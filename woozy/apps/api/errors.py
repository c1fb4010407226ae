from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from woozy.apps.api.response import error_response, get_request_id


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    402: "PAYMENT_REQUIRED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "VALIDATION_ERROR",
    500: "ERROR",
}


def _default_code(status_code: int) -> str:
    # Map status codes to fallback error codes when none are provided.
    return _DEFAULT_ERROR_CODES.get(status_code, "ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any]]:
    # Extract code/message/extras from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        extra = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, extra
    if isinstance(detail, str):
        return _default_code(status_code), detail, {}
    return _default_code(status_code), "Request failed", {}


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code, message, extra = _split_detail(exc.detail, exc.status_code)
    return JSONResponse(
        content=error_response(message, code, **extra),
        status_code=exc.status_code,
        headers=exc.headers,
    )


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    # Routing errors (404 unknown path, 405 wrong method) use the same body.
    code, message, extra = _split_detail(exc.detail, exc.status_code)
    return JSONResponse(
        content=error_response(message, code, **extra),
        status_code=exc.status_code,
        headers=exc.headers,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Invalid input is a 400 in this API; field details help the UI point at the bad input.
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"Invalid {location}: {first.get('msg')}" if location else "Invalid request"
    payload = error_response(
        message,
        "VALIDATION_ERROR",
        fields=[".".join(str(part) for part in err.get("loc", ())) for err in errors],
    )
    return JSONResponse(content=payload, status_code=400)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; the request id ties the log line to the client report.
    logger.error(
        "unhandled_exception request_id=%s path=%s",
        get_request_id(request),
        request.url.path,
        exc_info=exc,
    )
    return JSONResponse(content=error_response("Internal server error", "ERROR"), status_code=500)
