from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException


# Status table shared with the web client; keep values stable for API compatibility.
ACCESS_ERROR_STATUS: dict[str, int] = {
    "NOT_MEMBER": 403,
    "INSUFFICIENT_PERMISSIONS": 403,
    "FORBIDDEN": 403,
    "UNAUTHORIZED": 401,
    "NOT_FOUND": 404,
    "BAD_REQUEST": 400,
    "PAYMENT_REQUIRED": 402,
    "ERROR": 500,
}

# Codes emitted by handlers and resolvers that are not part of the access table.
SUPPLEMENTARY_ERROR_STATUS: dict[str, int] = {
    "VALIDATION_ERROR": 400,
    "INVALID_MEMBER": 400,
    "SUBSCRIPTION_REQUIRED": 402,
    "METHOD_NOT_ALLOWED": 405,
    "DB_ERROR": 500,
    "DATABASE_ERROR": 500,
    "VERIFICATION_ERROR": 500,
    "INTERNAL_ERROR": 500,
}


def error_status(code: str, status_code: int = 400) -> int:
    # The access table always wins over the caller-provided status.
    if code in ACCESS_ERROR_STATUS:
        return ACCESS_ERROR_STATUS[code]
    return SUPPLEMENTARY_ERROR_STATUS.get(code, status_code)


def api_error(
    message: str,
    code: str = "ERROR",
    status_code: int = 400,
    **extra: Any,
) -> HTTPException:
    # Build the HTTPException services raise; handlers render it as the error body.
    detail: dict[str, Any] = {"code": code, "message": message}
    detail.update(extra)
    return HTTPException(status_code=error_status(code, status_code), detail=detail)


def store_error(
    log: logging.Logger,
    operation: str,
    exc: Exception,
    message: str,
    **ids: Any,
) -> HTTPException:
    # Log the store failure with its ids; the client only sees the generic message.
    context = " ".join(f"{key}={value}" for key, value in ids.items())
    log.error("%s_failed %s", operation, context, exc_info=exc)
    return api_error(message, "DATABASE_ERROR", 500)
