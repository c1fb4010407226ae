from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel


API_VERSION = "v1"

T = TypeVar("T")


class SuccessEnvelope(BaseModel, Generic[T]):
    # Body shape shared with the web client for every successful call.
    success: bool = True
    data: T
    message: str | None = None


class ErrorEnvelope(BaseModel):
    success: bool = False
    error: str
    code: str


def get_request_id(request: Request) -> str:
    # Use existing request IDs when provided to preserve traceability.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    header_request_id = request.headers.get("X-Request-Id")
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = str(uuid4())
    request.state.request_id = generated
    return generated


def success_response(data: Any = None, message: str | None = None) -> dict[str, Any]:
    return {"success": True, "data": {} if data is None else data, "message": message}


def error_response(message: str, code: str = "ERROR", **extra: Any) -> dict[str, Any]:
    # Extra keys (limits, counts) ride alongside the fixed fields.
    payload: dict[str, Any] = {"success": False, "error": message, "code": code}
    payload.update(extra)
    return payload
