from __future__ import annotations

from typing import Any

from woozy.apps.api.response import ErrorEnvelope


def _error_response(
    description: str,
    *,
    code: str,
    message: str,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    # Document the flat error body the web client parses.
    example: dict[str, Any] = {"success": False, "error": message, "code": code}
    if extra:
        example.update(extra)
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _error_response(
        "Validation error",
        code="VALIDATION_ERROR",
        message="Business name must be between 2 and 100 characters",
    ),
    401: _error_response("Unauthorized", code="UNAUTHORIZED", message="Authentication required"),
    402: _error_response(
        "Plan limit reached",
        code="PAYMENT_REQUIRED",
        message="Workspace limit reached for your plan",
        extra={"current_count": 1, "tier": "solo"},
    ),
    403: _error_response("Forbidden", code="NOT_MEMBER", message="Not a workspace member"),
    404: _error_response("Not found", code="NOT_FOUND", message="Invitation not found"),
    500: _error_response(
        "Store failure",
        code="DB_ERROR",
        message="Database error: failed to verify membership",
    ),
}
