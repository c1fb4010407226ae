from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from woozy.apps.api.response import SuccessEnvelope, success_response
from woozy.core.config import get_settings

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    service: str


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health() -> dict:
    # Liveness only; no store round trip so a database outage does not fail the liveness check.
    payload = HealthResponse(status="ok", service=get_settings().app_name)
    return success_response(payload)
