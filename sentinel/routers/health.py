"""Health-check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from sentinel import __version__
from sentinel.models.responses import HealthResponse
from sentinel.services.ai_client import ai_client

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def service_health() -> HealthResponse:
    """Basic liveness probe (no auth required)."""
    return HealthResponse(status="ok", version=__version__, provider=ai_client.describe())
