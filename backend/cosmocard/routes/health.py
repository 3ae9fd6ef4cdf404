"""
CosmoCard Backend — Health Check Route
========================================

What:  GET /health for Docker and load balancer health checks.
How:   Lightweight checks only: SELECT 1 on the registry, the Gemini circuit
       breaker / model listing, and whether Google credentials load.

Status levels:
    healthy:   everything available
    degraded:  Gemini or Google unavailable (cards can still be read; AI
               results will report unavailable)
    unhealthy: registry unreachable
"""

import logging
import time

from fastapi import APIRouter
from sqlalchemy import text

from cosmocard import __version__
from cosmocard.database import engine
from cosmocard.exceptions import CosmoCardError
from cosmocard.schemas.common import HealthResponse
from cosmocard.services.gemini_service import gemini_service
from cosmocard.services.google_auth import google_clients

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get("/health", response_model=HealthResponse, summary="Service health check")
async def health_check() -> HealthResponse:
    db_status = "connected"
    gemini_status = "available"
    google_status = "configured"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: registry unreachable: %s", str(e))

    if gemini_service.circuit_breaker.state == "open":
        gemini_status = "circuit_open"
    elif not await gemini_service.health_check():
        gemini_status = "unavailable"

    try:
        google_clients.credentials
    except (CosmoCardError, ValueError, OSError) as e:
        google_status = "not_configured"
        logger.warning("Health check: Google credentials unavailable: %s", e)

    if overall != "unhealthy" and (gemini_status != "available" or google_status != "configured"):
        overall = "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        gemini=gemini_status,
        google=google_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
