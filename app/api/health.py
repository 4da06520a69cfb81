"""
Health check endpoints for the admin API.
"""

import logging
import time
from datetime import datetime

from fastapi import APIRouter, Request, status
from pydantic import BaseModel

logger = logging.getLogger(__name__)

# Track service start time for uptime calculation
SERVICE_START_TIME = time.time()

router = APIRouter(tags=["health"])


class HealthStatus(BaseModel):
    """Health status response model."""

    status: str
    timestamp: datetime
    uptime_seconds: float
    ready: bool
    version: str = "1.0.0"


@router.get(
    "/health",
    response_model=HealthStatus,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
    description="Returns service health and whether the auto-indexer is initialized.",
)
async def health(request: Request) -> HealthStatus:
    """
    Liveness probe. Always 200 while the process is up; `ready` reports
    whether the auto-indexer has been attached.
    """
    uptime = time.time() - SERVICE_START_TIME

    return HealthStatus(
        status="healthy",
        timestamp=datetime.utcnow(),
        uptime_seconds=round(uptime, 2),
        ready=getattr(request.app.state, "indexer", None) is not None,
    )
