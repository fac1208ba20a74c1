"""
Bike Benefit Engine - Health Check Router

GET /health - liveness check: 200 whenever the process is up.
"""

from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel

from .. import __version__
from ..config import get_settings

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    environment: str
    version: str


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat(),
        environment=get_settings().ENVIRONMENT,
        version=__version__,
    )
