"""Health check endpoints."""

from datetime import datetime
from typing import Dict

from fastapi import APIRouter, Response
from pydantic import BaseModel

from core.settings import get_settings


router = APIRouter()

API_VERSION = "1.0.0"


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    services: Dict[str, str]


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    database = "up" if get_settings().db_path.exists() else "not_initialized"
    return HealthResponse(
        status="healthy" if database == "up" else "degraded",
        timestamp=datetime.utcnow().isoformat(),
        version=API_VERSION,
        services={
            "api": "up",
            "database": database,
        }
    )


@router.get("/ready")
async def readiness_check(response: Response) -> Dict[str, str]:
    """Readiness check; not ready until the database file exists."""
    if not get_settings().db_path.exists():
        response.status_code = 503
        return {"status": "not_ready"}
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """Liveness check for Kubernetes."""
    return {"status": "alive"}
