"""Health check endpoints."""

import sqlite3
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel

from core import __version__
from core.observability.metrics import get_metrics


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    services: Dict[str, str]


def _database_status(request: Request) -> str:
    db_path = request.app.state.services.committer.db_path
    try:
        conn = sqlite3.connect(db_path)
        try:
            conn.execute("SELECT COUNT(*) FROM import_history").fetchone()
        finally:
            conn.close()
    except sqlite3.Error:
        return "down"
    return "up"


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint."""
    database = _database_status(request)
    return HealthResponse(
        status="healthy" if database == "up" else "degraded",
        timestamp=datetime.utcnow().isoformat(),
        version=__version__,
        services={
            "api": "up",
            "database": database,
        }
    )


@router.get("/metrics")
async def metrics_summary() -> Dict[str, Any]:
    """In-process counters and timings."""
    return get_metrics().get_summary()


@router.get("/ready")
async def readiness_check() -> Dict[str, str]:
    """Readiness probe for Kubernetes."""
    return {"status": "ready"}


@router.get("/live")
async def liveness_check(response: Response) -> Dict[str, str]:
    """Liveness probe for Kubernetes."""
    return {"status": "alive"}
