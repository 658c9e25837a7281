"""Health check and Prometheus metrics endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ...engine import IngestionEngine
from ..dependencies import get_engine

router = APIRouter()


@router.get("/health")
async def health_check(engine: IngestionEngine = Depends(get_engine)) -> dict[str, Any]:
    """Report liveness together with registry and job table sizes."""

    sources = engine.get_sources()
    return {
        "status": "healthy",
        "service": "lead_ingestor",
        "sources": len(sources),
        "enabled_sources": sum(1 for source in sources if source.enabled),
        "active_jobs": len(engine.get_active_jobs()),
    }


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Expose Prometheus metrics collected by the service."""

    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
