"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from ..bulk_import import BulkImportService
from ..engine import IngestionEngine
from ..schemas.requests import FileContent


def get_engine(request: Request) -> IngestionEngine:
    """Return the ingestion engine created by the application lifespan."""

    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ingestion engine is not initialised.",
        )
    return engine


def get_import_service(request: Request) -> BulkImportService:
    service = getattr(request.app.state, "import_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Bulk import service is not initialised.",
        )
    return service


def decode_file_content(body: FileContent) -> str | bytes:
    """Decode inline file content, mapping malformed base64 to HTTP 422."""

    try:
        return body.decoded()
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
