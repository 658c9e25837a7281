"""FastAPI application for the Lead_Ingestor service."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..bulk_import import BulkImportService
from ..engine import IngestionEngine
from ..exceptions import (
    ContentTooLargeError,
    ImportNotFoundError,
    JobNotFoundError,
    JobTimeoutError,
    LeadIngestorError,
    ParseError,
    SourceDisabledError,
    SourceNotFoundError,
    TransformationError,
)
from ..leads.collaborators import LeadCollaborators
from ..leads.registration import register_lead_sources
from ..schemas.requests import ErrorResponse
from ..utils.config import GlobalSettings, get_settings, load_data_sources
from ..utils.logging import setup_logger
from .routes import health, imports, ingestion

logger = setup_logger(__name__, context={"source_type": "api"})

_STATUS_BY_ERROR: tuple[tuple[type[LeadIngestorError], int], ...] = (
    (SourceNotFoundError, status.HTTP_404_NOT_FOUND),
    (JobNotFoundError, status.HTTP_404_NOT_FOUND),
    (ImportNotFoundError, status.HTTP_404_NOT_FOUND),
    (SourceDisabledError, status.HTTP_409_CONFLICT),
    (ContentTooLargeError, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE),
    (ParseError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (TransformationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (JobTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
)


def status_code_for(exc: LeadIngestorError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def build_engine(
    settings: GlobalSettings, collaborators: LeadCollaborators | None = None
) -> tuple[IngestionEngine, LeadCollaborators]:
    """Create an engine with the lead sources and any YAML-declared sources."""

    engine = IngestionEngine(settings)
    wired = register_lead_sources(engine, collaborators or LeadCollaborators.from_settings(settings))
    if settings.sources_file is not None:
        engine.register_sources(load_data_sources(settings.sources_file))
    return engine, wired


def create_app(
    settings: GlobalSettings | None = None,
    *,
    collaborators: LeadCollaborators | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use (defaults to the cached environment settings)
        collaborators: Lead pipeline services (defaults built from settings)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # type: ignore[no-untyped-def]
        resolved = settings or get_settings()
        engine, wired = build_engine(resolved, collaborators)
        app.state.settings = resolved
        app.state.engine = engine
        app.state.collaborators = wired
        app.state.import_service = BulkImportService(engine, resolved)
        logger.info("Lead_Ingestor API starting up...")
        yield
        logger.info("Lead_Ingestor API shutting down...")
        await engine.shutdown()

    application = FastAPI(
        title="Lead_Ingestor API",
        description="Lead and bulk data ingestion service",
        version="0.1.0",
        lifespan=lifespan,
    )

    @application.exception_handler(LeadIngestorError)
    async def lead_ingestor_exception_handler(
        request: Request, exc: LeadIngestorError
    ) -> JSONResponse:
        """Map domain exceptions to JSON error bodies."""

        status_code = status_code_for(exc)
        log_method = logger.error if status_code >= 500 else logger.warning
        log_method(
            "%s: %s",
            exc.__class__.__name__,
            exc,
            extra={"status": "error", "source_id": getattr(exc, "source_id", "-")},
        )
        body = ErrorResponse(message=str(exc), error_type=exc.__class__.__name__)
        return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))

    application.include_router(health.router, tags=["health"])
    application.include_router(ingestion.router, prefix="/api/v1", tags=["ingestion"])
    application.include_router(imports.router, prefix="/api/v1", tags=["imports"])
    return application


app = create_app()
