"""Data source, ingestion job and lead submission endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from ...engine import IngestionEngine
from ...exceptions import JobNotFoundError
from ...leads.registration import ingest_lead
from ...schemas.ingestion import IngestionJob
from ...schemas.requests import CancelResponse, LeadSubmissionRequest
from ...schemas.source import DataSource
from ...utils.logging import job_context, setup_logger
from ..dependencies import get_engine

logger = setup_logger(__name__, context={"source_type": "api"})
router = APIRouter()


@router.get("/sources", response_model=list[DataSource])
async def list_sources(engine: IngestionEngine = Depends(get_engine)) -> list[DataSource]:
    return engine.get_sources()


@router.get("/jobs", response_model=list[IngestionJob])
async def list_active_jobs(engine: IngestionEngine = Depends(get_engine)) -> list[IngestionJob]:
    return engine.get_active_jobs()


@router.get("/jobs/{job_id}", response_model=IngestionJob)
async def get_job(job_id: str, engine: IngestionEngine = Depends(get_engine)) -> IngestionJob:
    """Return an active job. Finished jobs are evicted and report 404."""

    job = engine.get_job_status(job_id)
    if job is None:
        raise JobNotFoundError(f"Job {job_id} is not active")
    return job


@router.post("/jobs/{job_id}/cancel", response_model=CancelResponse)
async def cancel_job(job_id: str, engine: IngestionEngine = Depends(get_engine)) -> CancelResponse:
    return CancelResponse(job_id=job_id, cancelled=engine.cancel_ingestion(job_id))


@router.post(
    "/leads",
    response_model=IngestionJob,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_lead(
    request: LeadSubmissionRequest,
    wait: bool = Query(default=False, description="Wait for the job to finish"),
    engine: IngestionEngine = Depends(get_engine),
) -> IngestionJob:
    """
    Submit a single lead to the source matching its source type.

    Args:
        request: Lead and submitter identity
        wait: When true, respond with the finished job instead of the pending handle

    Returns:
        The ingestion job handle
    """
    job = ingest_lead(engine, request.lead, request.submitted_by)
    logger.info("Lead submitted", extra=job_context(job))
    if wait:
        return await engine.wait_for_job(job.id) or job
    return job
