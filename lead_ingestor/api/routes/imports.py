"""Bulk import endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from ...bulk_import import BulkImportService
from ...exceptions import ImportNotFoundError
from ...schemas.imports import ImportPreview, ImportResult
from ...schemas.requests import CancelResponse, ImportPreviewRequest, ImportRequest
from ..dependencies import decode_file_content, get_import_service

router = APIRouter(prefix="/imports")


@router.post("/preview", response_model=ImportPreview)
async def preview_import(
    request: ImportPreviewRequest,
    service: BulkImportService = Depends(get_import_service),
) -> ImportPreview:
    content = decode_file_content(request)
    return await service.preview_import(content, request.format, request.options)


@router.post("", response_model=ImportResult, status_code=status.HTTP_202_ACCEPTED)
async def start_import(
    request: ImportRequest,
    wait: bool = Query(default=False, description="Wait for the import to finish"),
    service: BulkImportService = Depends(get_import_service),
) -> ImportResult:
    """Start a bulk import and return its result handle."""

    content = decode_file_content(request)
    result = service.start_import(content, request.config, request.submitted_by)
    if wait:
        return await service.wait_for_import(result.job_id) or result
    return result


@router.get("/{job_id}", response_model=ImportResult)
async def get_import(
    job_id: str, service: BulkImportService = Depends(get_import_service)
) -> ImportResult:
    result = service.get_import_status(job_id)
    if result is None:
        raise ImportNotFoundError(f"Import {job_id} not found")
    return result


@router.post("/{job_id}/cancel", response_model=CancelResponse)
async def cancel_import(
    job_id: str, service: BulkImportService = Depends(get_import_service)
) -> CancelResponse:
    if service.get_import_status(job_id) is None:
        raise ImportNotFoundError(f"Import {job_id} not found")
    return CancelResponse(job_id=job_id, cancelled=service.cancel_import(job_id))
