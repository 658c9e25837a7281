"""Request and response schemas for the HTTP API."""

from __future__ import annotations

import base64
import binascii
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..leads.models import IncomingLead
from .imports import BulkImportConfig, ImportFormat, ParseOptions


class ContentEncoding(str, Enum):
    TEXT = "text"
    BASE64 = "base64"


class _RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FileContent(_RequestModel):
    """File content carried inline in a JSON request body."""

    content: str = Field(..., description="File content as text or base64")
    content_encoding: ContentEncoding = ContentEncoding.TEXT

    def decoded(self) -> str | bytes:
        """
        Return the content ready for a parser.

        Raises:
            ValueError: If base64 content is malformed
        """
        if self.content_encoding is ContentEncoding.TEXT:
            return self.content
        try:
            return base64.b64decode(self.content, validate=True)
        except binascii.Error as exc:
            raise ValueError(f"Invalid base64 content: {exc}") from exc


class ImportPreviewRequest(FileContent):
    format: ImportFormat
    options: ParseOptions | None = None


class ImportRequest(FileContent):
    config: BulkImportConfig
    submitted_by: str = Field(default="api", min_length=1)


class LeadSubmissionRequest(_RequestModel):
    lead: IncomingLead
    submitted_by: str = Field(default="public", min_length=1)


class ErrorResponse(_RequestModel):
    status: str = "error"
    message: str
    error_type: str
    details: dict[str, Any] | None = None


class CancelResponse(_RequestModel):
    job_id: str
    cancelled: bool
