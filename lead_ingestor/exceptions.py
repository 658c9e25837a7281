"""Custom exceptions for Lead_Ingestor."""

from __future__ import annotations


class LeadIngestorError(Exception):
    """Base exception for all Lead_Ingestor errors."""

    pass


class ConfigurationError(LeadIngestorError):
    """Raised when configuration is invalid or missing."""

    pass


class SourceError(LeadIngestorError):
    """Raised when an ingestion job cannot be started for a data source."""

    def __init__(self, source_id: str, message: str) -> None:
        super().__init__(message)
        self.source_id = source_id


class SourceNotFoundError(SourceError):
    """Raised when the requested data source is not registered."""

    def __init__(self, source_id: str) -> None:
        super().__init__(source_id, f"Unknown source: {source_id}")


class SourceDisabledError(SourceError):
    """Raised when the requested data source is registered but disabled."""

    def __init__(self, source_id: str) -> None:
        super().__init__(source_id, f"Source {source_id} is disabled")


class JobNotFoundError(LeadIngestorError):
    """Raised when an ingestion job id is unknown."""

    pass


class JobTimeoutError(LeadIngestorError):
    """Raised when waiting on an ingestion job exceeds its deadline."""

    def __init__(self, job_id: str, timeout_seconds: float) -> None:
        super().__init__(f"Job {job_id} did not finish within {timeout_seconds:g}s")
        self.job_id = job_id
        self.timeout_seconds = timeout_seconds


class ParseError(LeadIngestorError):
    """Raised when an uploaded file cannot be parsed."""

    pass


class UnsupportedFormatError(ParseError):
    """Raised when no parser is registered for the requested format."""

    pass


class ContentTooLargeError(ParseError):
    """Raised when uploaded content exceeds the configured size limit."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Upload of {size} bytes exceeds the limit of {limit} bytes")
        self.size = size
        self.limit = limit


class UnsupportedCompressionError(ParseError):
    """Raised when an archive entry uses a compression method we cannot read."""

    def __init__(self, entry_name: str, method: int) -> None:
        super().__init__(
            f"Archive entry '{entry_name}' uses unsupported compression method {method}"
        )
        self.entry_name = entry_name
        self.method = method


class TransformationError(LeadIngestorError):
    """Raised when a transformation or field mapping cannot be applied."""

    pass


class PipelineStepError(LeadIngestorError):
    """Raised by a pipeline step that rejects the record it was given."""

    def __init__(self, step_name: str, message: str) -> None:
        super().__init__(message)
        self.step_name = step_name


class CaseResolutionError(LeadIngestorError):
    """Raised when a case number cannot be resolved to a case id."""

    def __init__(self, case_number: str, message: str) -> None:
        super().__init__(message)
        self.case_number = case_number


class CaseNotFoundError(CaseResolutionError):
    """Raised when no case matches the case number."""

    def __init__(self, case_number: str) -> None:
        super().__init__(case_number, f"Case not found: {case_number}")


class AmbiguousCaseError(CaseResolutionError):
    """Raised when more than one case matches the case number."""

    def __init__(self, case_number: str, candidates: list[str]) -> None:
        super().__init__(
            case_number,
            f"Case number {case_number} matches {len(candidates)} cases",
        )
        self.candidates = candidates


class GeocodingError(LeadIngestorError):
    """Raised when a geocoding lookup fails."""

    pass


class ImportNotFoundError(LeadIngestorError):
    """Raised when a bulk import id is unknown."""

    pass
