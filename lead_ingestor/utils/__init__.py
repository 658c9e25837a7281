"""Utilities package initialization."""
from .config import (
    GeocodingSettings,
    GlobalSettings,
    RetrySettings,
    get_settings,
    load_data_sources,
    load_yaml_config,
    validate_config,
)
from .logging import job_context, log_import_outcome, log_job_outcome, setup_logger

__all__ = [
    "GeocodingSettings",
    "GlobalSettings",
    "RetrySettings",
    "get_settings",
    "job_context",
    "load_data_sources",
    "load_yaml_config",
    "log_import_outcome",
    "log_job_outcome",
    "setup_logger",
    "validate_config",
]
