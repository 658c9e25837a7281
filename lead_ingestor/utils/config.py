"""Configuration loader and settings helpers for Lead_Ingestor."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..exceptions import ConfigurationError

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..schemas.source import DataSource


logger = logging.getLogger(__name__)


def load_yaml_config(config_path: str | Path) -> dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Configuration dictionary

    Raises:
        ConfigurationError: If file not found or invalid YAML
    """
    try:
        with open(config_path) as f:
            config = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration in {config_path} must be a mapping")
    return config


def validate_config(config: dict[str, Any], model: type[BaseModel]) -> BaseModel:
    """
    Validate configuration against Pydantic model.

    Args:
        config: Configuration dictionary
        model: Pydantic model class for validation

    Returns:
        Validated configuration model instance

    Raises:
        ConfigurationError: If validation fails
    """
    try:
        return model.model_validate(config)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}")


def load_data_sources(config_path: str | Path) -> list[DataSource]:
    """Load declarative data source definitions from a YAML file.

    The document must contain a top-level ``sources`` list; each entry is
    validated as a :class:`~lead_ingestor.schemas.source.DataSource`.
    """

    from ..schemas.source import DataSource

    document = load_yaml_config(config_path)
    entries = document.get("sources", [])
    if not isinstance(entries, list):
        raise ConfigurationError(f"'sources' in {config_path} must be a list")

    sources: list[DataSource] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Source #{index} in {config_path} must be a mapping")
        sources.append(validate_config(entry, DataSource))  # type: ignore[arg-type]
    return sources


class RetrySettings(BaseModel):
    """Retry behaviour for outbound HTTP calls."""

    model_config = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=3, ge=1)
    backoff_factor: float = Field(default=0.5, gt=0)
    max_backoff: float = Field(default=10.0, gt=0)
    status_forcelist: list[int] = Field(default_factory=lambda: [429, 500, 502, 503, 504])


class GeocodingSettings(BaseModel):
    """Nominatim-compatible geocoding configuration."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    base_url: str = "https://nominatim.openstreetmap.org"
    user_agent: str = "LeadIngestor/0.1 (Missing Persons Assistance)"
    timeout_seconds: float = Field(default=10.0, gt=0)
    default_country: str | None = "Canada"
    retry: RetrySettings = Field(default_factory=RetrySettings)


class GlobalSettings(BaseSettings):
    """Global application settings sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LEAD_INGESTOR_",
        env_nested_delimiter="__",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    log_level: str = "INFO"
    batch_size: int = Field(default=100, ge=1)
    batch_poll_interval_seconds: float = Field(default=0.5, gt=0)
    batch_timeout_seconds: float = Field(default=60.0, gt=0)
    batch_delay_seconds: float = Field(default=0.1, ge=0)
    preview_rows: int = Field(default=10, ge=1)
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    rollback_mode: Literal["executed", "all"] = "executed"
    sources_file: Path | None = None
    field_synonyms: dict[str, str] = Field(default_factory=dict)
    geocoding: GeocodingSettings = GeocodingSettings()

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        """Ensure log level values are uppercase for logging config."""

        return value.upper()

    @field_validator("environment")
    @classmethod
    def _normalize_environment(cls, value: str) -> str:
        return value.lower()

    @field_validator("rollback_mode", mode="before")
    @classmethod
    def _normalize_rollback_mode(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("sources_file", mode="before")
    @classmethod
    def _expand_sources_file(cls, value: Any) -> Any:
        """Allow string paths and expand user markers."""

        if value is None or value == "":
            return None
        if isinstance(value, str):
            return Path(value).expanduser()
        return value


@lru_cache(maxsize=1)
def _get_settings_cached() -> GlobalSettings:
    return GlobalSettings()


def get_settings(*, reload: bool = False) -> GlobalSettings:
    """Return cached settings, optionally forcing a reload."""

    if reload:
        _get_settings_cached.cache_clear()
    return _get_settings_cached()


