"""Configuration management for n8n-transfer.

This module provides centralized configuration using Pydantic Settings,
supporting environment variables, .env files and YAML configuration files,
plus the per-run ``TransferOptions`` model.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DEDUPLICATOR = "standard-deduplicator"
DEFAULT_VALIDATORS = ["integrity-validator"]
DEFAULT_REPORTERS = ["markdown-reporter"]


class InstanceSettings(BaseSettings):
    """Connection settings for one n8n instance."""

    url: Optional[str] = Field(default=None, description="Base URL of the n8n instance")
    api_key: Optional[SecretStr] = Field(default=None, description="n8n public API key")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate that the URL is an http(s) URL."""
        if v is None:
            return v
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Invalid instance URL: {v}. Must start with http:// or https://")
        return v

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.api_key and self.api_key.get_secret_value())


class SourceSettings(InstanceSettings):
    """Source instance settings (SOURCE_URL, SOURCE_API_KEY, SOURCE_TIMEOUT)."""

    model_config = SettingsConfigDict(env_prefix="SOURCE_")


class TargetSettings(InstanceSettings):
    """Target instance settings (TARGET_URL, TARGET_API_KEY, TARGET_TIMEOUT)."""

    model_config = SettingsConfigDict(env_prefix="TARGET_")


class TransferSettings(BaseSettings):
    """Transfer engine settings."""

    parallelism: int = Field(default=3, ge=1, le=10)
    max_attempts: int = Field(default=3, ge=1, le=10)
    backoff_base: float = Field(default=1.0, ge=0)
    backoff_max: float = Field(default=30.0, ge=0)
    request_delay: float = Field(default=0.0, ge=0, description="Seconds to wait after each write")
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    plugin_dirs: List[Path] = Field(default_factory=list)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v.lower() not in ("json", "console"):
            raise ValueError(f"Invalid log format: {v}. Must be 'json' or 'console'")
        return v.lower()

    model_config = SettingsConfigDict(env_prefix="TRANSFER_")


class Settings(BaseSettings):
    """Main application settings."""

    source: SourceSettings = Field(default_factory=SourceSettings)
    target: TargetSettings = Field(default_factory=TargetSettings)
    transfer: TransferSettings = Field(default_factory=TransferSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )


class TransferFilters(BaseModel):
    """Selection of source workflows for a run.

    ``tags`` keeps workflows carrying any of the tags; ``exclude_tags`` drops
    workflows carrying any of them (untagged workflows are never excluded).
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    workflow_ids: List[str] = Field(default_factory=list, alias="workflowIds")
    workflow_names: List[str] = Field(default_factory=list, alias="workflowNames")
    tags: List[str] = Field(default_factory=list)
    exclude_tags: List[str] = Field(default_factory=list, alias="excludeTags")


class TransferOptions(BaseModel):
    """Options for one transfer run.

    Attributes:
        filters: Source workflow selection
        dry_run: Run validation and deduplication without writing
        parallelism: Worker count; falls back to ``TransferSettings.parallelism``
        deduplicator: Deduplicator plugin name, or None to disable deduplication
        validators: Validator plugin names, or None for every enabled validator
        reporters: Reporter plugin names run after the transfer
        skip_credentials: Skip workflows whose nodes reference credentials
        require_validators: Abort the run when no validator is available
        transfer_tags: Recreate source tags on the target instance
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    filters: TransferFilters = Field(default_factory=TransferFilters)
    dry_run: bool = Field(default=False, alias="dryRun")
    parallelism: Optional[int] = Field(default=None, ge=1, le=10)
    deduplicator: Optional[str] = DEFAULT_DEDUPLICATOR
    validators: Optional[List[str]] = Field(default_factory=lambda: list(DEFAULT_VALIDATORS))
    reporters: List[str] = Field(default_factory=lambda: list(DEFAULT_REPORTERS))
    skip_credentials: bool = Field(default=False, alias="skipCredentials")
    require_validators: bool = Field(default=False, alias="requireValidators")
    transfer_tags: bool = Field(default=True, alias="transferTags")

    @classmethod
    def coerce(cls, options: Union["TransferOptions", Dict[str, Any], None]) -> "TransferOptions":
        """Accept a model, a plain mapping or None."""
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        return cls.model_validate(options)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance with loaded configuration
    """
    return Settings()


def reload_settings() -> Settings:
    """Reload settings from environment.

    Returns:
        Fresh Settings instance
    """
    get_settings.cache_clear()
    return get_settings()


def load_settings(path: Union[str, Path]) -> Settings:
    """Load settings from a YAML file layered over the environment.

    The file may contain ``source``, ``target`` and ``transfer`` sections;
    values from the file take precedence over environment variables.

    Args:
        path: Path to the YAML file

    Returns:
        Settings instance

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file does not hold a mapping
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")

    return Settings(
        source=SourceSettings(**(data.get("source") or {})),
        target=TargetSettings(**(data.get("target") or {})),
        transfer=TransferSettings(**(data.get("transfer") or {})),
    )
