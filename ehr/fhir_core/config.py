"""
Configuration management for fhir-core.

All configuration is done via environment variables, loaded with
pydantic-settings. Each section has its own prefix so the engine can be
embedded in a service that owns other settings.

Invariants:
    - All settings have sensible defaults for local development and tests
    - The memory history backend is never used silently in production:
      selecting it is always explicit (it is the default only for dev/test)

How to change safely:
    - Add new settings with defaults that keep existing deployments working
    - Keep prefixes stable; they are part of the deployment contract
"""

from __future__ import annotations

import logging
import os
from enum import Enum

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class HistoryBackend(str, Enum):
    """Supported history store backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


class SearchSettings(BaseSettings):
    """Search compilation and paging settings."""

    default_page_size: int = Field(default=20, description="Default _count")
    max_page_size: int = Field(default=100, description="Larger _count values are clamped")

    model_config = {"env_prefix": "FHIR_SEARCH_"}


class HistorySettings(BaseSettings):
    """Version history store settings."""

    backend: HistoryBackend = Field(default=HistoryBackend.MEMORY)
    data_dir: str = Field(default="/var/lib/fhir-core", description="Directory for SQLite files")
    db_filename: str = Field(default="resource_history.db")
    wal_mode: bool = Field(default=True, description="SQLite WAL journal mode")
    busy_timeout_ms: int = Field(default=5000, description="SQLite busy timeout")

    # _history paging
    default_page_size: int = Field(default=20)
    max_page_size: int = Field(default=500)

    model_config = {"env_prefix": "FHIR_HISTORY_"}


class ObservabilitySettings(BaseSettings):
    """Logging configuration."""

    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING, ERROR")
    log_format: str = Field(default="json", description="json or text")

    model_config = {"env_prefix": "FHIR_"}


class Settings(BaseModel):
    """Complete engine configuration.

    Attributes:
        search: Search compiler / paging settings
        history: History store settings
        observability: Logging settings
    """

    search: SearchSettings = Field(default_factory=SearchSettings)
    history: HistorySettings = Field(default_factory=HistorySettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load every section from environment variables.

        Raises:
            ValueError: If the combined configuration is inconsistent.
        """
        settings = cls(
            search=SearchSettings(),
            history=HistorySettings(),
            observability=ObservabilitySettings(),
        )
        settings.validate_settings()
        return settings

    def validate_settings(self) -> None:
        """Validate cross-field consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        for name, section in (("search", self.search), ("history", self.history)):
            if section.default_page_size < 1:
                raise ValueError(f"{name}.default_page_size must be positive")
            if section.max_page_size < section.default_page_size:
                raise ValueError(f"{name}.max_page_size must be >= default_page_size")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(f"Invalid log format '{self.observability.log_format}'. Must be json or text")

        if self.history.backend == HistoryBackend.SQLITE:
            if not self.history.db_filename:
                raise ValueError("FHIR_HISTORY_DB_FILENAME is required when backend=sqlite")
            if not os.path.exists(self.history.data_dir):
                logger.warning(
                    f"History data directory does not exist: {self.history.data_dir}. "
                    "It will be created on first write."
                )

    def log_settings(self) -> None:
        """Log the effective configuration."""
        logger.info(
            "fhir-core configuration loaded",
            extra={
                "history_backend": self.history.backend.value,
                "history_data_dir": self.history.data_dir
                if self.history.backend == HistoryBackend.SQLITE
                else None,
                "search_max_page_size": self.search.max_page_size,
                "history_max_page_size": self.history.max_page_size,
                "log_level": self.observability.log_level,
            },
        )
