"""
Centralized configuration management for the sustainability self-assessment service.

Provides environment-specific configuration with validation, type safety,
and settings management using Pydantic.
"""

from __future__ import annotations

import os
from functools import cached_property
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings
from sqlalchemy.pool import StaticPool


class BackendConfig(BaseSettings):
    """
    Settings for the external assessment backend.

    Example:
        >>> backend = BackendConfig(base_url="http://api.example.org")
        >>> print(backend.url_for("/autoevaluaciones/1/estructura"))
        >>> # http://api.example.org/api/v1/autoevaluaciones/1/estructura
    """

    base_url: str = Field("http://localhost:8080", description="Backend base URL")
    api_prefix: str = Field("/api/v1", description="Path prefix for every backend endpoint")
    timeout_seconds: float = Field(30.0, gt=0, description="Request timeout (seconds)")

    model_config = {"env_prefix": "BACKEND_", "case_sensitive": False}

    @field_validator("base_url")
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")

    @field_validator("api_prefix")
    def normalise_prefix(cls, v):
        if not v:
            return ""
        return "/" + v.strip("/")

    def url_for(self, path: str) -> str:
        return f"{self.base_url}{self.api_prefix}/{path.lstrip('/')}"


class StorageConfig(BaseSettings):
    """
    Local key-value persistence settings.

    The ``memory`` backend keeps everything in-process; ``sqlite`` persists
    across restarts through SQLAlchemy.
    """

    backend: Literal["memory", "sqlite"] = Field("sqlite", description="Store backend")
    sqlite_path: str = Field("./autoevaluacion.db", description="SQLite database file path")
    echo: bool = Field(False, description="Enable SQL query logging")

    model_config = {"env_prefix": "STORAGE_", "case_sensitive": False}

    @field_validator("sqlite_path")
    def validate_sqlite_path(cls, v):
        """Validate SQLite path and ensure directory exists."""
        if v and v != ":memory:":
            path = Path(v)
            path.parent.mkdir(parents=True, exist_ok=True)
            if not path.suffix:
                v = str(path.with_suffix(".db"))
        return v

    def get_connection_url(self) -> str:
        if self.backend != "sqlite":
            raise ValueError(f"Storage backend '{self.backend}' has no connection URL")
        return f"sqlite:///{self.sqlite_path}"

    def get_engine_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {
            "echo": self.echo,
            "future": True,
            "connect_args": {"check_same_thread": False},
        }
        if self.sqlite_path == ":memory:":
            # one shared connection, otherwise every session sees an empty database
            options["poolclass"] = StaticPool
        return options


class LoggingConfig(BaseSettings):
    """
    Logging configuration settings.

    Example:
        >>> log_config = LoggingConfig(level="DEBUG", file_path="./logs/app.log")
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        "INFO", description="Minimum logging level"
    )
    file_path: str | None = Field(None, description="Log file path")
    structured: bool = Field(False, description="JSON lines on the console too")
    console_enabled: bool = Field(True, description="Enable console output")

    model_config = {"env_prefix": "LOG_", "case_sensitive": False}


class ScoringConfig(BaseSettings):
    """Thresholds for the percentage-only tier fallback."""

    high_threshold: int = Field(75, ge=0, le=100)
    medium_threshold: int = Field(50, ge=0, le=100)

    model_config = {"env_prefix": "SCORING_", "case_sensitive": False}

    @model_validator(mode="after")
    def thresholds_ordered(self):
        if self.medium_threshold > self.high_threshold:
            raise ValueError("medium_threshold cannot exceed high_threshold")
        return self


class ApplicationConfig(BaseSettings):
    """
    Main application configuration.

    Example:
        >>> config = get_settings()
        >>> print(config.app.environment)
    """

    title: str = Field("COVIAR Autoevaluación de Sostenibilidad", description="App title")
    environment: Literal["development", "testing", "production"] = Field(
        "development", description="Application environment"
    )
    debug: bool = Field(False, description="Enable debug mode")
    version: str = Field("0.1.0", description="Application version")
    host: str = Field("0.0.0.0", description="Bind host for the development server")
    port: int = Field(8000, ge=1, le=65535, description="Bind port for the development server")
    reload: bool = Field(False, description="Enable uvicorn auto-reload")

    model_config = {"env_prefix": "APP_", "case_sensitive": False}

    @model_validator(mode="after")
    def debug_implies_development(self):
        """Ensure debug mode is only enabled outside production."""
        if self.debug and self.environment == "production":
            raise ValueError("Debug mode cannot be enabled in production")
        return self


class Settings:
    """
    The configuration sections, each read from its env prefix on first use.

    Keyword overrides are per section and win over the environment, so tests
    can build settings without touching ``os.environ``:

        >>> settings = Settings(backend={"base_url": "http://backend.test"})
        >>> settings.backend.url_for("/registro")
        'http://backend.test/api/v1/registro'
    """

    def __init__(self, **overrides: dict[str, Any]):
        unknown = set(overrides) - {"app", "backend", "storage", "logging", "scoring"}
        if unknown:
            raise ValueError(f"Unknown settings sections: {sorted(unknown)}")
        self._overrides = overrides

    @cached_property
    def app(self) -> ApplicationConfig:
        return ApplicationConfig(**self._overrides.get("app", {}))

    @cached_property
    def backend(self) -> BackendConfig:
        return BackendConfig(**self._overrides.get("backend", {}))

    @cached_property
    def storage(self) -> StorageConfig:
        return StorageConfig(**self._overrides.get("storage", {}))

    @cached_property
    def logging(self) -> LoggingConfig:
        values = dict(self._overrides.get("logging", {}))
        # without LOG_LEVEL the level follows the environment
        if "level" not in values and not os.getenv("LOG_LEVEL"):
            if self.app.environment == "production":
                values["level"] = "WARNING"
            else:
                values["level"] = "DEBUG" if self.app.debug else "INFO"
        return LoggingConfig(**values)

    @cached_property
    def scoring(self) -> ScoringConfig:
        return ScoringConfig(**self._overrides.get("scoring", {}))

    def is_development(self) -> bool:
        return self.app.environment == "development"


_settings: Settings | None = None


def get_settings() -> Settings:
    """Process-wide settings, read from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def override_settings(**sections: dict[str, Any]) -> Settings:
    """
    Replace the process-wide settings with ones built from ``sections``.

    Example:
        >>> override_settings(storage={"backend": "memory"}, app={"environment": "testing"})
    """
    global _settings
    _settings = Settings(**sections)
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
