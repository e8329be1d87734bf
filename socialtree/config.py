"""Configuration management for SocialTree.

This module provides centralized configuration using Pydantic Settings.
Values come from environment variables (case-insensitive) or a local
``.env`` file.

Environment Profiles:
    - DEVELOPMENT: Verbose logging, local SQLite store, tracing disabled
    - PRODUCTION: JSON logs, tracing enabled, conservative concurrency
    - TESTING: In-memory store, minimal logging, no log files
    - STAGING: Production-like with more logging

Example:
    >>> from socialtree.config import settings, StoreBackend
    >>> settings.store_backend
    <StoreBackend.SQLITE: 'sqlite'>
    >>> if settings.is_development:
    ...     print("Using the local SQLite store")
"""

from enum import StrEnum
from pathlib import Path
from typing import Any, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreBackend(StrEnum):
    """Hierarchical store implementations."""

    MEMORY = "memory"
    SQLITE = "sqlite"
    FIREBASE = "firebase"


class BlobBackend(StrEnum):
    """Where uploaded images end up."""

    LOCAL = "local"
    HTTP = "http"
    INLINE = "inline"


class Environment(StrEnum):
    """Runtime environment with specific behavior profiles.

    Attributes:
        DEVELOPMENT: Verbose logging, safe defaults
        PRODUCTION: Conservative settings, tracing enabled
        TESTING: In-memory store, minimal logging, fast execution
        STAGING: Pre-production validation environment
    """

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"
    STAGING = "staging"


# Fields forced by each environment, applied after env vars and .env
ENVIRONMENT_PROFILES: dict[Environment, dict[str, Any]] = {
    Environment.DEVELOPMENT: {
        "log_level": "DEBUG",
        "log_json": False,
        "enable_tracing": False,
    },
    Environment.PRODUCTION: {
        "log_json": True,
        "enable_tracing": True,
    },
    Environment.TESTING: {
        "store_backend": StoreBackend.MEMORY,
        "max_concurrency": 1,
        "log_level": "ERROR",
        "log_to_file": False,
        "log_json": False,
        "enable_tracing": False,
    },
    Environment.STAGING: {
        "log_level": "INFO",
        "log_json": True,
        "enable_tracing": True,
    },
}


class Settings(BaseSettings):
    """Application settings with environment variable support.

    Attributes:
        store_backend: Which hierarchical store to talk to
        data_dir: Base directory for local files (SQLite store, blobs, logs)
        database_path: SQLite file used by the ``sqlite`` store backend
        firebase_database_url: Realtime database URL for the ``firebase`` backend
        firebase_credentials_path: Service account JSON for the ``firebase`` backend
        blob_backend: Where post images are uploaded
        atomic_counters: Use transactional increments instead of read-modify-write
        feed_page_size: Default number of posts returned by the feed
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment Configuration
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Runtime environment (development, production, testing, staging)",
    )

    # Store Configuration
    store_backend: StoreBackend = Field(
        default=StoreBackend.SQLITE,
        description="Hierarchical store backend (memory, sqlite, firebase)",
    )
    data_dir: Path = Field(
        Path("./data"),
        description="Base directory for local data files (store, blobs, logs)",
    )
    database_path: Path = Field(
        Path("socialtree.db"),  # Will be updated to data_dir/socialtree.db by validator
        description="Path to SQLite store file (defaults to data_dir/socialtree.db)",
    )
    firebase_database_url: Optional[str] = Field(
        None,
        description="Realtime database URL (e.g., https://<project>.firebaseio.com)",
    )
    firebase_credentials_path: Optional[Path] = Field(
        None,
        description="Service account JSON file (application default credentials if unset)",
    )
    firebase_max_workers: int = Field(
        4,
        ge=1,
        le=32,
        description="Thread pool size for blocking Firebase SDK calls",
    )

    # Blob Storage Configuration
    blob_backend: BlobBackend = Field(
        default=BlobBackend.LOCAL,
        description="Image storage backend (local, http, inline)",
    )
    blob_dir: Optional[Path] = Field(
        None,
        description="Directory for the local blob store (defaults to data_dir/blobs)",
    )
    blob_base_url: Optional[str] = Field(
        None,
        description="Public base URL for uploaded blobs (required for the http backend)",
    )
    blob_api_token: Optional[str] = Field(
        None,
        description="Bearer token for the http blob backend",
    )
    upload_chunk_size: int = Field(
        64 * 1024,
        ge=1024,
        description="Chunk size in bytes used for upload progress reporting",
    )

    # Behavior
    atomic_counters: bool = Field(
        default=False,
        description="Use store transactions for counters instead of read-modify-write",
    )
    feed_page_size: int = Field(
        20,
        ge=1,
        le=500,
        description="Default number of posts returned by the feed",
    )
    trending_limit: int = Field(
        5,
        ge=1,
        le=100,
        description="Default number of trending tags",
    )
    suggestion_limit: int = Field(
        3,
        ge=1,
        le=100,
        description="Default number of suggested connections",
    )
    max_concurrency: int = Field(
        8,
        ge=1,
        le=64,
        description="Maximum concurrent store writes during notification fan-out",
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_to_file: bool = Field(
        default=True,
        description="Enable file logging in addition to console",
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (recommended for production)",
    )

    # Observability (OpenTelemetry)
    enable_tracing: bool = Field(
        default=False,
        description="Enable OpenTelemetry distributed tracing",
    )
    otlp_endpoint: Optional[str] = Field(
        default=None,
        description="OpenTelemetry OTLP endpoint for traces (e.g., http://localhost:4317)",
    )

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_data_dir(cls, v: str | Path) -> Path:
        """Expand and resolve data directory path."""
        path = Path(v).expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    @model_validator(mode="after")
    def set_path_defaults(self) -> "Settings":
        """Place the SQLite file and blob directory under data_dir unless set."""
        if self.database_path == Path("socialtree.db"):
            self.database_path = self.data_dir / "socialtree.db"
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        if self.blob_dir is None:
            self.blob_dir = self.data_dir / "blobs"
        return self

    @model_validator(mode="after")
    def apply_environment_profile(self) -> "Settings":
        """Override fields with the values of the active environment profile.

        See ``ENVIRONMENT_PROFILES``. Production also refuses DEBUG logging
        and staging caps fan-out concurrency at 4.
        """
        for field, value in ENVIRONMENT_PROFILES[self.environment].items():
            setattr(self, field, value)

        if self.environment == Environment.PRODUCTION and self.log_level == "DEBUG":
            self.log_level = "INFO"
        if self.environment == Environment.STAGING:
            self.max_concurrency = min(self.max_concurrency, 4)
        return self

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING

    @property
    def has_firebase_config(self) -> bool:
        """Check if the Firebase backend can be initialized."""
        return self.firebase_database_url is not None

    def redact_token(self, token: Optional[str] = None) -> str:
        """Redact sensitive token for logging.

        Args:
            token: Token to redact (defaults to blob_api_token)

        Returns:
            Redacted token string
        """
        token = token or self.blob_api_token
        if not token:
            return "None"
        return f"{token[:8]}...{token[-4:]}" if len(token) > 12 else "***"


def get_settings() -> Settings:
    """Get a fresh settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()
