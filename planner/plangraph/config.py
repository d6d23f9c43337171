"""
Configuration management for PlanGraph.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST choose an explicit STORE_BACKEND
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep REPOSITORY_SNAPSHOT_BATCH_SIZE <= 25 for DynamoDB
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

# DynamoDB BatchWriteItem accepts at most 25 put requests per call
DYNAMODB_MAX_BATCH = 25


class StoreBackend(Enum):
    """Supported key-value store backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"
    DYNAMODB = "dynamodb"


@dataclass(frozen=True)
class SqliteConfig:
    """SQLite key-value backend configuration.

    Attributes:
        path: Database file path
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    path: str = "/var/lib/plangraph/plangraph.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> SqliteConfig:
        """Load configuration from environment variables."""
        return cls(
            path=os.getenv("SQLITE_PATH", "/var/lib/plangraph/plangraph.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class DynamoDBConfig:
    """DynamoDB single-table backend configuration.

    Attributes:
        table_name: Table holding every PK/SK item
        region: AWS region
        endpoint_url: Custom endpoint URL (DynamoDB Local, LocalStack)
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
        page_size: Items requested per Query page
    """

    table_name: str = "plangraph"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    page_size: int = 100

    @classmethod
    def from_env(cls) -> DynamoDBConfig:
        """Load configuration from environment variables."""
        return cls(
            table_name=os.getenv("DYNAMODB_TABLE", os.getenv("TABLE_NAME", "plangraph")),
            region=os.getenv("AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-east-1")),
            endpoint_url=os.getenv("DYNAMODB_ENDPOINT_URL"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            page_size=int(os.getenv("DYNAMODB_PAGE_SIZE", "100")),
        )


@dataclass(frozen=True)
class RepositoryConfig:
    """Versioned repository behaviour.

    Attributes:
        max_commit_attempts: Attempts per mutation before giving up on HEAD CAS
        snapshot_batch_size: Records per batch when materializing a snapshot
        max_title_length: Upper bound for node titles
    """

    max_commit_attempts: int = 5
    snapshot_batch_size: int = DYNAMODB_MAX_BATCH
    max_title_length: int = 200

    @classmethod
    def from_env(cls) -> RepositoryConfig:
        """Load configuration from environment variables."""
        return cls(
            max_commit_attempts=int(os.getenv("REPOSITORY_MAX_COMMIT_ATTEMPTS", "5")),
            snapshot_batch_size=int(
                os.getenv("REPOSITORY_SNAPSHOT_BATCH_SIZE", str(DYNAMODB_MAX_BATCH))
            ),
            max_title_length=int(os.getenv("REPOSITORY_MAX_TITLE_LENGTH", "200")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete PlanGraph configuration.

    Attributes:
        store_backend: Which key-value backend to use
        sqlite: SQLite configuration (if store_backend is SQLITE)
        dynamodb: DynamoDB configuration (if store_backend is DYNAMODB)
        repository: Versioned repository configuration
        observability: Logging configuration
    """

    store_backend: StoreBackend = StoreBackend.MEMORY
    sqlite: SqliteConfig = field(default_factory=SqliteConfig)
    dynamodb: DynamoDBConfig = field(default_factory=DynamoDBConfig)
    repository: RepositoryConfig = field(default_factory=RepositoryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("STORE_BACKEND", "memory").lower()
        try:
            store_backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid STORE_BACKEND '{backend_str}'. Must be one of: memory, sqlite, dynamodb"
            )

        config = cls(
            store_backend=store_backend,
            sqlite=SqliteConfig.from_env(),
            dynamodb=DynamoDBConfig.from_env(),
            repository=RepositoryConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.store_backend == StoreBackend.DYNAMODB and not self.dynamodb.table_name:
            raise ValueError("DYNAMODB_TABLE is required when STORE_BACKEND=dynamodb")
        if self.store_backend == StoreBackend.SQLITE and not self.sqlite.path:
            raise ValueError("SQLITE_PATH is required when STORE_BACKEND=sqlite")

        if self.repository.max_commit_attempts < 1:
            raise ValueError("REPOSITORY_MAX_COMMIT_ATTEMPTS must be at least 1")
        if not 1 <= self.repository.snapshot_batch_size <= DYNAMODB_MAX_BATCH:
            raise ValueError(
                f"REPOSITORY_SNAPSHOT_BATCH_SIZE must be between 1 and {DYNAMODB_MAX_BATCH}"
            )
        if self.repository.max_title_length < 1:
            raise ValueError("REPOSITORY_MAX_TITLE_LENGTH must be positive")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")

        if self.store_backend == StoreBackend.MEMORY:
            logger.warning("Using in-memory store; all history is lost on exit")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "PlanGraph configuration loaded",
            extra={
                "store_backend": self.store_backend.value,
                "sqlite_path": self.sqlite.path
                if self.store_backend == StoreBackend.SQLITE
                else None,
                "dynamodb_table": self.dynamodb.table_name
                if self.store_backend == StoreBackend.DYNAMODB
                else None,
                "dynamodb_endpoint": self.dynamodb.endpoint_url,
                "aws_credentials": "explicit" if self.dynamodb.access_key_id else "chain",
                "max_commit_attempts": self.repository.max_commit_attempts,
                "log_level": self.observability.log_level,
            },
        )
