import logging
import os
import sys
from typing import Optional

from pydantic import computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="allow")

    # Infrastructure dependencies
    postgres_user: str
    postgres_host: str
    postgres_password: str
    postgres_port: int
    postgres_db: str
    redis_host: str
    redis_port: int
    redis_db: Optional[int] = None

    # Redis connection resilience
    redis_conn_timeout: int = 5
    redis_retry_on_timeout: bool = True
    redis_socket_keepalive: bool = True
    redis_health_check_interval: int = 30
    redis_max_connections: Optional[int] = 50

    # Link metadata pipeline
    link_metadata_enabled: bool = True
    metadata_worker_count: int = 3
    metadata_queue_key: str = "clubhouse:metadata_queue"
    metadata_dequeue_timeout_seconds: float = 1.0
    metadata_fetch_timeout_seconds: float = 30.0
    metadata_publish_attempts: int = 3
    metadata_queue_backlog_threshold: int = 500

    # Default fetcher
    metadata_fetch_user_agent: str = "ClubhouseMetadataFetcher/1.0"
    metadata_fetch_request_timeout_seconds: float = 5.0
    metadata_fetch_max_body_bytes: int = 2 << 20  # 2MB
    metadata_fetch_max_redirects: int = 5

    # Dev
    testing: bool = False
    dev: bool = False

    @model_validator(mode="after")
    def validate_worker_settings(self):
        """Ensure metadata worker configuration values are sane."""
        if self.metadata_dequeue_timeout_seconds <= 0:
            logging.error(
                "METADATA_DEQUEUE_TIMEOUT_SECONDS must be greater than zero. Current value: %s",
                self.metadata_dequeue_timeout_seconds,
            )
            sys.exit(1)

        if self.metadata_fetch_timeout_seconds <= 0:
            logging.error(
                "METADATA_FETCH_TIMEOUT_SECONDS must be greater than zero. Current value: %s",
                self.metadata_fetch_timeout_seconds,
            )
            sys.exit(1)

        if self.metadata_publish_attempts <= 0:
            logging.error(
                "METADATA_PUBLISH_ATTEMPTS must be greater than zero. Current value: %s",
                self.metadata_publish_attempts,
            )
            sys.exit(1)

        # Every worker parks a connection in BLMOVE, leave room for ack/publish
        if (
            self.redis_max_connections is not None
            and self.redis_max_connections < self.metadata_worker_count + 2
        ):
            logging.error(
                "REDIS_MAX_CONNECTIONS (%s) is too small for METADATA_WORKER_COUNT (%s)."
                " Each worker holds one connection while blocked on the queue.",
                self.redis_max_connections,
                self.metadata_worker_count,
            )
            sys.exit(1)

        if self.metadata_worker_count <= 0:
            logging.warning(
                "METADATA_WORKER_COUNT (%s) is not positive, the worker pool will use its default",
                self.metadata_worker_count,
            )

        return self

    @computed_field
    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.postgres_user}:"
            f"{self.postgres_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )

    @computed_field
    @property
    def redis_url(self) -> str:
        return f"redis://{self.redis_host}:{self.redis_port}"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get settings singleton, creating it if needed.

    Returns:
        Settings: The application settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Override settings (primarily for testing).

    Args:
        settings: The Settings instance to use.
    """
    global _settings
    _settings = settings


def reset_settings() -> None:
    """Reset settings to None (for test cleanup)."""
    global _settings
    _settings = None


def get_loglevel():
    loglevel = os.getenv("LOGLEVEL", "INFO")

    match loglevel:
        case "INFO":
            return logging.INFO
        case "WARNING":
            return logging.WARNING
        case "ERROR":
            return logging.ERROR
        case "CRITICAL":
            return logging.CRITICAL
        case "DEBUG":
            return logging.DEBUG
        case _:
            return logging.INFO
