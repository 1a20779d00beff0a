"""Operator configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Operator settings loaded from environment variables.

    Command line flags override these values at startup.
    """

    model_config = SettingsConfigDict(
        env_prefix="TRAINING_OPERATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "Training Operator"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # Health probe server
    health_host: str = "0.0.0.0"
    health_port: int = 8081

    # Watched namespace (empty string means all namespaces)
    namespace: str = ""

    # Job kinds (empty list means every supported kind)
    enabled_schemes: list[str] = []

    # Gang scheduling
    enable_gang_scheduling: bool = False
    gang_scheduler_name: str = "volcano"

    # Job controllers
    workers: int = 4  # Concurrent reconciles per job kind
    resync_interval_seconds: int = 30  # Full relist of jobs
    requeue_base_seconds: float = 0.5  # First retry delay after an error
    requeue_max_seconds: float = 300.0  # Backoff cap

    # PyTorch workers wait for the master's DNS name in an init container
    pytorch_init_container_image: str = "alpine:3.10"
    pytorch_init_container_template_file: str = ""  # Empty uses the built-in template

    # OpenTelemetry
    otel_enabled: bool = False
    otel_service_name: str = "training-operator"
    otel_exporter_endpoint: str = "http://localhost:4317"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
