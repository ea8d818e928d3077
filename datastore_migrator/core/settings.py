"""Timeout settings configuration for datastore migration operations.

Provides centralized timeout configuration using Pydantic BaseSettings
with environment variable support for operational tuning.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TimeoutSettings(BaseSettings):
    """Migration operation timeout configuration."""

    docker_client_timeout: int = Field(
        30, alias="DOCKER_CLIENT_TIMEOUT", description="Docker SDK client timeout in seconds"
    )

    docker_cli_timeout: int = Field(
        60, alias="DOCKER_CLI_TIMEOUT", description="Docker CLI command timeout in seconds"
    )

    dump_timeout: int = Field(
        1800, alias="DUMP_TIMEOUT", description="Per-service dump timeout in seconds"
    )

    import_timeout: int = Field(
        1800, alias="IMPORT_TIMEOUT", description="Per-service import timeout in seconds"
    )

    readiness_timeout: float = Field(
        30.0, alias="READINESS_TIMEOUT", description="Ephemeral instance readiness timeout"
    )

    readiness_interval: float = Field(
        0.5, alias="READINESS_INTERVAL", description="Delay between readiness checks"
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


# Global settings instance
timeout_settings = TimeoutSettings()

# Timeout constants for easy import
DOCKER_CLIENT_TIMEOUT: int = timeout_settings.docker_client_timeout
DOCKER_CLI_TIMEOUT: int = timeout_settings.docker_cli_timeout
DUMP_TIMEOUT: int = timeout_settings.dump_timeout
IMPORT_TIMEOUT: int = timeout_settings.import_timeout
READINESS_TIMEOUT: float = timeout_settings.readiness_timeout
READINESS_INTERVAL: float = timeout_settings.readiness_interval
