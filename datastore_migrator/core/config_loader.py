"""Configuration management for the datastore migrator."""

import os
import re
from pathlib import Path
from typing import Any

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..constants import (
    DEFAULT_CONTAINER_TEMPLATE,
    DEFAULT_DUMP_DIR,
    DEFAULT_ENV_FILENAME,
    DEFAULT_IMPORT_CONCURRENCY,
    DEFAULT_SERVICES_ROOT,
    DEFAULT_WORKERS,
)
from ..models.enums import EngineKind, RedisMethod
from .exceptions import ConfigurationError

logger = structlog.get_logger()

DEFAULT_CONFIG_FILE = "datastore-migrator.yml"


class RedisOptions(BaseModel):
    """Schemaless migration options."""

    method: RedisMethod = RedisMethod.LIVE
    index_base: int = Field(default=0, ge=0)
    index_map: dict[str, int] = Field(default_factory=dict)
    max_databases: int = Field(default=16, ge=1)
    snapshot_image: str | None = None  # defaults to the target container's image


class MigratorConfig(BaseSettings):
    """Main configuration for a migration run."""

    target: str | None = Field(default=None, alias="TARGET_CONTAINER")
    engine: EngineKind | None = Field(default=None, alias="TARGET_ENGINE")
    services_root: Path = Field(default=Path(DEFAULT_SERVICES_ROOT), alias="SERVICES_ROOT")
    env_filename: str = DEFAULT_ENV_FILENAME
    dump_dir: Path = Field(default=Path(DEFAULT_DUMP_DIR), alias="DUMP_DIR")
    workers: int = Field(default=DEFAULT_WORKERS, ge=1, alias="MIGRATION_WORKERS")
    import_concurrency: int = Field(default=DEFAULT_IMPORT_CONCURRENCY, ge=1)
    target_user: str | None = Field(default=None, alias="TARGET_USER")
    target_password: str | None = Field(default=None, alias="TARGET_PASSWORD", repr=False)
    target_port: int | None = Field(default=None, ge=1, le=65535, alias="TARGET_PORT")
    exclude_services: list[str] = Field(default_factory=list)
    container_template: str = DEFAULT_CONTAINER_TEMPLATE
    redis: RedisOptions = Field(default_factory=RedisOptions)
    config_file: str | None = Field(default=None, alias="DATASTORE_MIGRATOR_CONFIG")

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    def require_target(self) -> tuple[str, EngineKind]:
        """Return (target, engine) or raise when either is missing."""
        if not self.target:
            raise ConfigurationError("No target container configured (use --target)")
        if self.engine is None:
            raise ConfigurationError("No target engine configured (use --engine)")
        return self.target, self.engine


def load_config(config_path: str | None = None) -> MigratorConfig:
    """Load configuration from multiple sources.

    Precedence, lowest first: defaults, user config file, project config file,
    environment variables. CLI flags are applied afterwards by the caller.

    Args:
        config_path: Optional path to YAML config file

    Returns:
        Loaded configuration

    Raises:
        ConfigurationError: If a config file cannot be parsed or validated
    """
    load_dotenv()

    try:
        config = MigratorConfig()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in environment: {e}") from e

    user_config_path = Path.home() / ".config" / "datastore-migrator" / "config.yml"
    config = _load_config_file(config, user_config_path)

    project_config_path = Path(
        config_path or os.getenv("DATASTORE_MIGRATOR_CONFIG", DEFAULT_CONFIG_FILE)
    )
    config = _load_config_file(config, project_config_path)
    if project_config_path.exists():
        config.config_file = str(project_config_path)

    _apply_env_overrides(config)
    return config


def _load_config_file(config: MigratorConfig, config_path: Path) -> MigratorConfig:
    """Merge a YAML file over ``config`` and return the validated result."""
    if not config_path.exists():
        return config

    yaml_config = _load_yaml_config(config_path)
    if not yaml_config:
        return config

    merged = config.model_dump(exclude_none=True)
    redis_data = yaml_config.pop("redis", None)
    if isinstance(redis_data, dict):
        merged["redis"] = {**merged.get("redis", {}), **redis_data}
    merged.update(yaml_config)

    try:
        loaded = MigratorConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    logger.debug("Loaded configuration file", path=str(config_path))
    return loaded


def _apply_env_overrides(config: MigratorConfig) -> None:
    """Apply environment variable overrides (highest priority after CLI)."""
    if target := os.getenv("TARGET_CONTAINER"):
        config.target = target
    if engine := os.getenv("TARGET_ENGINE"):
        try:
            config.engine = EngineKind(engine.lower())
        except ValueError as e:
            raise ConfigurationError(f"Invalid TARGET_ENGINE: {engine}") from e
    if services_root := os.getenv("SERVICES_ROOT"):
        config.services_root = Path(services_root)
    if dump_dir := os.getenv("DUMP_DIR"):
        config.dump_dir = Path(dump_dir)
    if workers := os.getenv("MIGRATION_WORKERS"):
        try:
            config.workers = max(1, int(workers))
        except ValueError as e:
            raise ConfigurationError(f"Invalid MIGRATION_WORKERS: {workers}") from e
    if os.getenv("TARGET_USER"):
        config.target_user = os.getenv("TARGET_USER")
    if os.getenv("TARGET_PASSWORD"):
        config.target_password = os.getenv("TARGET_PASSWORD")
    if port := os.getenv("TARGET_PORT"):
        try:
            config.target_port = int(port)
        except ValueError as e:
            raise ConfigurationError(f"Invalid TARGET_PORT: {port}") from e
        if not 1 <= config.target_port <= 65535:
            raise ConfigurationError(f"Invalid TARGET_PORT: {port}")


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load YAML configuration file."""
    try:
        content = config_path.read_text(encoding="utf-8")

        # Securely expand only allowed environment variables
        content = _expand_yaml_config(content)

        loaded = yaml.safe_load(content)
        # yaml.safe_load can return None, str, list, etc.
        if not isinstance(loaded, dict):
            return {}
        return loaded
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config from {config_path}: {e}") from e


def _expand_yaml_config(content: str) -> str:
    """Securely expand environment variables with allowlist."""

    allowed_env_vars = {
        "HOME",
        "USER",
        "XDG_CONFIG_HOME",
        "XDG_DATA_HOME",
        "TMPDIR",
        "SERVICES_ROOT",
        "DUMP_DIR",
        "TARGET_CONTAINER",
        "TARGET_ENGINE",
        "TARGET_USER",
        "TARGET_PASSWORD",
        "TARGET_PORT",
    }

    def replace_if_allowed(match):
        var_name = match.group(1) or match.group(2)
        original_pattern = match.group(0)

        if var_name in allowed_env_vars:
            return os.getenv(var_name, original_pattern)  # Keep original if not found
        logger.warning(
            "Environment variable not in allowlist, skipping expansion",
            variable=var_name,
            pattern=original_pattern,
        )
        return original_pattern

    # Replace ${VAR} and $VAR patterns with allowlist check
    return re.sub(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)", replace_if_allowed, content)
