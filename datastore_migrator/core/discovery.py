"""Per-service credential discovery from flat key=value configuration files."""

from dataclasses import dataclass
from pathlib import Path

import structlog
from dotenv import dotenv_values

from ..constants import (
    CREDENTIAL_ALIASES,
    DEFAULT_CONTAINER_TEMPLATE,
    DEFAULT_ENV_FILENAME,
    DEFAULT_PORTS,
    REDIS_MARKER,
)
from ..models import CredentialSet, EngineKind, ServiceInstance
from .exceptions import ConfigurationError, CredentialMissing

logger = structlog.get_logger()


@dataclass
class DiscoveredService:
    """Result of scanning one service directory.

    ``error`` is set (and ``service`` still populated with whatever could be
    read) when the directory cannot be migrated.
    """

    service: ServiceInstance
    error: CredentialMissing | None = None


class CredentialDiscovery:
    """Scans a services root and extracts normalized credentials per service."""

    def __init__(
        self,
        engine: EngineKind,
        env_filename: str = DEFAULT_ENV_FILENAME,
        container_template: str = DEFAULT_CONTAINER_TEMPLATE,
        exclude: list[str] | None = None,
    ):
        self.engine = engine
        self.env_filename = env_filename
        self.container_template = container_template
        self.exclude = set(exclude or [])
        self.aliases = CREDENTIAL_ALIASES[engine]
        self.logger = logger.bind(component="credential_discovery", engine=engine.value)

    def discover(self, root: Path) -> list[DiscoveredService]:
        """Return one entry per service directory, sorted by name."""
        root = Path(root)
        if not root.is_dir():
            raise ConfigurationError(f"Services root does not exist: {root}")

        results: list[DiscoveredService] = []
        for service_dir in sorted(p for p in root.iterdir() if p.is_dir()):
            if service_dir.name in self.exclude:
                self.logger.info("Excluding service", service=service_dir.name)
                continue
            results.append(self.discover_service(service_dir))

        ready = sum(1 for r in results if r.error is None)
        self.logger.info(
            "Credential discovery complete",
            root=str(root),
            services=len(results),
            migratable=ready,
        )
        return results

    def discover_service(self, service_dir: Path) -> DiscoveredService:
        name = service_dir.name
        env_file = service_dir / self.env_filename

        if not env_file.is_file():
            self.logger.warning("No configuration file found", service=name, file=str(env_file))
            return DiscoveredService(
                service=self._instance(name, service_dir, {}, CredentialSet()),
                error=CredentialMissing("no configuration file"),
            )

        values = {k: v for k, v in dotenv_values(env_file).items() if v is not None}
        credentials = self._extract(name, values)
        service = self._instance(name, service_dir, values, credentials)

        missing = self._missing_fields(values, credentials)
        if missing:
            self.logger.warning(
                "Incomplete credentials", service=name, missing=missing
            )
            return DiscoveredService(
                service=service,
                error=CredentialMissing(f"incomplete credentials (missing {', '.join(missing)})"),
            )

        self.logger.info(
            "Extracted credentials",
            service=name,
            container=service.container,
            database=credentials.database,
            user=credentials.user,
            db_index=credentials.db_index if self.engine is EngineKind.REDIS else None,
        )
        return DiscoveredService(service=service)

    def _lookup(self, values: dict[str, str], field: str) -> str | None:
        for alias in self.aliases.get(field, ()):
            value = values.get(alias)
            if value:
                return value
        return None

    def _lookup_int(self, name: str, values: dict[str, str], field: str) -> int | None:
        raw = self._lookup(values, field)
        if raw is None:
            return None
        try:
            return int(raw.strip())
        except ValueError:
            self.logger.warning("Ignoring non-numeric value", service=name, field=field, value=raw)
            return None

    def _extract(self, name: str, values: dict[str, str]) -> CredentialSet:
        port = self._lookup_int(name, values, "port") or DEFAULT_PORTS[self.engine]
        if self.engine is EngineKind.REDIS:
            return CredentialSet(
                password=self._lookup(values, "password"),
                port=port,
                db_index=self._lookup_int(name, values, "db_index") or 0,
            )
        return CredentialSet(
            user=self._lookup(values, "user"),
            password=self._lookup(values, "password"),
            superuser_password=self._lookup(values, "superuser_password"),
            database=self._lookup(values, "database"),
            port=port,
        )

    def _missing_fields(self, values: dict[str, str], credentials: CredentialSet) -> list[str]:
        if self.engine is EngineKind.REDIS:
            if not any(REDIS_MARKER in key for key in values):
                return ["redis configuration"]
            return []
        required = {
            "database": credentials.database,
            "user": credentials.user,
            "password": credentials.password,
        }
        return [field for field, value in required.items() if not value]

    def _instance(
        self, name: str, service_dir: Path, values: dict[str, str], credentials: CredentialSet
    ) -> ServiceInstance:
        container = self._lookup(values, "container") or self.container_template.format(
            service=name, engine=self.engine.value
        )
        return ServiceInstance(
            name=name,
            engine=self.engine,
            container=container,
            credentials=credentials,
            source_dir=service_dir,
        )
