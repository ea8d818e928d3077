"""Abstract base class for datastore engine adapters."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from ..constants import TARGET_PASSWORD_ENV, TARGET_USER_ENV
from ..core.container_runtime import ContainerRuntime
from ..core.exceptions import CommandError, ContainerNotFound, TargetUnreachable
from ..core.subprocess_manager import SubprocessResult
from ..models import DumpArtifact, EngineKind, ServiceInstance, VerificationResult

logger = structlog.get_logger()

# stderr fragments meaning the container itself went away
_CONTAINER_GONE = ("No such container", "is not running", "Cannot connect to the Docker daemon")


@dataclass
class TargetConnection:
    """The consolidated target container and the superuser context used against it."""

    container: str
    user: str | None = None
    password: str | None = field(default=None, repr=False)
    port: int | None = None  # engine default when unset


class DatastoreAdapter(ABC):
    """One adapter per engine kind: dump, provision, import and verify."""

    engine: EngineKind
    provisioning_script_name: str

    def __init__(self, runtime: ContainerRuntime, target: TargetConnection, dump_dir: Path):
        self.runtime = runtime
        self.target = target
        self.dump_dir = Path(dump_dir)
        self.logger = logger.bind(component=self.__class__.__name__.lower())

    async def _exec(
        self, container: str, cmd: list[str], *, timeout: float | None = None, **kwargs
    ) -> SubprocessResult:
        """Run inside a container, reporting timeouts as CommandError."""
        try:
            return await self.runtime.exec(container, cmd, timeout=timeout, **kwargs)
        except asyncio.TimeoutError as e:
            raise CommandError(str(e) or f"Command timed out in {container}") from e

    def _raise_if_target_gone(self, result: SubprocessResult) -> None:
        if result.success:
            return
        message = result.error_message
        if any(fragment in message for fragment in _CONTAINER_GONE):
            raise TargetUnreachable(f"Target container {self.target.container}: {message}")

    async def check_source(self, service: ServiceInstance) -> None:
        """Raise ContainerNotFound unless the service's source container is running."""
        if not await self.runtime.is_running(service.container):
            raise ContainerNotFound(f"source container {service.container} not found or not running")

    async def connect_target(self) -> None:
        """Resolve target credentials and prove the target answers.

        Raises:
            TargetUnreachable: When the target container is missing or refuses queries
        """
        try:
            running = await self.runtime.is_running(self.target.container)
        except CommandError as e:
            raise TargetUnreachable(str(e)) from e
        if not running:
            raise TargetUnreachable(
                f"Target container {self.target.container} not found or not running"
            )

        if self.target.password is None or self.target.user is None:
            try:
                env = await self.runtime.environment(self.target.container)
            except CommandError as e:
                raise TargetUnreachable(
                    f"Target container {self.target.container}: cannot read environment: {e}"
                ) from e
            if self.target.password is None:
                self.target.password = _first_env(env, TARGET_PASSWORD_ENV.get(self.engine, ()))
                if self.target.password is not None:
                    self.logger.info("Auto-detected target password", target=self.target.container)
            if self.target.user is None:
                self.target.user = _first_env(env, TARGET_USER_ENV.get(self.engine, ()))

        await self.ping_target()
        self.logger.info("Target reachable", target=self.target.container, engine=self.engine.value)

    def prepare(self, services: list[ServiceInstance]) -> None:
        """Hook run once with every dumped service before provisioning starts."""

    def target_index(self, service: ServiceInstance) -> int | None:
        """Destination keyspace index, for engines that have one."""
        return None

    @abstractmethod
    async def ping_target(self) -> None:
        """Run a trivial query against the target; raise TargetUnreachable on failure."""

    @abstractmethod
    async def dump(self, service: ServiceInstance) -> DumpArtifact:
        """Export the service's data into a DumpArtifact under ``dump_dir``."""

    @abstractmethod
    def provisioning_script(self, service: ServiceInstance) -> str:
        """Return the provisioning statements for one service as script text."""

    @abstractmethod
    async def provision(self, service: ServiceInstance) -> None:
        """Idempotently create the destination account and schema/keyspace."""

    @abstractmethod
    async def import_artifact(self, service: ServiceInstance, artifact: DumpArtifact) -> None:
        """Load the artifact into the provisioned destination.

        Raises:
            ImportPartial: The import finished with errors; verification decides
        """

    @abstractmethod
    async def verify(self, service: ServiceInstance, artifact: DumpArtifact) -> VerificationResult:
        """Compare post-import counts with what the dump promised."""

    @abstractmethod
    def connect_hint(self, service: ServiceInstance) -> str:
        """Command a user can run to inspect the migrated data on the target."""


def _first_env(env: dict[str, str], names: tuple[str, ...]) -> str | None:
    for name in names:
        if env.get(name):
            return env[name]
    return None
