"""Container runtime boundary.

The migrator only ever needs to "run this command inside this named container
and capture stdout/exit code", copy files in and out, and manage a short-lived
helper container. ``DockerRuntime`` provides that over the docker CLI for
command execution and file copies, and the Docker SDK for inspection.
"""

import asyncio
import shutil
from abc import ABC, abstractmethod
from pathlib import Path

import docker
import docker.errors
import structlog

from .exceptions import CommandError
from .settings import DOCKER_CLI_TIMEOUT, DOCKER_CLIENT_TIMEOUT
from .subprocess_manager import SubprocessManager, SubprocessResult

logger = structlog.get_logger()

MANAGED_LABEL = "datastore-migrator.managed=true"


class ContainerRuntime(ABC):
    """Abstract container-exec boundary used by every engine adapter."""

    @abstractmethod
    async def exec(
        self,
        container: str,
        cmd: list[str],
        *,
        env: dict[str, str] | None = None,
        stdin: str | bytes | None = None,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
        timeout: float | None = None,
        text: bool = True,
    ) -> SubprocessResult:
        """Run ``cmd`` inside ``container``. Never raises on non-zero exit."""

    @abstractmethod
    async def is_running(self, container: str) -> bool:
        """Return True when the named container exists and is running."""

    @abstractmethod
    async def environment(self, container: str) -> dict[str, str]:
        """Return the container's configured environment variables."""

    @abstractmethod
    async def image(self, container: str) -> str | None:
        """Return the image reference the container was created from."""

    @abstractmethod
    async def copy_from(self, container: str, path: str, dest: Path) -> None:
        """Copy ``path`` out of ``container`` to local ``dest``."""

    @abstractmethod
    async def copy_to(self, src: Path, container: str, path: str) -> None:
        """Copy local ``src`` into ``container`` at ``path``."""

    @abstractmethod
    async def create(self, name: str, image: str, command: list[str]) -> None:
        """Create (but do not start) a helper container."""

    @abstractmethod
    async def start(self, name: str) -> None:
        """Start a previously created container."""

    @abstractmethod
    async def remove(self, name: str) -> None:
        """Force-remove a container. Missing containers are not an error."""


class DockerRuntime(ContainerRuntime):
    """ContainerRuntime backed by the local docker CLI and Docker SDK."""

    def __init__(self, subprocess_manager: SubprocessManager | None = None):
        self.logger = logger.bind(component="docker_runtime")
        self._docker_bin = shutil.which("docker") or "docker"
        self._subprocess = subprocess_manager or SubprocessManager()
        self._client: docker.DockerClient | None = None

    def _get_client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env(timeout=DOCKER_CLIENT_TIMEOUT)
            except docker.errors.DockerException as e:
                raise CommandError(f"Docker daemon not accessible: {e}") from e
        return self._client

    async def _inspect(self, container: str) -> dict | None:
        client = self._get_client()
        try:
            found = await asyncio.to_thread(client.containers.get, container)
        except docker.errors.NotFound:
            return None
        except docker.errors.APIError as e:
            raise CommandError(f"Failed to inspect container {container}: {e}") from e
        return found.attrs

    async def _run_docker_command(
        self, args: list[str], timeout: float | None = None, check: bool = True
    ) -> SubprocessResult:
        return await self._subprocess.run_command(
            [self._docker_bin, *args],
            timeout=timeout or DOCKER_CLI_TIMEOUT,
            check=check,
        )

    async def exec(
        self,
        container: str,
        cmd: list[str],
        *,
        env: dict[str, str] | None = None,
        stdin: str | bytes | None = None,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
        timeout: float | None = None,
        text: bool = True,
    ) -> SubprocessResult:
        args = [self._docker_bin, "exec"]
        if stdin is not None or stdin_path is not None:
            args.append("-i")
        # "-e NAME" without a value forwards NAME from the client environment,
        # which keeps secrets out of the process argument list.
        for name in env or {}:
            args.extend(["-e", name])
        args.append(container)
        args.extend(cmd)

        return await self._subprocess.run_command(
            args,
            timeout=timeout or DOCKER_CLI_TIMEOUT,
            check=False,
            text=text,
            env=env,
            stdin=stdin,
            stdin_path=stdin_path,
            stdout_path=stdout_path,
        )

    async def is_running(self, container: str) -> bool:
        attrs = await self._inspect(container)
        if attrs is None:
            return False
        return attrs.get("State", {}).get("Running", False) is True

    async def environment(self, container: str) -> dict[str, str]:
        attrs = await self._inspect(container)
        if attrs is None:
            return {}
        env: dict[str, str] = {}
        for entry in attrs.get("Config", {}).get("Env") or []:
            name, sep, value = entry.partition("=")
            if sep:
                env[name] = value
        return env

    async def image(self, container: str) -> str | None:
        attrs = await self._inspect(container)
        if attrs is None:
            return None
        return attrs.get("Config", {}).get("Image")

    async def copy_from(self, container: str, path: str, dest: Path) -> None:
        await self._run_docker_command(["cp", f"{container}:{path}", str(dest)])

    async def copy_to(self, src: Path, container: str, path: str) -> None:
        await self._run_docker_command(["cp", str(src), f"{container}:{path}"])

    async def create(self, name: str, image: str, command: list[str]) -> None:
        self.logger.debug("Creating helper container", name=name, image=image)
        await self._run_docker_command(
            ["create", "--name", name, "--label", MANAGED_LABEL, image, *command]
        )

    async def start(self, name: str) -> None:
        await self._run_docker_command(["start", name])

    async def remove(self, name: str) -> None:
        result = await self._run_docker_command(["rm", "-f", name], check=False)
        if not result.success and "No such container" not in result.error_message:
            self.logger.warning(
                "Failed to remove helper container", name=name, error=result.error_message
            )
