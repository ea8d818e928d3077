"""Short-lived helper Redis instance seeded from a snapshot file."""

import asyncio
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog

from ..constants import EPHEMERAL_DATA_PATH, EPHEMERAL_PREFIX
from ..core.container_runtime import ContainerRuntime
from ..core.exceptions import CommandError, ReadinessTimeout
from ..core.settings import READINESS_INTERVAL, READINESS_TIMEOUT

logger = structlog.get_logger()

# Persistence off so the helper never rewrites the copied snapshot
SERVER_COMMAND = ["redis-server", "--save", "", "--appendonly", "no"]


def ephemeral_name(service: str) -> str:
    return f"{EPHEMERAL_PREFIX}{service}-{uuid.uuid4().hex[:8]}"


async def wait_until_ready(
    runtime: ContainerRuntime,
    container: str,
    timeout: float = READINESS_TIMEOUT,
    interval: float = READINESS_INTERVAL,
) -> None:
    """Poll ``PING`` until the instance answers ``PONG``.

    Raises:
        ReadinessTimeout: If no PONG arrives within ``timeout`` seconds
    """
    deadline = time.monotonic() + timeout
    last = ""
    while True:
        try:
            result = await runtime.exec(container, ["redis-cli", "PING"], timeout=interval + 5)
            last = str(result.stdout).strip() or result.error_message
            if result.success and last == "PONG":
                return
        except (CommandError, asyncio.TimeoutError) as e:
            last = str(e)
        if time.monotonic() >= deadline:
            raise ReadinessTimeout(
                f"ephemeral instance {container} not ready after {timeout}s (last reply: {last})"
            )
        await asyncio.sleep(interval)


@asynccontextmanager
async def ephemeral_redis(
    runtime: ContainerRuntime,
    image: str,
    snapshot: Path,
    service: str,
    timeout: float = READINESS_TIMEOUT,
    interval: float = READINESS_INTERVAL,
) -> AsyncIterator[str]:
    """Run a throwaway Redis container loaded with ``snapshot``; yield its name.

    The container is force-removed on every exit path.
    """
    name = ephemeral_name(service)
    log = logger.bind(component="ephemeral_redis", service=service, container=name)
    try:
        log.info("Starting ephemeral instance", image=image)
        await runtime.create(name, image, SERVER_COMMAND)
        await runtime.copy_to(snapshot, name, EPHEMERAL_DATA_PATH)
        await runtime.start(name)
        await wait_until_ready(runtime, name, timeout=timeout, interval=interval)
        log.debug("Ephemeral instance ready")
        yield name
    finally:
        await runtime.remove(name)
        log.info("Ephemeral instance removed")
