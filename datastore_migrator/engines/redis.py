"""Redis adapter with snapshot and live migration strategies.

All traffic goes through ``redis-cli --csv`` inside the relevant container.
Commands for one phase are piped through a single redis-cli process, which
answers with exactly one reply line per command.
"""

import time
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath

import structlog

from ..constants import (
    DEFAULT_PORTS,
    DEFAULT_REDIS_IMAGE,
    KEY_SCRIPT_SUFFIX,
    PROVISION_REDIS_FILENAME,
    REDIS_MEMBER_CHUNK,
    SNAPSHOT_SUFFIX,
    VERIFY_SAMPLE_SIZE,
)
from ..core.exceptions import (
    CommandError,
    DumpEmpty,
    DumpError,
    ImportPartial,
    ProvisionError,
    RestoreError,
    TargetUnreachable,
    UnsupportedKeyType,
    VerificationFailed,
)
from ..core.redis_protocol import (
    CsvValue,
    ReplyParseError,
    as_int,
    is_error,
    parse_reply,
    quote_arg,
    render_command,
    split_replies,
)
from ..core.settings import DOCKER_CLI_TIMEOUT, DUMP_TIMEOUT, IMPORT_TIMEOUT
from ..models import (
    ArtifactFormat,
    DumpArtifact,
    EngineKind,
    KeyType,
    RedisKeyDescriptor,
    RedisMethod,
    ServiceInstance,
    VerificationResult,
)
from .auth import CredentialStrategy, first_successful, keyspace_strategies
from .base import DatastoreAdapter, TargetConnection
from .ephemeral import ephemeral_redis

logger = structlog.get_logger()

REDIS_PORT = DEFAULT_PORTS[EngineKind.REDIS]

Reply = list[CsvValue]

# Read command per key type
_READ_COMMANDS: dict[KeyType, tuple[str, ...]] = {
    KeyType.STRING: ("GET",),
    KeyType.HASH: ("HGETALL",),
    KeyType.LIST: ("LRANGE", "0", "-1"),
    KeyType.SET: ("SMEMBERS",),
    KeyType.ZSET: ("ZRANGE", "0", "-1", "WITHSCORES"),
}


def redis_cli_command(
    port: int | None, db: int, password: str | None
) -> tuple[list[str], dict[str, str]]:
    """redis-cli argv for one database index plus the env carrying the password."""
    cmd = [
        "redis-cli",
        "--csv",
        "--no-auth-warning",
        "-p",
        str(port or REDIS_PORT),
        "-n",
        str(db),
    ]
    return cmd, {"REDISCLI_AUTH": password} if password else {}


def _read_command(descriptor: RedisKeyDescriptor) -> str:
    name, *rest = _READ_COMMANDS[descriptor.type]
    return render_command(name, descriptor.key, *rest)


def _pairs(values: Reply) -> list[tuple[CsvValue, CsvValue]]:
    return list(zip(values[0::2], values[1::2]))


def _chunks(items: list, size: int) -> list[list]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def key_commands(descriptor: RedisKeyDescriptor, chunk: int = REDIS_MEMBER_CHUNK) -> list[str]:
    """Commands recreating one key from scratch, TTL included."""
    key = descriptor.key
    payload = descriptor.payload
    lines = [render_command("DEL", key)]

    if descriptor.type is KeyType.STRING:
        lines.append(render_command("SET", key, payload))
    elif descriptor.type is KeyType.HASH:
        for group in _chunks(payload, chunk):
            lines.append(render_command("HSET", key, *[part for pair in group for part in pair]))
    elif descriptor.type is KeyType.LIST:
        for group in _chunks(payload, chunk):
            lines.append(render_command("RPUSH", key, *group))
    elif descriptor.type is KeyType.SET:
        for group in _chunks(payload, chunk):
            lines.append(render_command("SADD", key, *group))
    elif descriptor.type is KeyType.ZSET:
        for group in _chunks(payload, chunk):
            lines.append(render_command("ZADD", key, *[part for pair in group for part in pair]))
    else:
        reported = payload if isinstance(payload, str) else descriptor.type.value
        raise UnsupportedKeyType(f"cannot serialize key {key!r} of type {reported}")

    expire_at = descriptor.expire_at_ms
    if expire_at is not None:
        lines.append(render_command("PEXPIREAT", key, expire_at))
    else:
        lines.append(render_command("PERSIST", key))
    return lines


class IndexAllocator:
    """Assigns every service its own destination database index.

    Explicit ``index_map`` entries are honoured first; everyone else gets the
    next free index counting up from ``base``. Services that do not fit below
    ``max_databases`` stay unassigned.
    """

    def __init__(self, base: int = 0, index_map: dict[str, int] | None = None, max_databases: int = 16):
        self.base = base
        self.index_map = dict(index_map or {})
        self.max_databases = max_databases
        self.logger = logger.bind(component="index_allocator")

    def allocate(self, services: list[str]) -> dict[str, int]:
        assignments: dict[str, int] = {}
        used: set[int] = set()

        for name in services:
            if name not in self.index_map:
                continue
            index = self.index_map[name]
            if index >= self.max_databases or index in used:
                self.logger.warning(
                    "Mapped index unavailable", service=name, index=index, max=self.max_databases
                )
                continue
            assignments[name] = index
            used.add(index)

        candidate = self.base
        for name in services:
            if name in self.index_map:
                continue
            while candidate in used:
                candidate += 1
            if candidate >= self.max_databases:
                self.logger.warning("No free database index", service=name, max=self.max_databases)
                continue
            assignments[name] = candidate
            used.add(candidate)
            candidate += 1

        return assignments


class RedisAdapter(DatastoreAdapter):
    engine = EngineKind.REDIS
    provisioning_script_name = PROVISION_REDIS_FILENAME

    def __init__(
        self,
        runtime,
        target: TargetConnection,
        dump_dir: Path,
        method: RedisMethod = RedisMethod.LIVE,
        allocator: IndexAllocator | None = None,
        snapshot_image: str | None = None,
    ):
        super().__init__(runtime, target, dump_dir)
        self.method = RedisMethod(method)
        self.allocator = allocator or IndexAllocator()
        self.snapshot_image = snapshot_image
        self.indices: dict[str, int] = {}
        if self.method is RedisMethod.SNAPSHOT:
            self.strategy: RedisStrategy = SnapshotStrategy(self)
        else:
            self.strategy = LiveStrategy(self)

    async def run_batch(
        self,
        container: str,
        commands: list[str] | list[bytes],
        *,
        db: int,
        password: str | None,
        port: int | None = None,
        timeout: float | None = None,
    ) -> list[Reply]:
        """Pipe ``commands`` through one redis-cli and return one parsed reply per command.

        Raises:
            CommandError: When the reply count does not match the command count
        """
        if not commands:
            return []
        cmd, env = redis_cli_command(port, db, password)
        payload = b"\n".join(c if isinstance(c, bytes) else c.encode("ascii") for c in commands) + b"\n"
        result = await self._exec(
            container, cmd, env=env, stdin=payload, timeout=timeout or DOCKER_CLI_TIMEOUT, text=False
        )
        if container == self.target.container:
            self._raise_if_target_gone(result)
        lines = split_replies(result.stdout)
        if len(lines) != len(commands):
            raise CommandError(
                f"redis-cli returned {len(lines)} replies for {len(commands)} commands: "
                f"{result.error_message}",
                result.returncode,
                result.error_message,
            )
        try:
            return [parse_reply(line) for line in lines]
        except ReplyParseError as e:
            raise CommandError(str(e)) from e

    async def target_batch(self, commands: list[str] | list[bytes], db: int, timeout=None) -> list[Reply]:
        return await self.run_batch(
            self.target.container,
            commands,
            db=db,
            password=self.target.password,
            port=self.target.port,
            timeout=timeout,
        )

    async def source_strategy(self, service: ServiceInstance) -> CredentialStrategy:
        """First source credential tier that answers PING."""

        async def attempt(strategy: CredentialStrategy) -> bool | None:
            (reply,) = await self.run_batch(
                service.container,
                ["PING"],
                db=service.credentials.db_index,
                password=strategy.password,
                port=service.credentials.port,
            )
            return True if reply == [b"PONG"] else None

        strategy, _ = await first_successful(
            keyspace_strategies(service.credentials), attempt, service=service.name
        )
        return strategy

    async def ping_target(self) -> None:
        try:
            (reply,) = await self.target_batch(["PING"], db=0)
        except CommandError as e:
            raise TargetUnreachable(f"Target {self.target.container}: {e}") from e
        if reply != [b"PONG"]:
            raise TargetUnreachable(f"Target {self.target.container} did not answer PING: {reply!r}")

    def prepare(self, services: list[ServiceInstance]) -> None:
        self.indices = self.allocator.allocate([service.name for service in services])

    def target_index(self, service: ServiceInstance) -> int | None:
        return self.indices.get(service.name)

    def _require_index(self, service: ServiceInstance) -> int:
        index = self.target_index(service)
        if index is None:
            raise ProvisionError(
                f"no free destination database index (max_databases={self.allocator.max_databases})"
            )
        return index

    async def dump(self, service: ServiceInstance) -> DumpArtifact:
        self.dump_dir.mkdir(parents=True, exist_ok=True)
        strategy = await self.source_strategy(service)
        artifact = await self.strategy.dump(service, strategy)
        self.logger.info(
            "Dump complete",
            service=service.name,
            method=self.method.value,
            keys=artifact.expected_count,
            size_bytes=artifact.size_bytes,
            auth=strategy.label,
        )
        return artifact

    def provisioning_script(self, service: ServiceInstance) -> str:
        index = self.target_index(service)
        header = f"# {service.name}: source db {service.credentials.db_index} -> target db "
        if index is None:
            return header + "unassigned\n"
        return f"{header}{index}\nSELECT {index}\nFLUSHDB\n"

    async def provision(self, service: ServiceInstance) -> None:
        index = self._require_index(service)
        try:
            (reply,) = await self.target_batch(["FLUSHDB"], db=index)
        except CommandError as e:
            raise ProvisionError(f"FLUSHDB on db {index} failed: {e}") from e
        if reply != [b"OK"]:
            raise ProvisionError(f"FLUSHDB on db {index} failed: {reply!r}")
        self.logger.info("Reset destination index", service=service.name, index=index)

    async def import_artifact(self, service: ServiceInstance, artifact: DumpArtifact) -> None:
        await self.strategy.import_artifact(service, artifact, self._require_index(service))

    async def verify(self, service: ServiceInstance, artifact: DumpArtifact) -> VerificationResult:
        index = self._require_index(service)
        try:
            size, scan = await self.target_batch(
                ["DBSIZE", f"SCAN 0 COUNT {VERIFY_SAMPLE_SIZE * 10}"], db=index
            )
            observed = as_int(size)
        except (CommandError, ReplyParseError) as e:
            raise VerificationFailed(f"DBSIZE on db {index} failed: {e}") from e
        expected = artifact.expected_count
        passed = self.strategy.counts_match(observed, expected)
        return VerificationResult(
            passed=passed,
            observed_count=observed,
            expected_count=expected,
            detail="" if passed else f"expected {expected} keys in db {index}, found {observed}",
            sample=self._key_sample(scan),
        )

    def _key_sample(self, scan: Reply) -> list[str]:
        # SCAN answers with the next cursor followed by a page of keys
        if is_error(scan):
            self.logger.warning("Could not sample migrated keys", reply=str(scan))
            return []
        keys = sorted(key for key in scan[1:] if isinstance(key, bytes))
        return [key.decode("utf-8", errors="backslashreplace") for key in keys[:VERIFY_SAMPLE_SIZE]]

    def connect_hint(self, service: ServiceInstance) -> str:
        hint = f"docker exec -it {self.target.container} redis-cli"
        if self.target.port:
            hint += f" -p {self.target.port}"
        if self.target.password:
            hint += " --askpass"
        index = self.target_index(service)
        return hint if index is None else f"{hint} -n {index}"


class RedisStrategy(ABC):
    """One way of moving a keyspace from a source container to the target."""

    method: RedisMethod

    def __init__(self, adapter: RedisAdapter):
        self.adapter = adapter
        self.logger = logger.bind(component=f"redis_{self.method.value}")

    @abstractmethod
    async def dump(self, service: ServiceInstance, strategy: CredentialStrategy) -> DumpArtifact:
        """Export the source keyspace."""

    @abstractmethod
    async def import_artifact(self, service: ServiceInstance, artifact: DumpArtifact, index: int) -> None:
        """Load the artifact into target database ``index``."""

    @abstractmethod
    def counts_match(self, observed: int, expected: int) -> bool:
        """Whether the observed key count is acceptable."""


class LiveStrategy(RedisStrategy):
    """Enumerate keys through the running source and write a command script."""

    method = RedisMethod.LIVE

    async def _source_batch(
        self, service: ServiceInstance, strategy: CredentialStrategy, commands: list[str]
    ) -> list[Reply]:
        try:
            return await self.adapter.run_batch(
                service.container,
                commands,
                db=service.credentials.db_index,
                password=strategy.password,
                port=service.credentials.port,
                timeout=DUMP_TIMEOUT,
            )
        except CommandError as e:
            raise DumpError(f"key export failed: {e}") from e

    async def capture(
        self, service: ServiceInstance, strategy: CredentialStrategy
    ) -> tuple[list[RedisKeyDescriptor], list[str], int]:
        """Read every key at the service's index.

        Returns (descriptors, warnings, number of keys enumerated).
        """
        (keys_reply,) = await self._source_batch(service, strategy, ["KEYS *"])
        if is_error(keys_reply):
            raise DumpError(f"KEYS failed: {keys_reply!r}")
        keys = [key for key in keys_reply if isinstance(key, bytes)]
        if not keys:
            return [], [], 0

        captured_at = int(time.time() * 1000)
        meta = await self._source_batch(
            service,
            strategy,
            [line for key in keys for line in (render_command("TYPE", key), render_command("PTTL", key))],
        )

        warnings: list[str] = []
        pending: list[RedisKeyDescriptor] = []
        for index, key in enumerate(keys):
            type_reply, pttl_reply = meta[2 * index], meta[2 * index + 1]
            type_name = type_reply[0].decode() if type_reply and isinstance(type_reply[0], bytes) else ""
            try:
                pttl = as_int(pttl_reply)
            except ReplyParseError:
                pttl = -2
            if type_name == "none" or pttl == -2:
                warnings.append(f"key {key!r} vanished before it could be read")
                continue
            pending.append(
                RedisKeyDescriptor(
                    key=key,
                    type=KeyType.from_reply(type_name),
                    ttl_ms=pttl if pttl >= 0 else None,
                    captured_at_ms=captured_at,
                    payload=type_name,
                )
            )

        readable = [d for d in pending if d.type is not KeyType.UNSUPPORTED]
        values = await self._source_batch(
            service,
            strategy,
            [_read_command(descriptor) for descriptor in readable],
        )
        replies = iter(values)

        descriptors: list[RedisKeyDescriptor] = []
        for descriptor in pending:
            if descriptor.type is KeyType.UNSUPPORTED:
                descriptors.append(descriptor)
                continue
            payload = self._payload(descriptor.type, next(replies))
            if payload is None:
                warnings.append(f"key {descriptor.key!r} vanished before it could be read")
                continue
            descriptors.append(descriptor.model_copy(update={"payload": payload}))
        return descriptors, warnings, len(keys)

    @staticmethod
    def _payload(key_type: KeyType, reply: Reply):
        if is_error(reply) or not reply or reply == ["NULL"]:
            return None
        if key_type is KeyType.STRING:
            return reply[0]
        if key_type is KeyType.HASH:
            return _pairs(reply)
        if key_type is KeyType.ZSET:
            # WITHSCORES answers member, score; ZADD wants score, member
            return [(score, member) for member, score in _pairs(reply)]
        return list(reply)

    async def dump(self, service: ServiceInstance, strategy: CredentialStrategy) -> DumpArtifact:
        descriptors, warnings, enumerated = await self.capture(service, strategy)
        path = self.adapter.dump_dir / f"{service.name}{KEY_SCRIPT_SUFFIX}"

        lines = [
            "# datastore-migrator key export",
            f"# service: {service.name} source db: {service.credentials.db_index} keys: {enumerated}",
        ]
        exported = 0
        for descriptor in descriptors:
            try:
                lines.extend(key_commands(descriptor))
            except UnsupportedKeyType as e:
                lines.append(f"# skipped {quote_arg(descriptor.key)} type {descriptor.payload}")
                warnings.append(f"{e.reason}: {e}")
                self.logger.warning("Skipping unsupported key", service=service.name, key=repr(descriptor.key))
                continue
            exported += 1

        path.write_bytes(("\n".join(lines) + "\n").encode("ascii"))
        return DumpArtifact.from_file(
            service.name,
            ArtifactFormat.KEY_COMMAND_SCRIPT,
            path,
            expected_count=exported,
            auth_label=strategy.label,
            empty_source=enumerated == 0,
            warnings=warnings,
        )

    async def import_artifact(self, service: ServiceInstance, artifact: DumpArtifact, index: int) -> None:
        commands = [
            line
            for line in artifact.path.read_bytes().split(b"\n")
            if line.strip() and not line.startswith(b"#")
        ]
        try:
            replies = await self.adapter.target_batch(commands, db=index, timeout=IMPORT_TIMEOUT)
        except CommandError as e:
            raise ImportPartial(f"key replay incomplete: {e}") from e
        errors = [reply for reply in replies if is_error(reply)]
        if errors:
            raise ImportPartial(f"{len(errors)} of {len(commands)} commands failed, first: {errors[0]!r}")
        self.logger.info("Replayed key script", service=service.name, commands=len(commands), index=index)

    def counts_match(self, observed: int, expected: int) -> bool:
        return observed == expected


class SnapshotStrategy(RedisStrategy):
    """Copy the source snapshot file and restore it through a helper instance."""

    method = RedisMethod.SNAPSHOT

    async def dump(self, service: ServiceInstance, strategy: CredentialStrategy) -> DumpArtifact:
        try:
            save, directory, filename, dbsize = await self.adapter.run_batch(
                service.container,
                ["SAVE", "CONFIG GET dir", "CONFIG GET dbfilename", "DBSIZE"],
                db=service.credentials.db_index,
                password=strategy.password,
                port=service.credentials.port,
                timeout=DUMP_TIMEOUT,
            )
        except CommandError as e:
            raise DumpError(f"snapshot introspection failed: {e}") from e

        if save != [b"OK"]:
            raise DumpError(f"SAVE failed: {save!r}")
        for reply, name in ((directory, "dir"), (filename, "dbfilename")):
            if is_error(reply) or len(reply) != 2 or not isinstance(reply[1], bytes):
                raise DumpError(f"cannot determine snapshot location (CONFIG GET {name}: {reply!r})")
        try:
            expected = as_int(dbsize)
        except ReplyParseError as e:
            raise DumpError(f"DBSIZE failed: {e}") from e

        remote = str(PurePosixPath(directory[1].decode()) / filename[1].decode())
        path = self.adapter.dump_dir / f"{service.name}{SNAPSHOT_SUFFIX}"
        try:
            await self.adapter.runtime.copy_from(service.container, remote, path)
        except CommandError as e:
            raise DumpError(f"copying {remote} out of {service.container} failed: {e}") from e

        artifact = DumpArtifact.from_file(
            service.name,
            ArtifactFormat.SNAPSHOT_FILE,
            path,
            expected_count=expected,
            auth_label=strategy.label,
            empty_source=expected == 0,
        )
        if not artifact.non_empty:
            raise DumpEmpty(f"snapshot file {remote} is empty")
        return artifact

    async def _image(self) -> str:
        if self.adapter.snapshot_image:
            return self.adapter.snapshot_image
        return await self.adapter.runtime.image(self.adapter.target.container) or DEFAULT_REDIS_IMAGE

    async def import_artifact(self, service: ServiceInstance, artifact: DumpArtifact, index: int) -> None:
        source_db = service.credentials.db_index
        image = await self._image()
        try:
            async with ephemeral_redis(self.adapter.runtime, image, artifact.path, service.name) as helper:
                (keys_reply,) = await self.adapter.run_batch(helper, ["KEYS *"], db=source_db, password=None)
                keys = [key for key in keys_reply if isinstance(key, bytes)]
                dumped = await self.adapter.run_batch(
                    helper,
                    [line for key in keys for line in (render_command("PTTL", key), render_command("DUMP", key))],
                    db=source_db,
                    password=None,
                    timeout=IMPORT_TIMEOUT,
                )
        except CommandError as e:
            raise RestoreError(f"reading snapshot through helper instance failed: {e}") from e

        restores: list[str] = []
        for position, key in enumerate(keys):
            pttl_reply, payload_reply = dumped[2 * position], dumped[2 * position + 1]
            try:
                pttl = as_int(pttl_reply)
            except ReplyParseError:
                continue
            if pttl == -2 or not payload_reply or not isinstance(payload_reply[0], bytes):
                continue
            restores.append(render_command("RESTORE", key, max(pttl, 0), payload_reply[0], "REPLACE"))

        try:
            replies = await self.adapter.target_batch(restores, db=index, timeout=IMPORT_TIMEOUT)
        except CommandError as e:
            raise RestoreError(f"RESTORE into db {index} failed: {e}") from e
        errors = [reply for reply in replies if is_error(reply)]
        if errors:
            raise ImportPartial(f"{len(errors)} of {len(restores)} keys failed to restore, first: {errors[0]!r}")
        self.logger.info("Restored snapshot keys", service=service.name, keys=len(restores), index=index)

    def counts_match(self, observed: int, expected: int) -> bool:
        return observed >= expected
