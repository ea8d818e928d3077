"""Tests for snapshot-based Redis migration and the ephemeral helper instance."""

import pytest

from datastore_migrator.constants import EPHEMERAL_DATA_PATH, EPHEMERAL_PREFIX
from datastore_migrator.core.exceptions import DumpError, ImportPartial, ReadinessTimeout
from datastore_migrator.engines import IndexAllocator, RedisAdapter, TargetConnection
from datastore_migrator.engines.ephemeral import SERVER_COMMAND, ephemeral_redis
from datastore_migrator.models import (
    ArtifactFormat,
    CredentialSet,
    EngineKind,
    RedisMethod,
    ServiceInstance,
)
from tests.fakes import FakeRedisServer

SERVICE = ServiceInstance(
    name="cache",
    engine=EngineKind.REDIS,
    container="cache_redis",
    credentials=CredentialSet(password="pw", port=6379, db_index=2),
)


@pytest.fixture
def source(runtime) -> FakeRedisServer:
    server = FakeRedisServer(password="pw", directory="/var/lib/redis", dbfilename="cache.rdb")
    server.set(b"k1", "string", b"v1", db=2)
    server.set(b"k2", "zset", {b"m": 1.0}, db=2)
    server.set(b"session", "string", b"token", db=2, ttl_ms=120_000)
    server.set(b"other-db", "string", b"ignored", db=0)
    runtime.add("cache_redis", server)
    return server


@pytest.fixture
def target(runtime) -> FakeRedisServer:
    server = FakeRedisServer(password="tpw")
    runtime.add("central_redis", server, env={"REDIS_PASSWORD": "tpw"}, image="redis:7.4")
    return server


def _adapter(runtime, dump_dir, **kwargs) -> RedisAdapter:
    return RedisAdapter(
        runtime,
        TargetConnection("central_redis"),
        dump_dir,
        method=RedisMethod.SNAPSHOT,
        allocator=IndexAllocator(index_map={"cache": 5}),
        **kwargs,
    )


class TestSnapshotMigration:
    @pytest.mark.asyncio
    async def test_full_snapshot_migration(self, runtime, dump_dir, source, target):
        adapter = _adapter(runtime, dump_dir)
        adapter.prepare([SERVICE])

        artifact = await adapter.dump(SERVICE)
        assert artifact.format is ArtifactFormat.SNAPSHOT_FILE
        assert artifact.path == dump_dir / "cache_dump.rdb"
        assert artifact.expected_count == 3
        assert source.commands("SAVE")

        await adapter.connect_target()
        await adapter.provision(SERVICE)
        await adapter.import_artifact(SERVICE, artifact)
        result = await adapter.verify(SERVICE, artifact)

        assert result.passed
        assert result.observed_count == 3
        assert set(target.db(5)) == {b"k1", b"k2", b"session"}
        assert target.db(5)[b"k2"] == ("zset", {b"m": 1.0})
        assert b"session" in target.expires[5]

        (name, image, command) = runtime.created[0]
        assert name.startswith(EPHEMERAL_PREFIX + "cache-")
        assert image == "redis:7.4"
        assert command == SERVER_COMMAND
        assert runtime.removed == [name]
        assert name not in runtime.containers

    @pytest.mark.asyncio
    async def test_snapshot_image_override(self, runtime, dump_dir, source, target):
        adapter = _adapter(runtime, dump_dir, snapshot_image="redis:6-alpine")
        adapter.prepare([SERVICE])
        artifact = await adapter.dump(SERVICE)
        await adapter.connect_target()
        await adapter.import_artifact(SERVICE, artifact)
        assert runtime.created[0][1] == "redis:6-alpine"

    @pytest.mark.asyncio
    async def test_config_introspection_failure_is_dump_error(self, runtime, dump_dir, source):
        source.config_enabled = False
        adapter = _adapter(runtime, dump_dir)
        with pytest.raises(DumpError, match="cannot determine snapshot location"):
            await adapter.dump(SERVICE)

    @pytest.mark.asyncio
    async def test_save_failure_is_dump_error(self, runtime, dump_dir, source):
        source.fail_commands.add("SAVE")
        with pytest.raises(DumpError, match="SAVE failed"):
            await _adapter(runtime, dump_dir).dump(SERVICE)

    @pytest.mark.asyncio
    async def test_restore_errors_are_partial(self, runtime, dump_dir, source, target):
        adapter = _adapter(runtime, dump_dir)
        adapter.prepare([SERVICE])
        artifact = await adapter.dump(SERVICE)
        await adapter.connect_target()
        await adapter.provision(SERVICE)
        target.fail_commands.add("RESTORE")

        with pytest.raises(ImportPartial, match="3 of 3 keys failed"):
            await adapter.import_artifact(SERVICE, artifact)
        assert len(runtime.removed) == 1

        result = await adapter.verify(SERVICE, artifact)
        assert not result.passed


class TestEphemeralInstance:
    @pytest.mark.asyncio
    async def test_removed_when_body_raises(self, runtime, tmp_path):
        snapshot = tmp_path / "dump.rdb"
        snapshot.write_bytes(FakeRedisServer().snapshot())

        with pytest.raises(RuntimeError):
            async with ephemeral_redis(runtime, "redis:7", snapshot, "svc") as name:
                assert runtime.containers[name].files[EPHEMERAL_DATA_PATH] == snapshot.read_bytes()
                raise RuntimeError("boom")

        assert runtime.removed == [name]
        assert runtime.containers == {}

    @pytest.mark.asyncio
    async def test_waits_through_loading(self, runtime, tmp_path):
        runtime.helper_loading_pings = 3
        snapshot = tmp_path / "dump.rdb"
        snapshot.write_bytes(FakeRedisServer().snapshot())

        async with ephemeral_redis(runtime, "redis:7", snapshot, "svc", timeout=5, interval=0.01) as name:
            assert runtime.containers[name].running

        pings = [call for call in runtime.exec_calls if call.cmd == ["redis-cli", "PING"]]
        assert len(pings) == 4

    @pytest.mark.asyncio
    async def test_readiness_timeout_still_removes(self, runtime, tmp_path):
        runtime.helper_loading_pings = 10**6
        snapshot = tmp_path / "dump.rdb"
        snapshot.write_bytes(FakeRedisServer().snapshot())

        with pytest.raises(ReadinessTimeout):
            async with ephemeral_redis(runtime, "redis:7", snapshot, "svc", timeout=0.05, interval=0.01):
                pytest.fail("body must not run")

        assert len(runtime.removed) == 1
        assert runtime.containers == {}
