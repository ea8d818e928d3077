"""Tests for live Redis migration through generated command scripts."""

import time

import pytest

from datastore_migrator.core.exceptions import AuthExhausted, ImportPartial, ProvisionError
from datastore_migrator.engines import IndexAllocator, RedisAdapter, TargetConnection
from datastore_migrator.engines.redis import key_commands
from datastore_migrator.models import (
    ArtifactFormat,
    CredentialSet,
    EngineKind,
    KeyType,
    RedisKeyDescriptor,
    RedisMethod,
    ServiceInstance,
)
from tests.fakes import FakeRedisServer


def _service(name: str = "cache", container: str = "cache_redis", **credentials) -> ServiceInstance:
    credentials.setdefault("password", "pw")
    credentials.setdefault("port", 6379)
    return ServiceInstance(
        name=name, engine=EngineKind.REDIS, container=container, credentials=CredentialSet(**credentials)
    )


@pytest.fixture
def source(runtime) -> FakeRedisServer:
    server = FakeRedisServer(password="pw")
    runtime.add("cache_redis", server)
    return server


@pytest.fixture
def target(runtime) -> FakeRedisServer:
    server = FakeRedisServer(password="tpw")
    runtime.add("central_redis", server, env={"REDIS_PASSWORD": "tpw"})
    return server


@pytest.fixture
def adapter(runtime, dump_dir, target) -> RedisAdapter:
    return RedisAdapter(
        runtime,
        TargetConnection("central_redis"),
        dump_dir,
        method=RedisMethod.LIVE,
        allocator=IndexAllocator(index_map={"cache": 7}),
    )


async def migrate(adapter: RedisAdapter, service: ServiceInstance):
    adapter.prepare([service])
    artifact = await adapter.dump(service)
    await adapter.connect_target()
    await adapter.provision(service)
    await adapter.import_artifact(service, artifact)
    return artifact, await adapter.verify(service, artifact)


class TestLiveMigration:
    @pytest.mark.asyncio
    async def test_three_keys_into_index_seven(self, adapter, source, target):
        source.set(b"k1", "string", b"v1")
        source.set(b"k2", "hash", {b"f1": b"a", b"f2": b"b"})
        source.set(b"k3", "list", [b"c", b"a", b"b"])

        artifact, result = await migrate(adapter, _service())

        assert artifact.format is ArtifactFormat.KEY_COMMAND_SCRIPT
        assert result.passed
        assert result.observed_count == 3
        assert set(target.db(7)) == {b"k1", b"k2", b"k3"}
        assert target.db(7)[b"k3"] == ("list", [b"c", b"a", b"b"])
        assert target.db(7)[b"k2"] == ("hash", {b"f1": b"a", b"f2": b"b"})
        assert target.db(0) == {}
        assert result.sample == ["k1", "k2", "k3"]
        assert adapter.connect_hint(_service()) == "docker exec -it central_redis redis-cli --askpass -n 7"

    @pytest.mark.asyncio
    async def test_target_port_is_used_for_every_target_call(self, runtime, dump_dir, source, target):
        adapter = RedisAdapter(
            runtime,
            TargetConnection("central_redis", port=6380),
            dump_dir,
            allocator=IndexAllocator(index_map={"cache": 7}),
        )
        source.set(b"k1", "string", b"v1")

        _, result = await migrate(adapter, _service())

        assert result.passed
        target_calls = [call for call in runtime.exec_calls if call.container == "central_redis"]
        assert target_calls
        for call in target_calls:
            assert call.cmd[call.cmd.index("-p") + 1] == "6380"
        assert " -p 6380 " in adapter.connect_hint(_service())

    @pytest.mark.asyncio
    async def test_mixed_types_and_binary_keys(self, adapter, source, target):
        binary_key = b"\x00bin\xff\n\"key\""
        source.set(binary_key, "string", bytes(range(256)))
        source.set(b"tags", "set", [b"x", b"y"])
        source.set(b"board", "zset", {b"alice": 1.5, b"bob": -2.0, b"carol": 10.0})
        source.set(b"queue", "list", [b"1", b"2"])

        _, result = await migrate(adapter, _service())

        assert result.passed
        migrated = target.db(7)
        assert migrated[binary_key] == ("string", bytes(range(256)))
        for key in (b"tags", b"board", b"queue"):
            assert migrated[key][0] == source.db(0)[key][0]
        assert migrated[b"board"][1] == {b"alice": 1.5, b"bob": -2.0, b"carol": 10.0}

    @pytest.mark.asyncio
    async def test_ttl_is_absolute(self, adapter, source, target):
        source.set(b"session", "string", b"token", ttl_ms=60_000)
        source.set(b"forever", "string", b"x")
        source_expiry = source.expires[0][b"session"]

        await migrate(adapter, _service())

        assert abs(target.expires[7][b"session"] - source_expiry) < 1000
        assert b"forever" not in target.expires[7]
        assert target.commands("PEXPIREAT")
        assert target.commands("PERSIST")

    @pytest.mark.asyncio
    async def test_unsupported_type_is_skipped_with_warning(self, adapter, source, target, dump_dir):
        source.set(b"k1", "string", b"v1")
        source.set(b"events", "stream", [])

        artifact, result = await migrate(adapter, _service())

        assert artifact.expected_count == 1
        assert any("UnsupportedKeyType" in w for w in artifact.warnings)
        assert '# skipped "events" type stream' in (dump_dir / "cache_export.redis").read_text()
        assert result.passed
        assert set(target.db(7)) == {b"k1"}

    @pytest.mark.asyncio
    async def test_empty_keyspace(self, adapter, source, target):
        artifact, result = await migrate(adapter, _service())
        assert artifact.empty_source
        assert artifact.non_empty
        assert artifact.expected_count == 0
        assert result.passed
        assert result.observed_count == 0

    @pytest.mark.asyncio
    async def test_rerun_replaces_stale_keys(self, adapter, source, target):
        target.set(b"stale", "string", b"old", db=7)
        source.set(b"k1", "string", b"v1")
        await migrate(adapter, _service())
        source.set(b"k1", "string", b"v2")
        _, result = await migrate(adapter, _service())
        assert result.passed
        assert target.db(7) == {b"k1": ("string", b"v2")}

    @pytest.mark.asyncio
    async def test_passwords_stay_out_of_argv(self, runtime, adapter, source, target):
        source.set(b"k1", "string", b"v1")
        await migrate(adapter, _service())
        for call in runtime.exec_calls:
            assert "pw" not in call.cmd and "tpw" not in call.cmd
            assert "--csv" in call.cmd and "--no-auth-warning" in call.cmd
        auth = {call.env.get("REDISCLI_AUTH") for call in runtime.exec_calls}
        assert auth == {"pw", "tpw"}

    @pytest.mark.asyncio
    async def test_auth_exhausted(self, adapter, source):
        with pytest.raises(AuthExhausted):
            await adapter.dump(_service(password="wrong"))

    @pytest.mark.asyncio
    async def test_failed_commands_make_import_partial(self, adapter, source, target):
        source.set(b"k1", "string", b"v1")
        source.set(b"k2", "hash", {b"f": b"v"})
        service = _service()
        adapter.prepare([service])
        artifact = await adapter.dump(service)
        await adapter.connect_target()
        await adapter.provision(service)
        target.fail_commands.add("HSET")

        with pytest.raises(ImportPartial, match="1 of"):
            await adapter.import_artifact(service, artifact)

        result = await adapter.verify(service, artifact)
        assert not result.passed
        assert result.observed_count == 1

    @pytest.mark.asyncio
    async def test_unassigned_index_fails_provisioning(self, runtime, dump_dir, source, target):
        adapter = RedisAdapter(
            runtime,
            TargetConnection("central_redis"),
            dump_dir,
            allocator=IndexAllocator(max_databases=1),
        )
        first, second = _service("a"), _service("b")
        adapter.prepare([first, second])
        assert adapter.target_index(first) == 0
        await adapter.connect_target()
        with pytest.raises(ProvisionError, match="no free destination database index"):
            await adapter.provision(second)


class TestIndexAllocator:
    def test_sequential_from_base(self):
        assert IndexAllocator(base=2).allocate(["a", "b", "c"]) == {"a": 2, "b": 3, "c": 4}

    def test_explicit_map_wins_and_is_skipped_by_sequence(self):
        allocator = IndexAllocator(base=1, index_map={"b": 2})
        assert allocator.allocate(["a", "b", "c"]) == {"a": 1, "b": 2, "c": 3}

    def test_overflow_leaves_services_unassigned(self):
        assert IndexAllocator(base=14, max_databases=16).allocate(["a", "b", "c"]) == {"a": 14, "b": 15}

    def test_invalid_or_duplicate_map_entries(self):
        allocator = IndexAllocator(index_map={"a": 3, "b": 3, "c": 99}, max_databases=16)
        assignments = allocator.allocate(["a", "b", "c", "d"])
        assert assignments == {"a": 3, "d": 0}

    def test_distinct_indices_for_services_sharing_source_index(self):
        assignments = IndexAllocator().allocate(["one", "two"])
        assert len(set(assignments.values())) == 2


def test_key_commands_chunk_large_lists():
    descriptor = RedisKeyDescriptor(
        key=b"big", type=KeyType.LIST, payload=[str(i).encode() for i in range(600)]
    )
    lines = key_commands(descriptor, chunk=256)
    assert lines[0] == 'DEL "big"'
    assert [line.split(" ")[0] for line in lines[1:]] == ["RPUSH", "RPUSH", "RPUSH", "PERSIST"]


def test_key_commands_expiry():
    now = int(time.time() * 1000)
    descriptor = RedisKeyDescriptor(
        key=b"k", type=KeyType.STRING, payload=b"v", ttl_ms=5000, captured_at_ms=now
    )
    assert key_commands(descriptor)[-1] == f'PEXPIREAT "k" "{now + 5000}"'
