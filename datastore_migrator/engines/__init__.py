"""Engine adapters for the supported datastore kinds."""

from ..core.config_loader import MigratorConfig
from ..core.container_runtime import ContainerRuntime
from ..models import EngineKind
from .base import DatastoreAdapter, TargetConnection
from .mysql import MySQLAdapter
from .postgres import PostgresAdapter
from .redis import IndexAllocator, RedisAdapter

__all__ = [
    "DatastoreAdapter",
    "IndexAllocator",
    "MySQLAdapter",
    "PostgresAdapter",
    "RedisAdapter",
    "TargetConnection",
    "create_adapter",
]


def create_adapter(config: MigratorConfig, runtime: ContainerRuntime) -> DatastoreAdapter:
    """Build the adapter matching the configured target engine."""
    target_name, engine = config.require_target()
    target = TargetConnection(
        container=target_name,
        user=config.target_user,
        password=config.target_password,
        port=config.target_port,
    )
    if engine is EngineKind.POSTGRES:
        return PostgresAdapter(runtime, target, config.dump_dir)
    if engine is EngineKind.MYSQL:
        return MySQLAdapter(runtime, target, config.dump_dir)
    options = config.redis
    return RedisAdapter(
        runtime,
        target,
        config.dump_dir,
        method=options.method,
        allocator=IndexAllocator(options.index_base, options.index_map, options.max_databases),
        snapshot_image=options.snapshot_image,
    )
