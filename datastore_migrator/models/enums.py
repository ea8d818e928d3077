"""Enum definitions for the datastore migrator."""

from enum import Enum


class EngineKind(str, Enum):
    """Datastore engine families the migrator knows how to move."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    REDIS = "redis"

    @property
    def is_relational(self) -> bool:
        return self is not EngineKind.REDIS


class RedisMethod(str, Enum):
    """Schemaless migration strategies."""

    SNAPSHOT = "snapshot"
    LIVE = "live"


class ArtifactFormat(str, Enum):
    SQL_SCRIPT = "sql-script"
    SNAPSHOT_FILE = "snapshot-file"
    KEY_COMMAND_SCRIPT = "key-command-script"


class KeyType(str, Enum):
    """Redis value types as reported by ``TYPE``."""

    STRING = "string"
    HASH = "hash"
    LIST = "list"
    SET = "set"
    ZSET = "zset"
    UNSUPPORTED = "unsupported"

    @classmethod
    def from_reply(cls, value: str) -> "KeyType":
        try:
            return cls(value)
        except ValueError:
            return cls.UNSUPPORTED


class MigrationState(str, Enum):
    """Lifecycle of a single service migration."""

    DISCOVERED = "discovered"
    DUMPED = "dumped"
    PROVISIONED = "provisioned"
    IMPORTED = "imported"
    VERIFIED = "verified"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (MigrationState.VERIFIED, MigrationState.SKIPPED, MigrationState.FAILED)
