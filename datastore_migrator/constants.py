"""Centralized constants for the datastore migrator."""

from .models.enums import EngineKind

# Defaults mirrored by the config loader and CLI
DEFAULT_SERVICES_ROOT = "/opt/docker/stacks"
DEFAULT_DUMP_DIR = "/tmp/datastore_dumps"
DEFAULT_ENV_FILENAME = ".env"
DEFAULT_CONTAINER_TEMPLATE = "{service}_{engine}"
DEFAULT_WORKERS = 3
DEFAULT_IMPORT_CONCURRENCY = 1

# Superuser account names per relational engine
SUPERUSERS: dict[EngineKind, str] = {
    EngineKind.POSTGRES: "postgres",
    EngineKind.MYSQL: "root",
}

DEFAULT_PORTS: dict[EngineKind, int] = {
    EngineKind.POSTGRES: 5432,
    EngineKind.MYSQL: 3306,
    EngineKind.REDIS: 6379,
}

# Ordered credential key aliases. The first non-empty value wins.
CREDENTIAL_ALIASES: dict[EngineKind, dict[str, tuple[str, ...]]] = {
    EngineKind.POSTGRES: {
        "database": ("POSTGRES_DB", "POSTGRES_DATABASE", "DB_NAME", "DB_DATABASE", "DATABASE"),
        "user": ("POSTGRES_USER", "DB_USER", "DB_USERNAME", "USER"),
        "password": ("POSTGRES_PASSWORD", "POSTGRES_PASS", "DB_PASSWORD", "DB_PASS", "PASSWORD"),
        "superuser_password": ("POSTGRES_SUPERUSER_PASSWORD", "POSTGRES_ADMIN_PASSWORD"),
        "port": ("POSTGRES_PORT", "DB_PORT"),
        "container": ("POSTGRES_CONTAINER",),
    },
    EngineKind.MYSQL: {
        "database": (
            "MYSQL_DATABASE",
            "MYSQL_DB",
            "MARIADB_DATABASE",
            "DB_NAME",
            "DB_DATABASE",
            "DATABASE",
        ),
        "user": ("MYSQL_USER", "MARIADB_USER", "DB_USER", "DB_USERNAME", "USER"),
        "password": ("MYSQL_PASSWORD", "MARIADB_PASSWORD", "DB_PASSWORD", "DB_PASS", "PASSWORD"),
        "superuser_password": ("MYSQL_ROOT_PASSWORD", "MARIADB_ROOT_PASSWORD"),
        "port": ("MYSQL_PORT", "DB_PORT"),
        "container": ("MYSQL_CONTAINER",),
    },
    EngineKind.REDIS: {
        "password": ("REDIS_PASSWORD", "REDIS_PASS", "REDIS_AUTH"),
        "port": ("REDIS_PORT",),
        "db_index": ("REDIS_DB", "REDIS_DATABASE"),
        "container": ("REDIS_CONTAINER",),
    },
}

# Target container environment keys used to auto-detect superuser credentials
TARGET_PASSWORD_ENV: dict[EngineKind, tuple[str, ...]] = {
    EngineKind.POSTGRES: ("POSTGRES_PASSWORD",),
    EngineKind.MYSQL: ("MYSQL_ROOT_PASSWORD", "MARIADB_ROOT_PASSWORD"),
    EngineKind.REDIS: ("REDIS_PASSWORD", "REDIS_PASS", "REDIS_AUTH"),
}
TARGET_USER_ENV: dict[EngineKind, tuple[str, ...]] = {
    EngineKind.POSTGRES: ("POSTGRES_USER",),
}

# Redis marker substring that flags a service as using the schemaless store
REDIS_MARKER = "REDIS"

# Generated artifact names
PROVISION_SQL_FILENAME = "create_users_and_dbs.sql"
PROVISION_REDIS_FILENAME = "provision.redis"
SQL_DUMP_SUFFIX = "_dump.sql"
SNAPSHOT_SUFFIX = "_dump.rdb"
KEY_SCRIPT_SUFFIX = "_export.redis"

# Ephemeral snapshot instance
EPHEMERAL_PREFIX = "datastore-migrator-snapshot-"
EPHEMERAL_DATA_PATH = "/data/dump.rdb"
DEFAULT_REDIS_IMAGE = "redis:7-alpine"

# Chunk size for multi-member redis commands
REDIS_MEMBER_CHUNK = 256

# Taxonomy tag for exceptions nobody anticipated
UNEXPECTED_ERROR = "UnexpectedError"

# Tables or keys listed per service after verification
VERIFY_SAMPLE_SIZE = 10
