"""Data models for the datastore migrator."""

from .enums import ArtifactFormat, EngineKind, KeyType, MigrationState, RedisMethod
from .record import MigrationRecord, MigrationReport, VerificationResult
from .service import (
    CredentialSet,
    DumpArtifact,
    MigratorModel,
    RedisKeyDescriptor,
    ServiceInstance,
)

__all__ = [
    "ArtifactFormat",
    "CredentialSet",
    "DumpArtifact",
    "EngineKind",
    "KeyType",
    "MigrationRecord",
    "MigrationReport",
    "MigrationState",
    "MigratorModel",
    "RedisKeyDescriptor",
    "RedisMethod",
    "ServiceInstance",
    "VerificationResult",
]
