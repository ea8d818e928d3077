"""Service, credential and artifact data models."""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .enums import ArtifactFormat, EngineKind, KeyType


class MigratorModel(BaseModel):
    """Base model with common serialization settings."""

    def model_dump(self, **kwargs) -> dict[str, Any]:
        """Convert to dict with exclude_none by default."""
        kwargs.setdefault("exclude_none", True)
        return super().model_dump(**kwargs)


class CredentialSet(MigratorModel):
    """Credentials discovered for one service. Any field may be missing."""

    model_config = ConfigDict(frozen=True)

    user: str | None = None
    password: str | None = Field(default=None, repr=False)
    superuser_password: str | None = Field(default=None, repr=False)
    database: str | None = None
    port: int | None = None
    db_index: int = 0  # redis only


class ServiceInstance(MigratorModel):
    """One application service whose datastore is being migrated."""

    model_config = ConfigDict(frozen=True)

    name: str
    engine: EngineKind
    container: str
    credentials: CredentialSet = Field(default_factory=CredentialSet)
    source_dir: Path | None = None


class DumpArtifact(MigratorModel):
    """Portable export produced for exactly one service."""

    service: str
    format: ArtifactFormat
    path: Path
    size_bytes: int = 0
    expected_count: int = 0
    auth_label: str | None = None
    empty_source: bool = False
    warnings: list[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def non_empty(self) -> bool:
        return self.size_bytes > 0

    @classmethod
    def from_file(cls, service: str, format: ArtifactFormat, path: Path, **kwargs) -> "DumpArtifact":
        size = path.stat().st_size if path.exists() else 0
        return cls(service=service, format=format, path=path, size_bytes=size, **kwargs)


class RedisKeyDescriptor(BaseModel):
    """A single key captured during live export.

    ``payload`` shape depends on ``type``: bytes for strings, a list of
    (field, value) pairs for hashes, ordered members for lists and sets, and
    (score, member) pairs for sorted sets. Unsupported keys carry the type name
    the server reported.
    """

    key: bytes
    type: KeyType
    payload: Any = None
    ttl_ms: int | None = None
    captured_at_ms: int = 0

    @property
    def ttl(self) -> int | None:
        """Remaining time-to-live in whole seconds, None when the key never expires."""
        if self.ttl_ms is None:
            return None
        return max(0, self.ttl_ms // 1000)

    @property
    def expire_at_ms(self) -> int | None:
        if self.ttl_ms is None:
            return None
        return self.captured_at_ms + self.ttl_ms
