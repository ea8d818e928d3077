"""Migration record, verification and report models."""

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from ..core.exceptions import InvalidTransition
from .enums import EngineKind, MigrationState
from .service import DumpArtifact

# Allowed edges of the per-service state machine.
TRANSITIONS: dict[MigrationState, frozenset[MigrationState]] = {
    MigrationState.DISCOVERED: frozenset(
        {MigrationState.DUMPED, MigrationState.SKIPPED, MigrationState.FAILED}
    ),
    MigrationState.DUMPED: frozenset({MigrationState.PROVISIONED, MigrationState.FAILED}),
    MigrationState.PROVISIONED: frozenset({MigrationState.IMPORTED, MigrationState.FAILED}),
    MigrationState.IMPORTED: frozenset({MigrationState.VERIFIED, MigrationState.FAILED}),
    MigrationState.VERIFIED: frozenset(),
    MigrationState.SKIPPED: frozenset(),
    MigrationState.FAILED: frozenset(),
}


class VerificationResult(BaseModel):
    """Outcome of comparing post-import counts against expectations."""

    passed: bool
    observed_count: int
    expected_count: int
    access_ok: bool = True
    detail: str = ""
    sample: list[str] = Field(default_factory=list)  # bounded listing of migrated tables or keys


class MigrationRecord(BaseModel):
    """Mutable bookkeeping for one service across the pipeline."""

    service: str
    engine: EngineKind
    state: MigrationState = MigrationState.DISCOVERED
    reason: str | None = None
    detail: str | None = None
    observed_count: int | None = None
    expected_count: int | None = None
    target_index: int | None = None
    artifact: DumpArtifact | None = None
    warnings: list[str] = Field(default_factory=list)
    sample: list[str] = Field(default_factory=list)
    connect_hint: str | None = None

    def transition(
        self, state: MigrationState, reason: str | None = None, detail: str | None = None
    ) -> None:
        """Move to ``state``, raising InvalidTransition for edges not in the state machine."""
        if state not in TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"{self.service}: cannot move from {self.state.value} to {state.value}"
            )
        self.state = state
        if reason is not None:
            self.reason = reason
        if detail is not None:
            self.detail = detail

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


class MigrationReport(BaseModel):
    """Summary of one migration run."""

    target: str
    engine: EngineKind
    method: str | None = None
    records: list[MigrationRecord] = Field(default_factory=list)
    fatal_error: str | None = None
    provisioning_script: str | None = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    def count(self, state: MigrationState) -> int:
        return sum(1 for record in self.records if record.state == state)

    @property
    def exit_code(self) -> int:
        """0 when every service verified or skipped, 1 on any failure, 2 when fatal."""
        if self.fatal_error is not None:
            return 2
        if any(record.state == MigrationState.FAILED for record in self.records):
            return 1
        return 0
