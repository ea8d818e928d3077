"""Migration orchestrator.

Runs every discovered service through discover -> dump -> provision ->
import -> verify, isolating per-service failures in that service's record.
Only an unreachable target aborts the run.
"""

import asyncio
import os
from datetime import UTC, datetime
from pathlib import Path

import structlog
from structlog.stdlib import BoundLogger

from ...constants import UNEXPECTED_ERROR
from ...engines import DatastoreAdapter, create_adapter
from ...models import (
    DumpArtifact,
    MigrationRecord,
    MigrationReport,
    MigrationState,
    ServiceInstance,
)
from ..config_loader import MigratorConfig
from ..container_runtime import ContainerRuntime, DockerRuntime
from ..discovery import CredentialDiscovery
from ..exceptions import (
    CommandError,
    DumpError,
    ImportPartial,
    ProvisionError,
    RestoreError,
    ServiceError,
    TargetUnreachable,
    VerificationFailed,
)

# Taxonomy tag for a bare CommandError escaping each phase
PHASE_ERRORS: dict[str, type[ServiceError]] = {
    "dump": DumpError,
    "provision": ProvisionError,
    "import": RestoreError,
    "verify": VerificationFailed,
}


class MigrationOrchestrator:
    """Drives one migration run against a single consolidated target."""

    def __init__(
        self,
        config: MigratorConfig,
        runtime: ContainerRuntime | None = None,
        adapter: DatastoreAdapter | None = None,
    ):
        self.config = config
        self.target, self.engine = config.require_target()
        self.runtime = runtime or DockerRuntime()
        self.adapter = adapter or create_adapter(config, self.runtime)
        self.discovery = CredentialDiscovery(
            self.engine,
            env_filename=config.env_filename,
            container_template=config.container_template,
            exclude=config.exclude_services,
        )
        self._dump_slots = asyncio.Semaphore(config.workers)
        self._load_slots = asyncio.Semaphore(config.import_concurrency)
        self.logger: BoundLogger = structlog.get_logger().bind(
            component="migration_orchestrator", target=self.target, engine=self.engine.value
        )

    async def run(self) -> MigrationReport:
        """Execute the full pipeline and return the report. Never raises for per-service errors."""
        report = MigrationReport(
            target=self.target,
            engine=self.engine,
            method=self.config.redis.method.value if not self.engine.is_relational else None,
        )

        pending: list[tuple[MigrationRecord, ServiceInstance]] = []
        for entry in self.discovery.discover(self.config.services_root):
            record = MigrationRecord(service=entry.service.name, engine=self.engine)
            report.records.append(record)
            if entry.error is not None:
                self._settle(record, entry.error)
            else:
                pending.append((record, entry.service))

        self.adapter.prepare([service for _, service in pending])
        for record, service in pending:
            record.target_index = self.adapter.target_index(service)

        self.logger.info("Starting migration", services=len(report.records), migratable=len(pending))
        try:
            dumped = await self._dump_all(pending)
            if dumped:
                await self.adapter.connect_target()
                report.provisioning_script = str(self._write_provisioning_script(dumped))
                await self._load_all(dumped)
        except TargetUnreachable as e:
            self.logger.error("Target unreachable, aborting run", error=str(e))
            report.fatal_error = str(e)
            for record in report.records:
                if not record.is_terminal:
                    record.transition(MigrationState.FAILED, e.reason, str(e))
        finally:
            report.finished_at = datetime.now(UTC)

        self.logger.info(
            "Migration finished",
            verified=report.count(MigrationState.VERIFIED),
            skipped=report.count(MigrationState.SKIPPED),
            failed=report.count(MigrationState.FAILED),
            fatal=report.fatal_error is not None,
        )
        return report

    def _settle(self, record: MigrationRecord, error: ServiceError) -> None:
        """Move a record to the terminal state its error calls for."""
        state = MigrationState(error.terminal)
        if state is MigrationState.SKIPPED and record.state is not MigrationState.DISCOVERED:
            state = MigrationState.FAILED
        record.transition(state, error.reason, str(error))
        log = self.logger.info if state is MigrationState.SKIPPED else self.logger.warning
        log("Service " + state.value, service=record.service, reason=error.reason, detail=str(error))

    def _fail_unexpected(self, record: MigrationRecord, phase: str, error: Exception) -> None:
        self.logger.error(
            "Unexpected error in service pipeline",
            service=record.service,
            phase=phase,
            error=str(error),
            exc_info=True,
        )
        record.transition(MigrationState.FAILED, UNEXPECTED_ERROR, f"{phase}: {error}")

    # -- dump phase ---------------------------------------------------------

    async def _dump_all(
        self, pending: list[tuple[MigrationRecord, ServiceInstance]]
    ) -> list[tuple[MigrationRecord, ServiceInstance, DumpArtifact]]:
        results = await asyncio.gather(*(self._dump_one(record, service) for record, service in pending))
        return [
            (record, service, artifact)
            for (record, service), artifact in zip(pending, results)
            if artifact is not None
        ]

    async def _dump_one(self, record: MigrationRecord, service: ServiceInstance) -> DumpArtifact | None:
        async with self._dump_slots:
            self.logger.info("Dumping service", service=service.name, container=service.container)
            try:
                await self.adapter.check_source(service)
                artifact = await self.adapter.dump(service)
            except ServiceError as e:
                self._settle(record, e)
                return None
            except CommandError as e:
                self._settle(record, PHASE_ERRORS["dump"](str(e)))
                return None
            except Exception as e:
                self._fail_unexpected(record, "dump", e)
                return None

        record.artifact = artifact
        record.expected_count = artifact.expected_count
        for warning in artifact.warnings:
            record.warn(warning)
        if artifact.empty_source:
            record.warn("source is empty")
        record.transition(MigrationState.DUMPED)
        return artifact

    # -- provisioning script --------------------------------------------------

    def _write_provisioning_script(
        self, dumped: list[tuple[MigrationRecord, ServiceInstance, DumpArtifact]]
    ) -> Path:
        path = Path(self.config.dump_dir) / self.adapter.provisioning_script_name
        path.parent.mkdir(parents=True, exist_ok=True)
        script = "\n".join(self.adapter.provisioning_script(service) for _, service, _ in dumped)
        # Holds account passwords
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(script)
        self.logger.info("Wrote provisioning script", path=str(path), services=len(dumped))
        return path

    # -- provision / import / verify ------------------------------------------

    async def _load_all(self, dumped: list[tuple[MigrationRecord, ServiceInstance, DumpArtifact]]) -> None:
        tasks = [
            asyncio.create_task(self._load_one(record, service, artifact))
            for record, service, artifact in dumped
        ]
        try:
            await asyncio.gather(*tasks)
        except TargetUnreachable:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _load_one(
        self, record: MigrationRecord, service: ServiceInstance, artifact: DumpArtifact
    ) -> None:
        async with self._load_slots:
            phase = "provision"
            try:
                await self.adapter.provision(service)
                record.transition(MigrationState.PROVISIONED)

                phase = "import"
                try:
                    await self.adapter.import_artifact(service, artifact)
                except ImportPartial as e:
                    self.logger.warning("Import partially failed", service=service.name, detail=str(e))
                    record.warn(f"{e.reason}: {e}")
                record.transition(MigrationState.IMPORTED)

                phase = "verify"
                result = await self.adapter.verify(service, artifact)
                record.observed_count = result.observed_count
                record.expected_count = result.expected_count
                record.sample = result.sample
                if not result.passed:
                    raise VerificationFailed(result.detail)
                record.transition(MigrationState.VERIFIED)
                record.connect_hint = self.adapter.connect_hint(service)
                self.logger.info(
                    "Service verified",
                    service=service.name,
                    observed=result.observed_count,
                    expected=result.expected_count,
                )
            except TargetUnreachable:
                raise
            except ServiceError as e:
                self._settle(record, e)
            except CommandError as e:
                self._settle(record, PHASE_ERRORS[phase](str(e)))
            except Exception as e:
                self._fail_unexpected(record, phase, e)
