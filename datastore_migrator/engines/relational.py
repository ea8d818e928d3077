"""Shared dump/provision/import/verify pipeline for relational engines.

Concrete subclasses only describe how their client tools are invoked; the
credential fallback, streaming, error classification and verification rules
live here.
"""

from abc import abstractmethod
from pathlib import Path

from ..constants import PROVISION_SQL_FILENAME, SQL_DUMP_SUFFIX, SUPERUSERS, VERIFY_SAMPLE_SIZE
from ..core.exceptions import (
    AuthExhausted,
    CommandError,
    DumpEmpty,
    ImportPartial,
    ProvisionError,
    TargetUnreachable,
    VerificationFailed,
)
from ..core.settings import DOCKER_CLI_TIMEOUT, DUMP_TIMEOUT, IMPORT_TIMEOUT
from ..core.statements import CREATE_TABLE_PATTERN, Statement, render_script
from ..core.subprocess_manager import SubprocessResult
from ..models import ArtifactFormat, DumpArtifact, ServiceInstance, VerificationResult
from .auth import CredentialStrategy, first_successful, relational_strategies
from .base import DatastoreAdapter

ClientInvocation = tuple[list[str], dict[str, str]]


def count_table_definitions_in_file(path: Path) -> int:
    """Stream a dump file and count its ``CREATE TABLE`` statements."""
    total = 0
    with open(path, encoding="utf-8", errors="replace") as handle:
        for line in handle:
            if CREATE_TABLE_PATTERN.match(line):
                total += 1
    return total


class RelationalAdapter(DatastoreAdapter):
    """Base adapter for SQL engines reached through their command line clients."""

    provisioning_script_name = PROVISION_SQL_FILENAME

    @property
    def superuser(self) -> str:
        return SUPERUSERS[self.engine]

    @property
    def target_user(self) -> str:
        return self.target.user or self.superuser

    # -- client invocations -------------------------------------------------

    @abstractmethod
    def dump_command(self, service: ServiceInstance, strategy: CredentialStrategy) -> ClientInvocation:
        """Dump tool argv plus the env carrying the password."""

    @abstractmethod
    def client_command(
        self,
        user: str,
        password: str | None,
        database: str | None = None,
        query: str | None = None,
        port: int | None = None,
    ) -> ClientInvocation:
        """Interactive client argv; reads a script from stdin when ``query`` is None."""

    @abstractmethod
    def import_command(self, service: ServiceInstance) -> ClientInvocation:
        """Client argv used to replay a dump into the provisioned database."""

    @abstractmethod
    def provisioning_statements(self, service: ServiceInstance) -> list[Statement]:
        """Ordered DDL/DCL creating the service's account and database."""

    @abstractmethod
    def table_count_query(self, service: ServiceInstance) -> tuple[str, str | None]:
        """Query counting base tables plus the database to run it in."""

    @abstractmethod
    def table_sample_query(self, service: ServiceInstance, limit: int) -> tuple[str, str | None]:
        """Query listing up to ``limit`` base table names plus the database to run it in."""

    def import_errors(self, result: SubprocessResult) -> list[str]:
        """Error lines reported by an import, even when the client exited zero."""
        if result.success:
            return []
        return [result.error_message]

    # -- pipeline -----------------------------------------------------------

    async def _query(
        self,
        user: str,
        password: str | None,
        query: str,
        database: str | None = None,
    ) -> SubprocessResult:
        cmd, env = self.client_command(
            user, password, database=database, query=query, port=self.target.port
        )
        return await self._exec(self.target.container, cmd, env=env, timeout=DOCKER_CLI_TIMEOUT)

    async def ping_target(self) -> None:
        try:
            result = await self._query(self.target_user, self.target.password, "SELECT 1")
        except CommandError as e:
            raise TargetUnreachable(f"Target {self.target.container}: {e}") from e
        if not result.success:
            raise TargetUnreachable(
                f"Target {self.target.container} refused superuser query: {result.error_message}"
            )

    async def dump(self, service: ServiceInstance) -> DumpArtifact:
        self.dump_dir.mkdir(parents=True, exist_ok=True)
        path = self.dump_dir / f"{service.name}{SQL_DUMP_SUFFIX}"
        empty_tiers: list[str] = []

        async def attempt(strategy: CredentialStrategy) -> Path | None:
            cmd, env = self.dump_command(service, strategy)
            result = await self._exec(
                service.container, cmd, env=env, stdout_path=path, timeout=DUMP_TIMEOUT
            )
            if not result.success:
                raise CommandError(result.error_message, result.returncode, result.error_message)
            if path.stat().st_size == 0:
                empty_tiers.append(strategy.label)
                return None
            return path

        try:
            strategy, _ = await first_successful(
                relational_strategies(service.credentials, self.superuser),
                attempt,
                service=service.name,
            )
        except AuthExhausted:
            path.unlink(missing_ok=True)
            if empty_tiers:
                raise DumpEmpty(
                    f"dump produced no output (accepted by: {', '.join(empty_tiers)})"
                ) from None
            raise

        artifact = DumpArtifact.from_file(
            service.name,
            ArtifactFormat.SQL_SCRIPT,
            path,
            expected_count=count_table_definitions_in_file(path),
            auth_label=strategy.label,
        )
        self.logger.info(
            "Dump complete",
            service=service.name,
            path=str(path),
            size_bytes=artifact.size_bytes,
            tables=artifact.expected_count,
            auth=strategy.label,
        )
        return artifact

    def provisioning_script(self, service: ServiceInstance) -> str:
        return render_script(
            self.provisioning_statements(service),
            header=f"{service.name} ({self.engine.value})",
        )

    async def provision(self, service: ServiceInstance) -> None:
        cmd, env = self.client_command(self.target_user, self.target.password, port=self.target.port)
        script = self.provisioning_script(service)
        result = await self._exec(
            self.target.container, cmd, env=env, stdin=script, timeout=DOCKER_CLI_TIMEOUT
        )
        self._raise_if_target_gone(result)
        if not result.success:
            raise ProvisionError(f"provisioning failed: {result.error_message}")
        self.logger.info(
            "Provisioned database",
            service=service.name,
            database=service.credentials.database,
            user=service.credentials.user,
        )

    async def import_artifact(self, service: ServiceInstance, artifact: DumpArtifact) -> None:
        cmd, env = self.import_command(service)
        result = await self._exec(
            self.target.container, cmd, env=env, stdin_path=artifact.path, timeout=IMPORT_TIMEOUT
        )
        self._raise_if_target_gone(result)
        errors = self.import_errors(result)
        if errors:
            self.logger.warning(
                "Import reported errors", service=service.name, errors=len(errors)
            )
            raise ImportPartial("; ".join(errors[:5]))
        self.logger.info("Import complete", service=service.name)

    async def verify(self, service: ServiceInstance, artifact: DumpArtifact) -> VerificationResult:
        query, database = self.table_count_query(service)
        result = await self._query(self.target_user, self.target.password, query, database=database)
        self._raise_if_target_gone(result)
        if not result.success:
            raise VerificationFailed(f"table count query failed: {result.error_message}")
        try:
            observed = int(str(result.stdout).strip().splitlines()[-1])
        except (IndexError, ValueError) as e:
            raise VerificationFailed(f"unexpected table count output: {result.stdout!r}") from e

        sample_query, sample_db = self.table_sample_query(service, VERIFY_SAMPLE_SIZE)
        listing = await self._query(
            self.target_user, self.target.password, sample_query, database=sample_db
        )
        self._raise_if_target_gone(listing)
        if listing.success:
            sample = [line.strip() for line in str(listing.stdout).splitlines() if line.strip()]
        else:
            sample = []
            self.logger.warning(
                "Could not list migrated tables", service=service.name, error=listing.error_message
            )

        access = await self._query(
            service.credentials.user or self.superuser,
            service.credentials.password,
            "SELECT 1",
            database=service.credentials.database,
        )

        expected = artifact.expected_count
        details: list[str] = []
        if observed != expected:
            details.append(f"expected {expected} tables, found {observed}")
        if not access.success:
            details.append(f"service user cannot connect: {access.error_message}")
        return VerificationResult(
            passed=not details,
            observed_count=observed,
            expected_count=expected,
            access_ok=access.success,
            detail="; ".join(details),
            sample=sample,
        )
