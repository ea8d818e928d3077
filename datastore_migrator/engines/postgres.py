"""PostgreSQL adapter: pg_dump out, psql in."""

from ..core.statements import PostgresStatements, Statement
from ..core.subprocess_manager import SubprocessResult
from ..models import EngineKind, ServiceInstance
from .auth import CredentialStrategy
from .relational import ClientInvocation, RelationalAdapter

MAINTENANCE_DB = "postgres"


def _password_env(password: str | None) -> dict[str, str]:
    return {"PGPASSWORD": password} if password else {}


class PostgresAdapter(RelationalAdapter):
    engine = EngineKind.POSTGRES

    def dump_command(self, service: ServiceInstance, strategy: CredentialStrategy) -> ClientInvocation:
        creds = service.credentials
        cmd = ["pg_dump", "-U", strategy.user or self.superuser, "--no-password"]
        if creds.port:
            cmd.extend(["-p", str(creds.port)])
        cmd.append(creds.database or "")
        return cmd, _password_env(strategy.password)

    def client_command(
        self,
        user: str,
        password: str | None,
        database: str | None = None,
        query: str | None = None,
        port: int | None = None,
    ) -> ClientInvocation:
        cmd = [
            "psql",
            "-U",
            user,
            "-d",
            database or MAINTENANCE_DB,
            "-X",
            "-w",
            "-q",
            "-t",
            "-A",
            "-v",
            "ON_ERROR_STOP=1",
        ]
        if port:
            cmd.extend(["-p", str(port)])
        if query is not None:
            cmd.extend(["-c", query])
        return cmd, _password_env(password)

    def import_command(self, service: ServiceInstance) -> ClientInvocation:
        # No ON_ERROR_STOP: a dump from a newer server may carry statements the
        # target rejects while the remaining objects still load.
        database = service.credentials.database or ""
        cmd = ["psql", "-U", self.target_user, "-d", database, "-X", "-w", "-q"]
        if self.target.port:
            cmd.extend(["-p", str(self.target.port)])
        return cmd, _password_env(self.target.password)

    def import_errors(self, result: SubprocessResult) -> list[str]:
        stderr = str(result.stderr or "")
        errors = [line.strip() for line in stderr.splitlines() if "ERROR:" in line or "FATAL:" in line]
        if not result.success and not errors:
            errors.append(result.error_message)
        return errors

    def provisioning_statements(self, service: ServiceInstance) -> list[Statement]:
        creds = service.credentials
        return PostgresStatements.provision(creds.database or "", creds.user or "", creds.password or "")

    def table_count_query(self, service: ServiceInstance) -> tuple[str, str | None]:
        return PostgresStatements.count_tables(), service.credentials.database

    def table_sample_query(self, service: ServiceInstance, limit: int) -> tuple[str, str | None]:
        return PostgresStatements.list_tables(limit), service.credentials.database

    def connect_hint(self, service: ServiceInstance) -> str:
        creds = service.credentials
        hint = f"docker exec -it {self.target.container} psql -U {creds.user} -d {creds.database}"
        if self.target.port:
            hint += f" -p {self.target.port}"
        return hint
