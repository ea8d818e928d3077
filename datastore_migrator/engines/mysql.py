"""MySQL / MariaDB adapter: mysqldump out, mysql in."""

from ..core.statements import MySQLStatements, Statement
from ..models import EngineKind, ServiceInstance
from .auth import CredentialStrategy
from .relational import ClientInvocation, RelationalAdapter

DUMP_FLAGS = ("--databases", "--routines", "--triggers", "--single-transaction")


def _password_env(password: str | None) -> dict[str, str]:
    return {"MYSQL_PWD": password} if password else {}


class MySQLAdapter(RelationalAdapter):
    engine = EngineKind.MYSQL

    def dump_command(self, service: ServiceInstance, strategy: CredentialStrategy) -> ClientInvocation:
        creds = service.credentials
        cmd = ["mysqldump", "-u", strategy.user or self.superuser]
        if creds.port:
            cmd.extend(["-P", str(creds.port)])
        cmd.extend(DUMP_FLAGS)
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
        cmd = ["mysql", "-u", user, "-N", "-B"]
        if port:
            cmd.extend(["-P", str(port)])
        if query is not None:
            cmd.extend(["-e", query])
        if database:
            cmd.append(database)
        return cmd, _password_env(password)

    def import_command(self, service: ServiceInstance) -> ClientInvocation:
        # --force keeps going past rejected statements; the exit code still reports them
        cmd = ["mysql", "-u", self.target_user, "--force"]
        if self.target.port:
            cmd.extend(["-P", str(self.target.port)])
        cmd.append(service.credentials.database or "")
        return cmd, _password_env(self.target.password)

    def provisioning_statements(self, service: ServiceInstance) -> list[Statement]:
        creds = service.credentials
        return MySQLStatements.provision(creds.database or "", creds.user or "", creds.password or "")

    def table_count_query(self, service: ServiceInstance) -> tuple[str, str | None]:
        return MySQLStatements.count_tables(service.credentials.database or ""), None

    def table_sample_query(self, service: ServiceInstance, limit: int) -> tuple[str, str | None]:
        return MySQLStatements.list_tables(service.credentials.database or "", limit), None

    def connect_hint(self, service: ServiceInstance) -> str:
        creds = service.credentials
        hint = f"docker exec -it {self.target.container} mysql -u {creds.user} -p"
        if self.target.port:
            hint += f" -P {self.target.port}"
        return f"{hint} {creds.database}"
