"""Typed SQL statement builders with identifier and literal quoting.

Every DDL/DCL statement the provisioner emits comes from one constructor here,
so no caller ever interpolates credentials or names into SQL by hand.
"""

import re
from dataclasses import dataclass

from .exceptions import ConfigurationError

CREATE_TABLE_PATTERN = re.compile(r"^CREATE\s+(?:UNLOGGED\s+)?TABLE\b", re.IGNORECASE | re.MULTILINE)


@dataclass(frozen=True)
class Statement:
    """One SQL statement plus a short human description for the generated script."""

    sql: str
    description: str = ""

    def render(self) -> str:
        text = self.sql.rstrip().rstrip(";")
        return f"{text};"


def render_script(statements: list[Statement], header: str | None = None) -> str:
    """Render statements as a script, each preceded by its description comment."""
    lines: list[str] = []
    if header:
        lines.extend(f"-- {line}" for line in header.splitlines())
        lines.append("")
    for statement in statements:
        if statement.description:
            lines.append(f"-- {statement.description}")
        lines.append(statement.render())
    return "\n".join(lines) + "\n"


def _reject_nul(value: str) -> str:
    if "\x00" in value:
        raise ConfigurationError("NUL bytes are not allowed in identifiers or literals")
    return value


class PostgresStatements:
    """Statement constructors for PostgreSQL targets."""

    @staticmethod
    def ident(name: str) -> str:
        return '"' + _reject_nul(name).replace('"', '""') + '"'

    @staticmethod
    def literal(value: str) -> str:
        # standard_conforming_strings is on by default, so only quotes need doubling
        return "'" + _reject_nul(value).replace("'", "''") + "'"

    @classmethod
    def create_role_if_absent(cls, role: str, password: str) -> Statement:
        body = (
            f"IF NOT EXISTS (SELECT FROM pg_catalog.pg_roles WHERE rolname = {cls.literal(role)}) "
            f"THEN CREATE ROLE {cls.ident(role)} LOGIN PASSWORD {cls.literal(password)}; END IF;"
        )
        tag = "$do$"
        suffix = 0
        while tag in body:
            suffix += 1
            tag = f"$do{suffix}$"
        return Statement(
            f"DO {tag} BEGIN {body} END {tag}",
            f"role {role}: create if absent",
        )

    @classmethod
    def set_role_password(cls, role: str, password: str) -> Statement:
        return Statement(
            f"ALTER ROLE {cls.ident(role)} WITH LOGIN PASSWORD {cls.literal(password)}",
            f"role {role}: resync password",
        )

    @classmethod
    def terminate_sessions(cls, database: str) -> Statement:
        return Statement(
            "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
            f"WHERE datname = {cls.literal(database)} AND pid <> pg_backend_pid()",
            f"database {database}: disconnect sessions",
        )

    @classmethod
    def drop_database(cls, database: str) -> Statement:
        return Statement(
            f"DROP DATABASE IF EXISTS {cls.ident(database)}", f"database {database}: drop"
        )

    @classmethod
    def create_database(cls, database: str, owner: str) -> Statement:
        return Statement(
            f"CREATE DATABASE {cls.ident(database)} OWNER {cls.ident(owner)}",
            f"database {database}: create",
        )

    @classmethod
    def grant_database(cls, database: str, role: str) -> Statement:
        return Statement(
            f"GRANT ALL PRIVILEGES ON DATABASE {cls.ident(database)} TO {cls.ident(role)}",
            f"database {database}: grant to {role}",
        )

    @classmethod
    def provision(cls, database: str, role: str, password: str) -> list[Statement]:
        return [
            cls.create_role_if_absent(role, password),
            cls.set_role_password(role, password),
            cls.terminate_sessions(database),
            cls.drop_database(database),
            cls.create_database(database, role),
            cls.grant_database(database, role),
        ]

    @classmethod
    def count_tables(cls) -> str:
        return (
            "SELECT COUNT(*) FROM information_schema.tables "
            "WHERE table_type = 'BASE TABLE' "
            "AND table_schema NOT IN ('pg_catalog', 'information_schema')"
        )

    @classmethod
    def list_tables(cls, limit: int) -> str:
        return (
            "SELECT table_schema || '.' || table_name FROM information_schema.tables "
            "WHERE table_type = 'BASE TABLE' "
            "AND table_schema NOT IN ('pg_catalog', 'information_schema') "
            f"ORDER BY 1 LIMIT {int(limit)}"
        )


class MySQLStatements:
    """Statement constructors for MySQL / MariaDB targets."""

    # Both networked and socket logins must be able to reach the schema
    USER_HOSTS = ("%", "localhost")

    @staticmethod
    def ident(name: str) -> str:
        return "`" + _reject_nul(name).replace("`", "``") + "`"

    @staticmethod
    def literal(value: str) -> str:
        escaped = _reject_nul(value).replace("\\", "\\\\").replace("'", "\\'")
        return f"'{escaped}'"

    @classmethod
    def account(cls, user: str, host: str) -> str:
        return f"{cls.literal(user)}@{cls.literal(host)}"

    @classmethod
    def drop_database(cls, database: str) -> Statement:
        return Statement(
            f"DROP DATABASE IF EXISTS {cls.ident(database)}", f"database {database}: drop"
        )

    @classmethod
    def create_database(cls, database: str) -> Statement:
        return Statement(
            f"CREATE DATABASE {cls.ident(database)} "
            "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci",
            f"database {database}: create",
        )

    @classmethod
    def create_user_if_absent(cls, user: str, host: str, password: str) -> Statement:
        return Statement(
            f"CREATE USER IF NOT EXISTS {cls.account(user, host)} "
            f"IDENTIFIED BY {cls.literal(password)}",
            f"user {user}@{host}: create if absent",
        )

    @classmethod
    def set_user_password(cls, user: str, host: str, password: str) -> Statement:
        return Statement(
            f"ALTER USER {cls.account(user, host)} IDENTIFIED BY {cls.literal(password)}",
            f"user {user}@{host}: resync password",
        )

    @classmethod
    def grant_schema(cls, database: str, user: str, host: str) -> Statement:
        return Statement(
            f"GRANT ALL PRIVILEGES ON {cls.ident(database)}.* TO {cls.account(user, host)}",
            f"user {user}@{host}: grant on {database}",
        )

    @classmethod
    def flush_privileges(cls) -> Statement:
        return Statement("FLUSH PRIVILEGES", "reload grant tables")

    @classmethod
    def provision(cls, database: str, user: str, password: str) -> list[Statement]:
        statements = [cls.drop_database(database), cls.create_database(database)]
        for host in cls.USER_HOSTS:
            statements.append(cls.create_user_if_absent(user, host, password))
            statements.append(cls.set_user_password(user, host, password))
            statements.append(cls.grant_schema(database, user, host))
        statements.append(cls.flush_privileges())
        return statements

    @classmethod
    def count_tables(cls, database: str) -> str:
        return (
            "SELECT COUNT(*) FROM information_schema.tables "
            f"WHERE table_schema = {cls.literal(database)} AND table_type = 'BASE TABLE'"
        )

    @classmethod
    def list_tables(cls, database: str, limit: int) -> str:
        return (
            "SELECT table_name FROM information_schema.tables "
            f"WHERE table_schema = {cls.literal(database)} AND table_type = 'BASE TABLE' "
            f"ORDER BY table_name LIMIT {int(limit)}"
        )
