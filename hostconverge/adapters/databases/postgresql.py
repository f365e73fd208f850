"""
PostgreSQL admin through ``psql``.

With no admin username configured, psql runs as the ``postgres`` OS
user over the local socket (peer authentication), which is how a
fresh package install is reachable.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from hostconverge.adapters.base import CommandRunner
from hostconverge.adapters.databases._sql import (
    CliDatabaseAdmin,
    PasswordSource,
    check_identifier,
    normalize_privileges,
)
from hostconverge.core.errors import ExecutionError

logger = logging.getLogger(__name__)


def quote_literal(value: str) -> str:
    # standard_conforming_strings is on by default since 9.1
    return "'" + value.replace("'", "''") + "'"


def quote_identifier(value: str) -> str:
    return '"' + check_identifier(value).replace('"', '""') + '"'


class PostgreSQLAdmin(CliDatabaseAdmin):
    client = "psql"
    password_env = "PGPASSWORD"

    def __init__(
        self,
        runner: CommandRunner,
        host: str = "localhost",
        port: int | None = None,
        username: str | None = None,
        password: PasswordSource = None,
        os_user: str | None = None,
    ):
        if username is None and os_user is None:
            os_user = "postgres"
        super().__init__(runner, host, port, username, password, os_user)

    @property
    def engine(self) -> str:
        return "postgresql"

    def _client_argv(self) -> list[str]:
        argv = ["psql", "-X", "-q", "-A", "-t", "-v", "ON_ERROR_STOP=1", "-d", "postgres"]
        if self._username:
            argv += ["-h", self._host, "-U", self._username]
            if self._port:
                argv += ["-p", str(self._port)]
        return argv

    def user_exists(self, name: str, host: str = "localhost", timeout: float | None = None) -> bool:
        # Roles are not host-scoped in PostgreSQL; host is ignored.
        sql = self._guarded(name, lambda: (
            f"SELECT 1 FROM pg_roles WHERE rolname = "
            f"{quote_literal(check_identifier(name, 'role name'))};"
        ))
        return bool(self._run(sql, name, timeout))

    def create_user(
        self, name: str, password: str | None, host: str = "localhost", timeout: float | None = None,
    ) -> None:
        def build() -> str:
            stmt = f"CREATE ROLE {quote_identifier(name)} LOGIN"
            if password is not None:
                stmt += f" PASSWORD {quote_literal(password)}"
            return stmt + ";"

        self._run(self._guarded(name, build), name, timeout)
        logger.info("postgresql: created role %s", name)

    def database_exists(self, name: str, timeout: float | None = None) -> bool:
        sql = self._guarded(name, lambda: (
            f"SELECT 1 FROM pg_database WHERE datname = "
            f"{quote_literal(check_identifier(name, 'database name'))};"
        ))
        return bool(self._run(sql, name, timeout))

    def create_database(self, name: str, timeout: float | None = None) -> None:
        # CREATE DATABASE cannot run in a transaction block, so no IF NOT EXISTS dance
        self._run(self._guarded(name, lambda: f"CREATE DATABASE {quote_identifier(name)};"), name, timeout)
        logger.info("postgresql: created database %s", name)

    def grant_privilege(
        self,
        user: str,
        database: str | None,
        privileges: Sequence[str],
        host: str = "localhost",
        timeout: float | None = None,
    ) -> None:
        if not database:
            raise ExecutionError(self.name, user, "PostgreSQL grants need a database")
        sql = self._guarded(user, lambda: (
            f"GRANT {normalize_privileges(privileges)} ON DATABASE {quote_identifier(database)} "
            f"TO {quote_identifier(user)};"
        ))
        self._run(sql, user, timeout)
        logger.info("postgresql: granted %s on %s to %s", ",".join(privileges), database, user)
