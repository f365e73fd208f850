"""
MySQL / MariaDB admin through the ``mysql`` command-line client.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from hostconverge.adapters.databases._sql import (
    CliDatabaseAdmin,
    check_host,
    check_identifier,
    normalize_privileges,
)

logger = logging.getLogger(__name__)


def quote_literal(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "''") + "'"


def quote_identifier(value: str) -> str:
    return "`" + check_identifier(value).replace("`", "``") + "`"


def _account(name: str, host: str) -> str:
    return f"{quote_literal(check_identifier(name, 'user name'))}@{quote_literal(check_host(host))}"


class MySQLAdmin(CliDatabaseAdmin):
    client = "mysql"
    password_env = "MYSQL_PWD"

    @property
    def engine(self) -> str:
        return "mysql"

    def _client_argv(self) -> list[str]:
        argv = ["mysql", "--batch", "--skip-column-names"]
        if self._host:
            argv += ["--host", self._host]
        if self._port:
            argv += ["--port", str(self._port)]
        if self._username:
            argv += ["--user", self._username]
        return argv

    def user_exists(self, name: str, host: str = "localhost", timeout: float | None = None) -> bool:
        sql = self._guarded(name, lambda: (
            "SELECT COUNT(*) FROM mysql.user WHERE "
            f"User = {quote_literal(check_identifier(name, 'user name'))} "
            f"AND Host = {quote_literal(check_host(host))};"
        ))
        rows = self._run(sql, name, timeout)
        return bool(rows) and rows[0].strip() != "0"

    def create_user(
        self, name: str, password: str | None, host: str = "localhost", timeout: float | None = None,
    ) -> None:
        def build() -> str:
            stmt = f"CREATE USER IF NOT EXISTS {_account(name, host)}"
            if password is not None:
                stmt += f" IDENTIFIED BY {quote_literal(password)}"
            return stmt + ";"

        self._run(self._guarded(name, build), name, timeout)
        logger.info("mysql: created user %s@%s", name, host)

    def database_exists(self, name: str, timeout: float | None = None) -> bool:
        sql = self._guarded(name, lambda: (
            "SELECT SCHEMA_NAME FROM information_schema.SCHEMATA "
            f"WHERE SCHEMA_NAME = {quote_literal(check_identifier(name, 'database name'))};"
        ))
        return bool(self._run(sql, name, timeout))

    def create_database(self, name: str, timeout: float | None = None) -> None:
        sql = self._guarded(name, lambda: (
            f"CREATE DATABASE IF NOT EXISTS {quote_identifier(name)} "
            "DEFAULT CHARACTER SET utf8mb4 DEFAULT COLLATE utf8mb4_unicode_ci;"
        ))
        self._run(sql, name, timeout)
        logger.info("mysql: created database %s", name)

    def grant_privilege(
        self,
        user: str,
        database: str | None,
        privileges: Sequence[str],
        host: str = "localhost",
        timeout: float | None = None,
    ) -> None:
        def build() -> str:
            scope = f"{quote_identifier(database)}.*" if database else "*.*"
            return (
                f"GRANT {normalize_privileges(privileges)} ON {scope} "
                f"TO {_account(user, host)};\nFLUSH PRIVILEGES;"
            )

        self._run(self._guarded(user, build), user, timeout)
        logger.info("mysql: granted %s on %s to %s@%s",
                    ",".join(privileges), database or "*", user, host)
