"""
Shared plumbing for the CLI-driven database admins.

SQL is sent on stdin, never argv, so created passwords do not show up
in the process table. The admin's own password goes through the
client's environment variable (MYSQL_PWD, PGPASSWORD).
"""

from __future__ import annotations

import logging
import re
import shutil
from abc import abstractmethod
from collections.abc import Callable, Sequence

from hostconverge.adapters.base import CLIENT_TIMEOUT, CommandRunner, DatabaseAdmin, effective_timeout
from hostconverge.core.errors import ExecutionError

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$-]{0,62}$")
_HOST_RE = re.compile(r"^[A-Za-z0-9_.%:-]{1,255}$")

PasswordSource = str | Callable[[], str | None] | None


def check_identifier(value: str, what: str = "identifier") -> str:
    if not _IDENTIFIER_RE.match(value):
        raise ValueError(f"invalid {what}: {value!r}")
    return value


def check_host(value: str) -> str:
    if not _HOST_RE.match(value):
        raise ValueError(f"invalid host: {value!r}")
    return value


def normalize_privileges(privileges: Sequence[str]) -> str:
    return ", ".join("ALL PRIVILEGES" if p.upper() == "ALL" else p.upper() for p in privileges)


class CliDatabaseAdmin(DatabaseAdmin):
    """Runs SQL through an interactive client binary (mysql, psql)."""

    client: str = ""
    password_env: str = ""

    def __init__(
        self,
        runner: CommandRunner,
        host: str = "localhost",
        port: int | None = None,
        username: str | None = None,
        password: PasswordSource = None,
        os_user: str | None = None,
    ):
        self._runner = runner
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._os_user = os_user

    @property
    def name(self) -> str:
        return self.engine

    def is_available(self) -> bool:
        return shutil.which(self.client) is not None

    @abstractmethod
    def _client_argv(self) -> list[str]:
        """Client invocation, without the SQL."""

    def _env(self) -> dict[str, str] | None:
        password = self._password() if callable(self._password) else self._password
        if password is None:
            return None
        return {self.password_env: password}

    def _run(self, sql: str, identity: str, timeout: float | None = None) -> list[str]:
        # Log the statement shape only; it can carry a password literal.
        logger.debug("%s: running SQL for %s", self.engine, identity)
        result = self._runner.run(
            self._client_argv(),
            user=self._os_user,
            env=self._env(),
            stdin=sql,
            timeout=effective_timeout(CLIENT_TIMEOUT, timeout),
        )
        result.check(self.name, identity)
        return [line for line in result.stdout.splitlines() if line.strip()]

    def _guarded(self, identity: str, fn: Callable[[], str]) -> str:
        """Build SQL, turning bad names into ExecutionError."""
        try:
            return fn()
        except ValueError as e:
            raise ExecutionError(self.name, identity, str(e)) from None
