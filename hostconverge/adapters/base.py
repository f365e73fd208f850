"""
Collaborator base — the contracts between the engine and the host.

The engine only talks to the outside world through these interfaces,
never directly to package managers, init systems, or database clients.
Observation methods (``exists``, ``is_installed``, ``user_exists``...)
are side-effect free; mutation methods raise ``ExecutionError`` on
failure.

To add a collaborator:
    1. Subclass the matching interface
    2. Implement name, is_available, and the abstract methods
    3. Register it in the CollaboratorRegistry
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from hostconverge.core.errors import ExecutionError


class Collaborator(ABC):
    """Common surface for every external collaborator."""

    @property
    @abstractmethod
    def name(self) -> str:
        """The collaborator identifier (e.g. 'apt', 'filesystem', 'mysql')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the underlying tool is present. Fast, never raises."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


# Ceiling for one admin-client call (SQL statement, useradd, ...)
CLIENT_TIMEOUT = 60.0


def effective_timeout(*limits: float | None) -> float | None:
    """The tightest of the given limits, None when there are none."""
    present = [t for t in limits if t is not None]
    return min(present) if present else None


# ── Commands ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command execution."""

    argv: tuple[str, ...]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def check(self, collaborator: str, identity: str) -> CommandResult:
        """Raise ExecutionError unless the command exited 0."""
        if not self.ok:
            message = self.stderr.strip() or self.stdout.strip()
            raise ExecutionError(
                collaborator,
                identity,
                f"exit {self.exit_code}: {message}" if message else f"exit {self.exit_code}",
            )
        return self


class CommandRunner(Collaborator):
    """Runs typed commands: argv, user, working directory. Never a shell string."""

    @abstractmethod
    def run(
        self,
        argv: Sequence[str],
        *,
        user: str | None = None,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        stdin: str | None = None,
    ) -> CommandResult:
        """Run ``argv`` to completion.

        A non-zero exit is returned, not raised. Failing to start the
        process raises ExecutionError; exceeding ``timeout`` kills the
        process and raises ActionTimeoutError.
        """


# ── Filesystem ───────────────────────────────────────────────────────


class Filesystem(Collaborator):
    @abstractmethod
    def exists(self, path: str) -> bool:
        """True if ``path`` exists (a dangling symlink counts)."""

    @abstractmethod
    def read_text(self, path: str) -> str:
        """Read a file. Raises OSError on failure."""

    @abstractmethod
    def write_file(
        self,
        path: str,
        data: bytes,
        owner: str | int | None = None,
        group: str | int | None = None,
        mode: int | None = None,
    ) -> None:
        """Atomically replace ``path`` with ``data``."""

    @abstractmethod
    def make_directory(
        self,
        path: str,
        owner: str | int | None = None,
        group: str | int | None = None,
        mode: int | None = None,
        recursive: bool = False,
    ) -> None:
        """Create a directory (and parents when ``recursive``)."""

    @abstractmethod
    def symlink(self, path: str, target: str) -> None:
        """Point ``path`` at ``target``, replacing an existing link."""

    @abstractmethod
    def link_target(self, path: str) -> str | None:
        """Where the symlink at ``path`` points, or None if not a symlink."""


# ── Packages ─────────────────────────────────────────────────────────


class PackageManager(Collaborator):
    @abstractmethod
    def is_installed(self, package: str, version: str | None = None) -> bool:
        """True if installed (at ``version`` when given)."""

    @abstractmethod
    def install(
        self, package: str, version: str | None = None, timeout: float | None = None,
    ) -> str:
        """Install a package; return a short description of what was done."""


# ── Templates ────────────────────────────────────────────────────────


class TemplateRenderer(Collaborator):
    @abstractmethod
    def render(self, source: str, variables: Mapping[str, Any]) -> bytes:
        """Render template ``source``. Raises TemplateError."""


# ── Services ─────────────────────────────────────────────────────────


class ServiceManager(Collaborator):
    @abstractmethod
    def is_in_state(self, service: str, state: str) -> bool:
        """True if ``service`` is already 'started' or 'stopped' as asked."""

    @abstractmethod
    def set_state(self, service: str, state: str, timeout: float | None = None) -> None:
        """Start or stop ``service``."""


# ── Accounts ─────────────────────────────────────────────────────────


class AccountManager(Collaborator):
    @abstractmethod
    def user_exists(self, name: str) -> bool: ...

    @abstractmethod
    def create_user(
        self,
        name: str,
        home: str | None = None,
        shell: str | None = None,
        system: bool = False,
        groups: Sequence[str] = (),
        timeout: float | None = None,
    ) -> None: ...

    @abstractmethod
    def group_exists(self, name: str) -> bool: ...

    @abstractmethod
    def group_members(self, name: str) -> set[str]: ...

    @abstractmethod
    def create_group(self, name: str, system: bool = False, timeout: float | None = None) -> None: ...

    @abstractmethod
    def add_group_member(self, group: str, user: str, timeout: float | None = None) -> None: ...


# ── Databases ────────────────────────────────────────────────────────


class DatabaseAdmin(Collaborator):
    """Administrative client for one database engine."""

    @property
    @abstractmethod
    def engine(self) -> str:
        """'mysql' or 'postgresql'."""

    @abstractmethod
    def user_exists(self, name: str, host: str = "localhost", timeout: float | None = None) -> bool: ...

    @abstractmethod
    def create_user(
        self, name: str, password: str | None, host: str = "localhost", timeout: float | None = None,
    ) -> None: ...

    @abstractmethod
    def database_exists(self, name: str, timeout: float | None = None) -> bool: ...

    @abstractmethod
    def create_database(self, name: str, timeout: float | None = None) -> None: ...

    @abstractmethod
    def grant_privilege(
        self,
        user: str,
        database: str | None,
        privileges: Sequence[str],
        host: str = "localhost",
        timeout: float | None = None,
    ) -> None: ...


# ── Key generation ───────────────────────────────────────────────────


@dataclass(frozen=True)
class KeyPair:
    """An SSH keypair. ``repr`` never shows the private half."""

    private_key: str
    public_key: str

    def __repr__(self) -> str:
        return f"KeyPair(public_key={self.public_key[:24]!r}..., private_key='**********')"


class KeyGenerator(Collaborator):
    @abstractmethod
    def generate_keypair(self, algorithm: str = "rsa", comment: str = "", bits: int = 4096) -> KeyPair:
        """Generate a fresh keypair in OpenSSH format."""


# ── Version control ──────────────────────────────────────────────────


class VersionControl(Collaborator):
    @abstractmethod
    def is_checked_out(self, destination: str) -> bool: ...

    @abstractmethod
    def checkout(
        self,
        repository: str,
        reference: str,
        destination: str,
        user: str | None = None,
        timeout: float | None = None,
    ) -> None: ...
