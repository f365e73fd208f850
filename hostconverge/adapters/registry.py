"""
Collaborator registry — the one place the engine gets collaborators from.

The registry holds one collaborator per role, plus package managers by
name and database admins by engine. ``local()`` wires the real host
implementations; ``mock()`` wires in-memory ones backed by a MockHost.
The engine never constructs a collaborator itself.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from hostconverge.adapters.accounts.local import LocalAccountManager
from hostconverge.adapters.base import (
    AccountManager,
    Collaborator,
    CommandRunner,
    DatabaseAdmin,
    Filesystem,
    KeyGenerator,
    PackageManager,
    ServiceManager,
    TemplateRenderer,
    VersionControl,
)
from hostconverge.adapters.crypto.keygen import CryptographyKeyGenerator
from hostconverge.adapters.databases.mysql import MySQLAdmin
from hostconverge.adapters.databases.postgresql import PostgreSQLAdmin
from hostconverge.adapters.mock import (
    MockAccountManager,
    MockCommandRunner,
    MockDatabaseAdmin,
    MockFilesystem,
    MockHost,
    MockKeyGenerator,
    MockPackageManager,
    MockServiceManager,
    MockTemplateRenderer,
    MockVersionControl,
)
from hostconverge.adapters.packages.pip import PipPackageManager
from hostconverge.adapters.packages.system import SUPPORTED_MANAGERS, SystemPackageManager
from hostconverge.adapters.services.init import InitServiceManager
from hostconverge.adapters.shell.command import SubprocessCommandRunner
from hostconverge.adapters.shell.filesystem import LocalFilesystem
from hostconverge.adapters.templates.jinja import JinjaTemplateRenderer
from hostconverge.adapters.vcs.git import GitVersionControl
from hostconverge.core.errors import ExecutionError

logger = logging.getLogger(__name__)

_DB_ADMINS: dict[str, type] = {"mysql": MySQLAdmin, "postgresql": PostgreSQLAdmin}


class CollaboratorRegistry:
    """Lookup table for every collaborator a run may call."""

    def __init__(
        self,
        *,
        runner: CommandRunner,
        filesystem: Filesystem,
        templates: TemplateRenderer,
        services: ServiceManager,
        accounts: AccountManager,
        keygen: KeyGenerator,
        vcs: VersionControl,
        package_managers: Mapping[str, PackageManager] | None = None,
        databases: Mapping[str, DatabaseAdmin] | None = None,
        mock_host: MockHost | None = None,
    ):
        self.runner = runner
        self.filesystem = filesystem
        self.templates = templates
        self.services = services
        self.accounts = accounts
        self.keygen = keygen
        self.vcs = vcs
        self._package_managers: dict[str, PackageManager] = dict(package_managers or {})
        self._databases: dict[str, DatabaseAdmin] = dict(databases or {})
        self.mock_host = mock_host

    @property
    def mock_mode(self) -> bool:
        return self.mock_host is not None

    # ── Construction ─────────────────────────────────────────────

    @classmethod
    def local(
        cls,
        templates_dir: str,
        databases: Mapping[str, Any] | None = None,
        resolve_password: Callable[[Any], str | None] | None = None,
    ) -> CollaboratorRegistry:
        """Real collaborators for this host.

        Args:
            templates_dir: Directory templates are loaded from.
            databases: engine → DatabaseConnection admin settings.
            resolve_password: Turns a connection password (string or
                secret reference) into plain text, called lazily on the
                first SQL statement.
        """
        runner = SubprocessCommandRunner()
        managers: dict[str, PackageManager] = {
            m: SystemPackageManager(m, runner) for m in SUPPORTED_MANAGERS
        }
        managers["pip"] = PipPackageManager(runner)

        admins: dict[str, DatabaseAdmin] = {}
        for engine, admin_cls in _DB_ADMINS.items():
            conn = (databases or {}).get(engine)
            if conn is None:
                admins[engine] = admin_cls(runner)
                continue
            password: Any = conn.password
            if password is not None and resolve_password is not None:
                raw = password
                password = lambda raw=raw: resolve_password(raw)  # noqa: E731
            admins[engine] = admin_cls(
                runner, host=conn.host, port=conn.port, username=conn.username, password=password,
            )

        return cls(
            runner=runner,
            filesystem=LocalFilesystem(),
            templates=JinjaTemplateRenderer(templates_dir),
            services=InitServiceManager(runner),
            accounts=LocalAccountManager(runner),
            keygen=CryptographyKeyGenerator(),
            vcs=GitVersionControl(runner),
            package_managers=managers,
            databases=admins,
        )

    @classmethod
    def mock(cls, host: MockHost | None = None, templates_dir: str | None = None) -> CollaboratorRegistry:
        """In-memory collaborators sharing one MockHost."""
        host = host or MockHost()
        managers: dict[str, PackageManager] = {
            m: MockPackageManager(host, m) for m in (*SUPPORTED_MANAGERS, "pip")
        }
        return cls(
            runner=MockCommandRunner(host),
            filesystem=MockFilesystem(host),
            templates=MockTemplateRenderer(host, templates_dir),
            services=MockServiceManager(host),
            accounts=MockAccountManager(host),
            keygen=MockKeyGenerator(host),
            vcs=MockVersionControl(host),
            package_managers=managers,
            databases={e: MockDatabaseAdmin(host, e) for e in _DB_ADMINS},
            mock_host=host,
        )

    # ── Lookup ───────────────────────────────────────────────────

    def register_package_manager(self, manager: PackageManager) -> None:
        if manager.name in self._package_managers:
            logger.warning("Overwriting existing package manager: %s", manager.name)
        self._package_managers[manager.name] = manager

    def register_database(self, admin: DatabaseAdmin) -> None:
        self._databases[admin.engine] = admin

    def package_manager(self, name: str) -> PackageManager:
        try:
            return self._package_managers[name]
        except KeyError:
            raise ExecutionError("registry", name, f"No package manager registered for '{name}'") from None

    def database(self, engine: str) -> DatabaseAdmin:
        try:
            return self._databases[engine]
        except KeyError:
            raise ExecutionError("registry", engine, f"No database admin registered for '{engine}'") from None

    def all(self) -> list[Collaborator]:
        return [
            self.runner, self.filesystem, self.templates, self.services,
            self.accounts, self.keygen, self.vcs,
            *self._package_managers.values(), *self._databases.values(),
        ]

    def status(self) -> dict[str, dict[str, Any]]:
        """Availability of every registered collaborator."""
        status = {}
        for collaborator in self.all():
            try:
                available = collaborator.is_available()
            except Exception as e:
                logger.debug("Availability probe for %s raised: %s", collaborator.name, e)
                available = False
            status[collaborator.name] = {
                "name": collaborator.name,
                "available": available,
                "type": collaborator.__class__.__name__,
            }
        return status
