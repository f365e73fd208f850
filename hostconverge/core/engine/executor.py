"""
Action executor — make one ActionSpec true on the host.

One handler per kind, each a thin call into the matching collaborator.
Secret references are resolved here, at the last moment, and only for
the action being applied. Handlers return a short human-readable detail
string for the run record and raise ExecutionError (or a subclass) on
failure.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from hostconverge.adapters.base import CLIENT_TIMEOUT, effective_timeout
from hostconverge.adapters.registry import CollaboratorRegistry
from hostconverge.core.engine.guard import resolve_target
from hostconverge.core.models.action import ActionKind, ActionSpec
from hostconverge.core.secrets import SecretStore

logger = logging.getLogger(__name__)


def _last_line(text: str) -> str:
    lines = [line for line in text.strip().splitlines() if line.strip()]
    return lines[-1][:200] if lines else ""


class ActionExecutor:
    """Dispatches ActionSpecs to collaborators by kind."""

    def __init__(
        self,
        registry: CollaboratorRegistry,
        secrets: SecretStore,
        template_context: Mapping[str, Any] | None = None,
    ):
        self._registry = registry
        self._secrets = secrets
        self._template_context = dict(template_context or {})
        self._handlers: dict[ActionKind, Callable[[ActionSpec, Any, str, float | None], str]] = {
            ActionKind.PACKAGE: self._package,
            ActionKind.DIRECTORY: self._directory,
            ActionKind.FILE: self._file,
            ActionKind.TEMPLATE: self._template,
            ActionKind.COMMAND: self._command,
            ActionKind.SERVICE: self._service,
            ActionKind.USER: self._user,
            ActionKind.GROUP: self._group,
            ActionKind.DATABASE_USER: self._database_user,
            ActionKind.DATABASE: self._database,
            ActionKind.GRANT_PRIVILEGE: self._grant_privilege,
            ActionKind.LINK: self._link,
            ActionKind.GIT_CHECKOUT: self._git_checkout,
        }

    def apply(self, spec: ActionSpec, timeout: float | None = None) -> str:
        """Perform the side effect for ``spec``.

        Args:
            spec: The action to apply.
            timeout: Seconds left before the run deadline, if any.

        Returns:
            Short description of what was done.

        Raises:
            ExecutionError: the collaborator failed (TemplateError,
                ActionTimeoutError for the specific cases).
        """
        params = spec.params()
        target = resolve_target(spec, params)
        logger.debug("Applying %s (target=%s, timeout=%s)", spec.key, target, timeout)
        return self._handlers[spec.kind](spec, params, target, timeout)

    # ── Filesystem kinds ─────────────────────────────────────────

    def _directory(self, spec: ActionSpec, p: Any, target: str, timeout: float | None) -> str:
        self._registry.filesystem.make_directory(
            target, owner=p.owner, group=p.group, mode=p.mode, recursive=p.recursive,
        )
        return f"created directory {target}"

    def _file(self, spec: ActionSpec, p: Any, target: str, timeout: float | None) -> str:
        content = self._secrets.reveal(p.content)
        data = content.encode("utf-8")
        self._registry.filesystem.write_file(target, data, owner=p.owner, group=p.group, mode=p.mode)
        return f"wrote {target} ({len(data)} bytes)"

    def _template(self, spec: ActionSpec, p: Any, target: str, timeout: float | None) -> str:
        source = p.source_for(target)
        variables = {**self._template_context, **self._secrets.reveal(p.variables)}
        data = self._registry.templates.render(source, variables)
        self._registry.filesystem.write_file(target, data, owner=p.owner, group=p.group, mode=p.mode)
        return f"rendered {source} to {target} ({len(data)} bytes)"

    def _link(self, spec: ActionSpec, p: Any, target: str, timeout: float | None) -> str:
        self._registry.filesystem.symlink(target, p.to)
        return f"linked {target} -> {p.to}"

    # ── Process kinds ────────────────────────────────────────────

    def _package(self, spec: ActionSpec, p: Any, target: str, timeout: float | None) -> str:
        manager = self._registry.package_manager(p.manager)
        return manager.install(target, p.version, timeout=timeout)

    def _command(self, spec: ActionSpec, p: Any, target: str, timeout: float | None) -> str:
        env = self._secrets.reveal(p.env)
        result = self._registry.runner.run(
            p.command,
            user=p.user,
            cwd=p.cwd,
            env=env or None,
            timeout=effective_timeout(p.timeout, timeout),
        )
        result.check(self._registry.runner.name, spec.identity)
        tail = _last_line(result.stdout)
        return f"exit 0 in {result.elapsed_ms}ms" + (f": {tail}" if tail else "")

    def _service(self, spec: ActionSpec, p: Any, target: str, timeout: float | None) -> str:
        self._registry.services.set_state(target, p.state, timeout=timeout)
        return f"service {target} {p.state}"

    def _git_checkout(self, spec: ActionSpec, p: Any, target: str, timeout: float | None) -> str:
        self._registry.vcs.checkout(
            p.repository, p.reference, target, user=p.user,
            timeout=effective_timeout(p.timeout, timeout),
        )
        return f"checked out {p.repository}@{p.reference} into {target}"

    # ── Accounts ─────────────────────────────────────────────────

    def _user(self, spec: ActionSpec, p: Any, target: str, timeout: float | None) -> str:
        self._registry.accounts.create_user(
            target, home=p.home, shell=p.shell, system=p.system, groups=p.groups,
            timeout=effective_timeout(CLIENT_TIMEOUT, timeout),
        )
        return f"created user {target}"

    def _group(self, spec: ActionSpec, p: Any, target: str, timeout: float | None) -> str:
        accounts = self._registry.accounts
        limit = effective_timeout(CLIENT_TIMEOUT, timeout)
        done: list[str] = []
        if not accounts.group_exists(target):
            accounts.create_group(target, system=p.system, timeout=limit)
            done.append(f"created group {target}")
        current = accounts.group_members(target)
        added = [m for m in p.members if m not in current]
        for member in added:
            accounts.add_group_member(target, member, timeout=limit)
        if added:
            done.append(f"added {', '.join(added)} to {target}")
        return "; ".join(done) or f"group {target} unchanged"

    # ── Databases ────────────────────────────────────────────────

    def _database_user(self, spec: ActionSpec, p: Any, target: str, timeout: float | None) -> str:
        password = self._secrets.reveal(p.password)
        self._registry.database(p.engine).create_user(
            target, password, host=p.host, timeout=effective_timeout(CLIENT_TIMEOUT, timeout),
        )
        return f"created {p.engine} user {target}@{p.host}"

    def _database(self, spec: ActionSpec, p: Any, target: str, timeout: float | None) -> str:
        self._registry.database(p.engine).create_database(
            target, timeout=effective_timeout(CLIENT_TIMEOUT, timeout),
        )
        return f"created {p.engine} database {target}"

    def _grant_privilege(self, spec: ActionSpec, p: Any, target: str, timeout: float | None) -> str:
        self._registry.database(p.engine).grant_privilege(
            p.user, p.database, p.privileges, host=p.host,
            timeout=effective_timeout(CLIENT_TIMEOUT, timeout),
        )
        scope = p.database or "*"
        return f"granted {','.join(p.privileges)} on {scope} to {p.user}@{p.host} ({p.engine})"
