"""
Idempotency guard — does this action need to run?

Read-only. Decides per kind:

    file, template           target exists AND a declared guard holds
    command, grant_privilege a declared guard holds (no guard: always run)
    everything else          a declared guard holds, OR the intrinsic
                             state check (installed, exists, in state,
                             ...) passes

``not_if`` holds when its check is true, ``only_if`` when it is false.

A failed observation (permission denied, client missing) is not fatal
here: the action is treated as not satisfied and the executor gets its
chance to produce the real error. The problem is logged and returned as
a warning on the verdict.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from hostconverge.adapters.base import effective_timeout
from hostconverge.adapters.registry import CollaboratorRegistry
from hostconverge.core.errors import GuardError, HostConvergeError
from hostconverge.core.models.action import ActionKind, ActionSpec, Guard, GuardCheck

logger = logging.getLogger(__name__)

_TARGET_FIELDS: dict[ActionKind, str] = {
    ActionKind.PACKAGE: "package",
    ActionKind.DIRECTORY: "path",
    ActionKind.FILE: "path",
    ActionKind.TEMPLATE: "path",
    ActionKind.LINK: "path",
    ActionKind.SERVICE: "service",
    ActionKind.USER: "name",
    ActionKind.GROUP: "name",
    ActionKind.DATABASE_USER: "name",
    ActionKind.DATABASE: "name",
    ActionKind.GIT_CHECKOUT: "destination",
}

# Kinds whose only notion of "done" is a declared guard
_GUARD_ONLY = {ActionKind.COMMAND, ActionKind.GRANT_PRIVILEGE}
# Kinds that always rewrite an existing target unless a guard says otherwise
_REWRITE = {ActionKind.FILE, ActionKind.TEMPLATE}

GUARD_CHECK_TIMEOUT = 60.0


def resolve_target(spec: ActionSpec, params: Any) -> str:
    """The concrete target of an action: its target attribute, else its identity."""
    name = _TARGET_FIELDS.get(spec.kind)
    if name is None:
        return spec.identity
    return getattr(params, name, None) or spec.identity


@dataclass
class GuardVerdict:
    """Whether an action is already satisfied, and why."""

    satisfied: bool
    reason: str = ""
    warnings: list[str] = field(default_factory=list)


class IdempotencyGuard:
    """Observes the host through the registry's collaborators. Never mutates."""

    def __init__(self, registry: CollaboratorRegistry):
        self._registry = registry

    # ── Public API ───────────────────────────────────────────────

    def is_satisfied(self, spec: ActionSpec, timeout: float | None = None) -> GuardVerdict:
        try:
            return self._evaluate(spec, timeout)
        except GuardError as e:
            logger.warning("Guard for %s could not observe state: %s", spec.key, e.message)
            return GuardVerdict(False, "observation failed", [f"guard: {e.message}"])

    def check_holds(self, guard: Guard, identity: str, timeout: float | None = None) -> bool:
        """Evaluate a declared guard. Raises GuardError if the check cannot run."""
        observed = self._observe_check(guard.check, identity, timeout)
        return observed if guard.mode == "not_if" else not observed

    # ── Evaluation ───────────────────────────────────────────────

    def _evaluate(self, spec: ActionSpec, timeout: float | None) -> GuardVerdict:
        params = spec.params()
        target = resolve_target(spec, params)

        if spec.kind in _GUARD_ONLY:
            if spec.guard is None:
                return GuardVerdict(False, "no guard declared")
            if self.check_holds(spec.guard, spec.identity, timeout):
                return GuardVerdict(True, f"{spec.guard.describe()} holds")
            return GuardVerdict(False, f"{spec.guard.describe()} does not hold")

        if spec.kind in _REWRITE:
            if not self._call(spec.identity, lambda: self._registry.filesystem.exists(target)):
                return GuardVerdict(False, f"{target} does not exist")
            if spec.guard is None:
                return GuardVerdict(False, f"{target} exists, no guard: re-render")
            if self.check_holds(spec.guard, spec.identity, timeout):
                return GuardVerdict(True, f"{target} exists and {spec.guard.describe()} holds")
            return GuardVerdict(False, f"{spec.guard.describe()} does not hold")

        # A holding guard wins over whatever the collaborator reports
        if spec.guard is not None and self.check_holds(spec.guard, spec.identity, timeout):
            return GuardVerdict(True, f"{spec.guard.describe()} holds")
        present, reason = self._intrinsic(spec.kind, params, target, spec.identity, timeout)
        if spec.guard is not None:
            reason = f"{reason}; {spec.guard.describe()} does not hold"
        return GuardVerdict(present, reason)

    def _intrinsic(
        self, kind: ActionKind, p: Any, target: str, identity: str, timeout: float | None,
    ) -> tuple[bool, str]:
        reg = self._registry
        limit = effective_timeout(GUARD_CHECK_TIMEOUT, timeout)

        if kind == ActionKind.PACKAGE:
            ok = self._call(identity, lambda: reg.package_manager(p.manager).is_installed(target, p.version))
            label = f"{target}={p.version}" if p.version else target
            return ok, f"{label} {'installed' if ok else 'not installed'} ({p.manager})"

        if kind == ActionKind.DIRECTORY:
            ok = self._call(identity, lambda: reg.filesystem.exists(target))
            return ok, f"{target} {'exists' if ok else 'does not exist'}"

        if kind == ActionKind.LINK:
            current = self._call(identity, lambda: reg.filesystem.link_target(target))
            if current == p.to:
                return True, f"{target} -> {p.to}"
            return False, f"{target} -> {current or '(none)'}, want {p.to}"

        if kind == ActionKind.USER:
            ok = self._call(identity, lambda: reg.accounts.user_exists(target))
            return ok, f"user {target} {'exists' if ok else 'missing'}"

        if kind == ActionKind.GROUP:
            if not self._call(identity, lambda: reg.accounts.group_exists(target)):
                return False, f"group {target} missing"
            missing = sorted(set(p.members) - self._call(identity, lambda: reg.accounts.group_members(target)))
            if missing:
                return False, f"group {target} lacks {', '.join(missing)}"
            return True, f"group {target} exists with members"

        if kind == ActionKind.SERVICE:
            ok = self._call(identity, lambda: reg.services.is_in_state(target, p.state))
            return ok, f"service {target} {'already' if ok else 'not'} {p.state}"

        if kind == ActionKind.DATABASE_USER:
            ok = self._call(identity, lambda: reg.database(p.engine).user_exists(target, p.host, timeout=limit))
            return ok, f"{p.engine} user {target} {'exists' if ok else 'missing'}"

        if kind == ActionKind.DATABASE:
            ok = self._call(identity, lambda: reg.database(p.engine).database_exists(target, timeout=limit))
            return ok, f"{p.engine} database {target} {'exists' if ok else 'missing'}"

        if kind == ActionKind.GIT_CHECKOUT:
            ok = self._call(identity, lambda: reg.vcs.is_checked_out(target))
            return ok, f"{target} {'checked out' if ok else 'not checked out'}"

        raise GuardError(identity, f"no state check for kind {kind.value}")

    def _observe_check(self, check: GuardCheck, identity: str, timeout: float | None) -> bool:
        fs = self._registry.filesystem

        if check.path_exists is not None:
            return self._call(identity, lambda: fs.exists(check.path_exists))

        if check.file_contains is not None:
            fc = check.file_contains
            if not self._call(identity, lambda: fs.exists(fc.path)):
                return False
            text = self._call(identity, lambda: fs.read_text(fc.path))
            return re.search(fc.pattern, text, re.MULTILINE) is not None

        limit = effective_timeout(GUARD_CHECK_TIMEOUT, timeout)
        result = self._call(
            identity,
            lambda: self._registry.runner.run(
                check.command or [], user=check.user, cwd=check.cwd, timeout=limit,
            ),
        )
        return result.ok

    @staticmethod
    def _call(identity: str, fn: Callable[[], Any]) -> Any:
        """Run one observation, turning collaborator failures into GuardError."""
        try:
            return fn()
        except GuardError:
            raise
        except (HostConvergeError, OSError, ValueError) as e:
            raise GuardError(identity, str(e)) from e
