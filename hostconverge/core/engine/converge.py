"""
Converge loop — the run.

    order (sequencer) → for each action: guard → skip | apply → record

Ordering happens before anything touches the host: a cycle or a bad
reference raises ValidationError with zero collaborator calls. After
that the loop is strictly sequential and halts on the first failure.
Nothing is rolled back; re-running is safe because of the guards.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from hostconverge.adapters.registry import CollaboratorRegistry
from hostconverge.core.engine.executor import ActionExecutor
from hostconverge.core.engine.guard import GuardVerdict, IdempotencyGuard
from hostconverge.core.engine.sequencer import order
from hostconverge.core.errors import ActionTimeoutError, ExecutionError, HostConvergeError
from hostconverge.core.models.action import ActionSpec
from hostconverge.core.models.run import Outcome, RunEntry, RunRecord
from hostconverge.core.observability.logging_config import bind_run
from hostconverge.core.secrets import SecretStore

logger = logging.getLogger(__name__)

_MARKERS = {Outcome.APPLIED: "✓", Outcome.SKIPPED: "⊘", Outcome.FAILED: "✗"}


@dataclass
class PlannedAction:
    """One action in execution order, with what the guard currently says."""

    position: int
    spec: ActionSpec
    verdict: GuardVerdict | None = None

    @property
    def would_apply(self) -> bool | None:
        return None if self.verdict is None else not self.verdict.satisfied

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "position": self.position,
            "key": self.spec.key,
            "depends_on": list(self.spec.depends_on),
        }
        if self.verdict is not None:
            data["would_apply"] = not self.verdict.satisfied
            data["reason"] = self.verdict.reason
            data["warnings"] = list(self.verdict.warnings)
        return data


@dataclass
class ConvergePlan:
    actions: list[PlannedAction] = field(default_factory=list)

    @property
    def pending(self) -> int:
        return sum(1 for a in self.actions if a.would_apply)

    def to_dict(self) -> dict[str, Any]:
        return {"total": len(self.actions), "pending": self.pending,
                "actions": [a.to_dict() for a in self.actions]}


class ConvergeEngine:
    """Runs a spec list against the host, one action at a time."""

    def __init__(
        self,
        registry: CollaboratorRegistry,
        secrets: SecretStore,
        template_context: Mapping[str, Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._registry = registry
        self._secrets = secrets
        self._guard = IdempotencyGuard(registry)
        self._executor = ActionExecutor(registry, secrets, template_context)
        self._clock = clock

    def plan(self, specs: Sequence[ActionSpec], evaluate_guards: bool = True) -> ConvergePlan:
        """Order ``specs`` and, optionally, ask the guard about each. Read-only."""
        result = ConvergePlan()
        for i, spec in enumerate(order(specs), start=1):
            verdict = self._guard.is_satisfied(spec) if evaluate_guards else None
            result.actions.append(PlannedAction(i, spec, verdict))
        return result

    def run(
        self,
        specs: Sequence[ActionSpec],
        *,
        manifest_name: str = "",
        timeout: float | None = None,
        on_entry: Callable[[RunEntry], None] | None = None,
    ) -> RunRecord:
        """Converge the host to ``specs``.

        Args:
            specs: Desired state, in declaration order.
            manifest_name: Recorded on the run record.
            timeout: Run deadline in seconds from now. None means no limit.
            on_entry: Called with every entry as it is recorded.

        Returns:
            The finalized RunRecord.

        Raises:
            ValidationError: the dependency graph is invalid. Raised
                before any collaborator is called.
        """
        ordered = order(specs)
        record = RunRecord(manifest=manifest_name, planned=len(ordered))
        if timeout is not None:
            record.metadata["timeout"] = timeout
        if self._registry.mock_mode:
            record.metadata["mock"] = True
        deadline = None if timeout is None else self._clock() + timeout

        bind_run(record.run_id)
        logger.info("Run %s: %d action(s) for %s", record.run_id, len(ordered), manifest_name or "<unnamed>")
        try:
            for spec in ordered:
                entry = self._converge_one(spec, deadline)
                record.append(entry)
                if on_entry is not None:
                    on_entry(entry)
                if entry.failed:
                    skipped = len(ordered) - len(record.entries)
                    if skipped:
                        logger.warning("Run halted at %s; %d action(s) not reached", spec.key, skipped)
                    break
        finally:
            record.finalize()
            self._secrets.clear()
            summary = record.summary()
            logger.info(
                "Run %s %s: %d applied, %d skipped, %d failed",
                record.run_id, record.status, summary.applied, summary.skipped, summary.failed,
            )
            bind_run(None)
        return record

    # ── Internals ────────────────────────────────────────────────

    def _remaining(self, deadline: float | None) -> float | None:
        return None if deadline is None else deadline - self._clock()

    def _converge_one(self, spec: ActionSpec, deadline: float | None) -> RunEntry:
        start = self._clock()
        base = {"action_key": spec.key, "kind": spec.kind.value, "identity": spec.identity}

        remaining = self._remaining(deadline)
        if remaining is not None and remaining <= 0:
            entry = RunEntry(
                **base, outcome=Outcome.FAILED, collaborator="engine",
                error_type=ActionTimeoutError.__name__,
                detail="run deadline passed before the action started",
            )
            self._log(entry)
            return entry

        verdict = self._guard.is_satisfied(spec, timeout=remaining)
        if verdict.satisfied:
            entry = RunEntry(
                **base, outcome=Outcome.SKIPPED, detail=verdict.reason,
                warnings=verdict.warnings, duration_ms=self._elapsed_ms(start),
            )
            self._log(entry)
            return entry

        try:
            remaining = self._remaining(deadline)
            if remaining is not None and remaining <= 0:
                raise ActionTimeoutError("engine", spec.identity, "run deadline passed during the guard check")
            detail = self._executor.apply(spec, timeout=remaining)
            entry = RunEntry(
                **base, outcome=Outcome.APPLIED, detail=detail,
                warnings=verdict.warnings, duration_ms=self._elapsed_ms(start),
            )
        except ExecutionError as e:
            entry = RunEntry(
                **base, outcome=Outcome.FAILED, detail=e.message,
                collaborator=e.collaborator, error_type=type(e).__name__,
                warnings=verdict.warnings, duration_ms=self._elapsed_ms(start),
            )
        except HostConvergeError as e:
            entry = RunEntry(
                **base, outcome=Outcome.FAILED, detail=str(e),
                error_type=type(e).__name__, warnings=verdict.warnings,
                duration_ms=self._elapsed_ms(start),
            )
        except Exception as e:
            logger.exception("Unexpected error while applying %s", spec.key)
            entry = RunEntry(
                **base, outcome=Outcome.FAILED, detail=f"unexpected error: {e}",
                error_type=type(e).__name__, warnings=verdict.warnings,
                duration_ms=self._elapsed_ms(start),
            )
        self._log(entry)
        return entry

    def _elapsed_ms(self, start: float) -> int:
        return max(0, int((self._clock() - start) * 1000))

    @staticmethod
    def _log(entry: RunEntry) -> None:
        marker = _MARKERS[entry.outcome]
        if entry.failed:
            logger.error("%s %s → failed [%s] %s", marker, entry.action_key,
                         entry.collaborator or entry.error_type, entry.detail)
        else:
            logger.info("%s %s → %s (%s)", marker, entry.action_key, entry.outcome.value, entry.detail)
