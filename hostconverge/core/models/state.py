"""
HostState — the last-known convergence state of a host.

Serialized to .state/current.json next to the manifest and loaded on
every run. It is an observation log, not a source of truth: the guards
always look at the host itself. Delete it and nothing breaks except
``status`` output.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ActionState(BaseModel):
    """Last recorded outcome of one action."""

    key: str
    last_outcome: str | None = None      # applied, skipped, failed
    last_seen_at: str | None = None
    last_applied_at: str | None = None
    run_count: int = 0


class HostState(BaseModel):
    """Root state model — serialized to .state/current.json."""

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Identity ─────────────────────────────────────────────────
    manifest_name: str = ""

    # ── Timestamps ───────────────────────────────────────────────
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    # ── Component state ──────────────────────────────────────────
    actions: dict[str, ActionState] = Field(default_factory=dict)

    # ── Last run (full ordered record, JSON form) ────────────────
    last_run: dict[str, Any] | None = None

    # ── Extensible metadata ──────────────────────────────────────
    metadata: dict[str, Any] = Field(default_factory=dict)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def set_action_state(self, key: str, **kwargs: Any) -> None:
        """Update or create an action state entry."""
        if key in self.actions:
            for name, value in kwargs.items():
                setattr(self.actions[key], name, value)
        else:
            self.actions[key] = ActionState(key=key, **kwargs)
