"""
RunEntry and RunRecord — what happened during one run.

A RunRecord is created empty when a run starts, appended to in sequence
order, and finalized (read-only) when the run ends or halts on the first
failure. Entries are the engine's receipts: one per action that was
reached, never more.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, PrivateAttr


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


def generate_run_id() -> str:
    """Generate a unique, sortable run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"


class Outcome(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


class RunEntry(BaseModel):
    """Outcome of one action.

    ``detail`` is the human-readable explanation (guard that matched,
    collaborator output, or the raw error). ``collaborator`` and
    ``error_type`` are set for failures so the trace is diagnosable
    without re-running.
    """

    action_key: str
    kind: str
    identity: str
    outcome: Outcome
    timestamp: str = Field(default_factory=_now_iso)
    detail: str = ""
    collaborator: str | None = None
    error_type: str | None = None
    duration_ms: int = 0
    warnings: list[str] = Field(default_factory=list)

    @property
    def applied(self) -> bool:
        return self.outcome == Outcome.APPLIED

    @property
    def skipped(self) -> bool:
        return self.outcome == Outcome.SKIPPED

    @property
    def failed(self) -> bool:
        return self.outcome == Outcome.FAILED


class RunSummary(BaseModel):
    applied: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.applied + self.skipped + self.failed


class RunRecord(BaseModel):
    """Ordered outcomes of a single run over the full spec list."""

    run_id: str = Field(default_factory=generate_run_id)
    manifest: str = ""
    started_at: str = Field(default_factory=_now_iso)
    ended_at: str | None = None
    planned: int = 0
    entries: list[RunEntry] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    _finalized: bool = PrivateAttr(default=False)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def append(self, entry: RunEntry) -> None:
        """Record the next outcome. Refused once the record is finalized."""
        if self._finalized:
            raise RuntimeError(f"Run {self.run_id} is finalized; cannot append {entry.action_key}")
        self.entries.append(entry)

    def finalize(self) -> None:
        """Close the record. Idempotent."""
        if not self._finalized:
            self.ended_at = _now_iso()
            self._finalized = True

    def summary(self) -> RunSummary:
        return RunSummary(
            applied=sum(1 for e in self.entries if e.applied),
            skipped=sum(1 for e in self.entries if e.skipped),
            failed=sum(1 for e in self.entries if e.failed),
        )

    @property
    def outcomes(self) -> list[Outcome]:
        return [e.outcome for e in self.entries]

    @property
    def failure(self) -> RunEntry | None:
        """The terminal failed entry, if the run halted."""
        for entry in reversed(self.entries):
            if entry.failed:
                return entry
        return None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def halted(self) -> bool:
        """True when the run stopped before reaching every planned action."""
        return len(self.entries) < self.planned

    @property
    def status(self) -> str:
        if self.failure is not None:
            return "failed"
        return "ok"

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        data["status"] = self.status
        data["summary"] = self.summary().model_dump()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunRecord:
        """Load a persisted record; loaded records are always finalized."""
        payload = {k: v for k, v in data.items() if k not in ("status", "summary")}
        record = cls.model_validate(payload)
        record._finalized = True
        return record
