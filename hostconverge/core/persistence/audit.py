"""
Audit ledger — append-only run history.

Every run writes one entry to an NDJSON file (.state/audit.ndjson):
when it ran, against which manifest, and how it ended. Entries are
never modified or deleted. Details of each action live in the state
file's last run; the ledger keeps the long history compact.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from hostconverge.core.models.run import RunRecord

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """A single ledger line."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    manifest: str = ""
    operation: str = "apply"

    # Results
    status: str = ""               # ok, failed
    actions_planned: int = 0
    actions_applied: int = 0
    actions_skipped: int = 0
    actions_failed: int = 0
    duration_ms: int = 0

    # Errors (if any)
    errors: list[str] = Field(default_factory=list)

    context: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: RunRecord, duration_ms: int = 0) -> AuditEntry:
        summary = record.summary()
        failure = record.failure
        errors = []
        if failure is not None:
            errors.append(f"{failure.action_key}: [{failure.collaborator or 'engine'}] {failure.detail}")
        return cls(
            run_id=record.run_id,
            manifest=record.manifest,
            status=record.status,
            actions_planned=record.planned,
            actions_applied=summary.applied,
            actions_skipped=summary.skipped,
            actions_failed=summary.failed,
            duration_ms=duration_ms,
            errors=errors,
            context=dict(record.metadata),
        )


class AuditWriter:
    """Append-only ledger writer. Each ``write()`` appends one JSON line."""

    def __init__(self, path: Path):
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"
        with self._path.open("a", encoding="utf-8") as f:
            f.write(line)
        logger.debug("Audit entry written: %s (%s)", entry.run_id, entry.status)

    def read_all(self) -> list[AuditEntry]:
        """All entries, oldest first. Corrupt lines are skipped with a warning."""
        if not self._path.is_file():
            return []

        entries = []
        with self._path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(AuditEntry.model_validate(json.loads(line)))
                except (json.JSONDecodeError, PydanticValidationError) as e:
                    logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
        return entries

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        return self.read_all()[-n:]

    def entry_count(self) -> int:
        if not self._path.is_file():
            return 0
        with self._path.open("r", encoding="utf-8") as f:
            return sum(1 for line in f if line.strip())
