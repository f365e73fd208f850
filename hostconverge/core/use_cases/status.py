"""
Status use case — what the last runs did, from .state/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from hostconverge.adapters.registry import CollaboratorRegistry
from hostconverge.core.config.loader import manifest_root
from hostconverge.core.errors import ConfigError
from hostconverge.core.models.run import RunRecord
from hostconverge.core.models.state import HostState
from hostconverge.core.persistence.audit import DEFAULT_AUDIT_FILE, AuditEntry, AuditWriter
from hostconverge.core.persistence.state_file import default_state_path, load_state, state_dir
from hostconverge.core.use_cases.apply import locate_manifest


@dataclass
class StatusResult:
    """Last known convergence state of the host."""

    state: HostState | None = None
    state_path: Path | None = None
    last_run: RunRecord | None = None
    runs_recorded: int = 0
    error: str | None = None

    @property
    def has_state(self) -> bool:
        return self.state_path is not None and self.state_path.is_file()

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "manifest": self.state.manifest_name if self.state else "",
            "state_path": str(self.state_path),
            "has_state": self.has_state,
            "runs_recorded": self.runs_recorded,
            "last_run": self.last_run.to_dict() if self.last_run else None,
            "actions": {
                k: v.model_dump(mode="json") for k, v in (self.state.actions if self.state else {}).items()
            },
        }


@dataclass
class HistoryResult:
    entries: list[AuditEntry] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {"entries": [e.model_dump(mode="json") for e in self.entries]}


def get_status(manifest_path: Path | None = None) -> StatusResult:
    result = StatusResult()
    try:
        root = manifest_root(locate_manifest(manifest_path))
    except ConfigError as e:
        result.error = str(e)
        return result

    result.state_path = default_state_path(root)
    result.state = load_state(result.state_path)
    if result.state.last_run:
        result.last_run = RunRecord.from_dict(result.state.last_run)
    result.runs_recorded = AuditWriter(state_dir(root) / DEFAULT_AUDIT_FILE).entry_count()
    return result


def get_history(manifest_path: Path | None = None, n: int = 20) -> HistoryResult:
    result = HistoryResult()
    try:
        root = manifest_root(locate_manifest(manifest_path))
    except ConfigError as e:
        result.error = str(e)
        return result
    result.entries = AuditWriter(state_dir(root) / DEFAULT_AUDIT_FILE).read_recent(n)
    return result


def collaborator_status(mock_mode: bool = False, templates_dir: str = "templates") -> dict[str, dict]:
    """Availability of every collaborator on this host."""
    if mock_mode:
        registry = CollaboratorRegistry.mock(templates_dir=templates_dir)
    else:
        registry = CollaboratorRegistry.local(templates_dir)
    return registry.status()
