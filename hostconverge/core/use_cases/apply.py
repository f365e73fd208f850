"""
Apply use case — converge this host to a manifest.

The full vertical slice: load the manifest, wire collaborators, run the
converge loop, persist the state file and the audit ledger.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from hostconverge.adapters.mock import MockHost
from hostconverge.adapters.registry import CollaboratorRegistry
from hostconverge.core.config.loader import find_manifest_file, load_manifest, manifest_root
from hostconverge.core.engine.converge import ConvergeEngine
from hostconverge.core.errors import ConfigError, ValidationError
from hostconverge.core.models.manifest import Manifest
from hostconverge.core.models.run import RunEntry, RunRecord
from hostconverge.core.persistence.audit import DEFAULT_AUDIT_FILE, AuditEntry, AuditWriter
from hostconverge.core.persistence.state_file import (
    default_state_path,
    load_state,
    record_run,
    save_state,
    state_dir,
)
from hostconverge.core.secrets import SecretStore

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Result of one apply."""

    record: RunRecord | None = None
    manifest: Manifest | None = None
    manifest_path: Path | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.record is not None and self.record.ok

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "manifest": self.manifest.name if self.manifest else "",
            "manifest_path": str(self.manifest_path),
            "run": self.record.to_dict() if self.record else None,
        }


def locate_manifest(manifest_path: Path | None) -> Path:
    """Explicit path, else search upward from cwd. Raises ConfigError."""
    if manifest_path is None:
        manifest_path = find_manifest_file()
    if manifest_path is None:
        raise ConfigError("No provision.yml found.")
    return manifest_path


def build_engine(
    manifest: Manifest,
    root: Path,
    mock_mode: bool = False,
    registry: CollaboratorRegistry | None = None,
) -> tuple[ConvergeEngine, CollaboratorRegistry]:
    """Wire the registry, secret store and engine for a manifest."""
    templates_dir = str((root / manifest.templates_dir).resolve())
    store: SecretStore | None = None

    def resolve_password(raw):
        assert store is not None
        return store.reveal(raw)

    if registry is None:
        if mock_mode:
            registry = CollaboratorRegistry.mock(MockHost(), templates_dir=templates_dir)
        else:
            registry = CollaboratorRegistry.local(
                templates_dir, manifest.databases, resolve_password=resolve_password,
            )

    store = SecretStore(manifest.secrets, registry.keygen, registry.filesystem)
    engine = ConvergeEngine(registry, store, template_context=manifest.attributes)
    return engine, registry


def apply_manifest(
    manifest_path: Path | None = None,
    overrides: Iterable[str] = (),
    mock_mode: bool = False,
    timeout: float | None = None,
    registry: CollaboratorRegistry | None = None,
    on_entry: Callable[[RunEntry], None] | None = None,
    persist: bool = True,
) -> ApplyResult:
    """Converge the host to the manifest at ``manifest_path``.

    Args:
        manifest_path: Path to provision.yml (searched upward if None).
        overrides: ``key.path=value`` attribute overrides.
        mock_mode: Use in-memory collaborators; nothing on the host changes.
        timeout: Run deadline in seconds.
        registry: Pre-built collaborators (tests).
        on_entry: Progress callback, called per recorded entry.
        persist: Write the state file and audit ledger. Mock runs are
            never written.

    Returns:
        ApplyResult. ``error`` is set for manifest and graph problems,
        in which case nothing ran.
    """
    result = ApplyResult()

    try:
        manifest_path = locate_manifest(manifest_path)
        result.manifest_path = manifest_path
        manifest = load_manifest(manifest_path, overrides)
        result.manifest = manifest
    except ConfigError as e:
        result.error = str(e)
        return result

    root = manifest_root(manifest_path)
    engine, registry = build_engine(manifest, root, mock_mode, registry)

    start = time.monotonic()
    try:
        record = engine.run(
            manifest.actions, manifest_name=manifest.name, timeout=timeout, on_entry=on_entry,
        )
    except ValidationError as e:
        result.error = str(e)
        return result
    result.record = record

    # Simulated runs never touched the host; keep them out of its history
    if persist and not registry.mock_mode:
        _persist(root, record, int((time.monotonic() - start) * 1000))
    return result


def _persist(root: Path, record: RunRecord, duration_ms: int) -> None:
    state_path = default_state_path(root)
    state = record_run(load_state(state_path), record)
    save_state(state, state_path)

    writer = AuditWriter(state_dir(root) / DEFAULT_AUDIT_FILE)
    writer.write(AuditEntry.from_record(record, duration_ms))
    logger.debug("Persisted run %s to %s", record.run_id, state_path.parent)
