"""
Validate use case — check a manifest without touching the host.
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from hostconverge.core.config.loader import load_manifest, manifest_root
from hostconverge.core.engine.sequencer import order
from hostconverge.core.errors import ConfigError, ValidationError
from hostconverge.core.models.action import ActionKind
from hostconverge.core.models.manifest import Manifest
from hostconverge.core.secrets import find_secret_refs
from hostconverge.core.use_cases.apply import locate_manifest


@dataclass
class ValidateResult:
    """Result of manifest validation."""

    valid: bool = False
    manifest: Manifest | None = None
    manifest_path: Path | None = None
    order: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "manifest_path": str(self.manifest_path) if self.manifest_path else None,
            "manifest": self.manifest.name if self.manifest else None,
            "action_count": len(self.manifest.actions) if self.manifest else 0,
            "order": self.order,
            "errors": self.errors,
            "warnings": self.warnings,
        }


def validate_manifest(manifest_path: Path | None = None, overrides: Iterable[str] = ()) -> ValidateResult:
    """Load the manifest, order its actions, and report likely mistakes."""
    result = ValidateResult()

    try:
        manifest_path = locate_manifest(manifest_path)
        result.manifest_path = manifest_path
        manifest = load_manifest(manifest_path, overrides)
        result.manifest = manifest
        result.order = [spec.key for spec in order(manifest.actions)]
    except (ConfigError, ValidationError) as e:
        result.errors.append(str(e))
        return result

    result.warnings.extend(_lint(manifest, manifest_root(manifest_path)))
    result.valid = True
    return result


def _lint(manifest: Manifest, root: Path) -> list[str]:
    warnings: list[str] = []

    if not manifest.actions:
        warnings.append("No actions defined. The manifest has nothing to converge.")

    templates_dir = root / manifest.templates_dir
    used = set()
    for spec in manifest.actions:
        used.update(ref.secret for ref in find_secret_refs(spec.attributes))

        if spec.kind == ActionKind.COMMAND and spec.guard is None:
            warnings.append(f"{spec.key}: no guard, runs on every apply")
        if spec.kind == ActionKind.TEMPLATE:
            params = spec.params()
            source = params.source_for(params.path or spec.identity)
            if not os.path.isfile(templates_dir / source):
                warnings.append(f"{spec.key}: template '{source}' not found in {templates_dir}")

    used.update(ref.secret for c in manifest.databases.values() for ref in find_secret_refs(c.password))
    for name in sorted(set(manifest.secrets) - used):
        warnings.append(f"Secret '{name}' is declared but never referenced")

    return warnings
