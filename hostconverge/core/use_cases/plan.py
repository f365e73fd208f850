"""
Plan use case — show execution order and what would change.

Read-only: the guard observes the host, nothing is applied, no secret
is materialized.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from hostconverge.adapters.registry import CollaboratorRegistry
from hostconverge.core.config.loader import load_manifest, manifest_root
from hostconverge.core.engine.converge import ConvergePlan
from hostconverge.core.errors import ConfigError, ValidationError
from hostconverge.core.models.manifest import Manifest
from hostconverge.core.use_cases.apply import build_engine, locate_manifest


@dataclass
class PlanResult:
    plan: ConvergePlan | None = None
    manifest: Manifest | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "manifest": self.manifest.name if self.manifest else "",
            **(self.plan.to_dict() if self.plan else {}),
        }


def plan_manifest(
    manifest_path: Path | None = None,
    overrides: Iterable[str] = (),
    mock_mode: bool = False,
    evaluate_guards: bool = True,
    registry: CollaboratorRegistry | None = None,
) -> PlanResult:
    """Order the manifest's actions and ask the guard about each."""
    result = PlanResult()
    try:
        manifest_path = locate_manifest(manifest_path)
        manifest = load_manifest(manifest_path, overrides)
        result.manifest = manifest
        engine, _ = build_engine(manifest, manifest_root(manifest_path), mock_mode, registry)
        result.plan = engine.plan(manifest.actions, evaluate_guards=evaluate_guards)
    except (ConfigError, ValidationError) as e:
        result.error = str(e)
    return result
