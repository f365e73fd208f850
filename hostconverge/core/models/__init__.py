"""
Domain models — Pydantic types for the provisioning engine.

All models are re-exported here for convenient access:

    from hostconverge.core.models import ActionSpec, RunRecord, HostState
"""

from hostconverge.core.models.action import (
    ActionKind,
    ActionSpec,
    FileContains,
    Guard,
    GuardCheck,
    parse_action,
)
from hostconverge.core.models.attributes import SecretRef
from hostconverge.core.models.manifest import DatabaseConnection, Manifest, SecretSpec
from hostconverge.core.models.run import Outcome, RunEntry, RunRecord, RunSummary
from hostconverge.core.models.state import ActionState, HostState

__all__ = [
    # action.py
    "ActionKind",
    "ActionSpec",
    # state.py
    "ActionState",
    # manifest.py
    "DatabaseConnection",
    "FileContains",
    "Guard",
    "GuardCheck",
    "HostState",
    "Manifest",
    # run.py
    "Outcome",
    "RunEntry",
    "RunRecord",
    "RunSummary",
    # attributes.py
    "SecretRef",
    "SecretSpec",
    "parse_action",
]
