"""
Error taxonomy — every failure the engine can report.

    HostConvergeError
    ├── ValidationError       malformed spec or dependency graph (before any side effect)
    │   └── ConfigError       manifest file missing, unreadable, or invalid
    ├── GuardError            a guard observation failed (treated as "not satisfied")
    └── ExecutionError        a collaborator call failed (halts the run)
        ├── TemplateError     missing variable / malformed template
        └── ActionTimeoutError  caller-imposed deadline elapsed

ValidationError surfaces as an exception before the run starts. Everything
else surfaces through the terminal entry of the RunRecord.
"""

from __future__ import annotations


class HostConvergeError(Exception):
    """Base class for all hostconverge errors."""


class ValidationError(HostConvergeError):
    """An ActionSpec or the dependency graph is malformed.

    Always fatal to the run, and always raised before any action executes.
    """


class ConfigError(ValidationError):
    """Raised when the provisioning manifest is missing or invalid."""


class GuardError(HostConvergeError):
    """The idempotency guard could not observe the current state."""

    def __init__(self, identity: str, message: str):
        self.identity = identity
        self.message = message
        super().__init__(f"{identity}: {message}")


class ExecutionError(HostConvergeError):
    """A collaborator call failed while applying an action.

    Carries enough context to diagnose without re-running: which
    collaborator, which target, and the raw error text.
    """

    def __init__(self, collaborator: str, identity: str, message: str):
        self.collaborator = collaborator
        self.identity = identity
        self.message = message
        super().__init__(f"[{collaborator}] {identity}: {message}")


class TemplateError(ExecutionError):
    """Template rendering failed (missing variable, syntax error, not found)."""


class ActionTimeoutError(ExecutionError):
    """A caller-imposed deadline elapsed while an action was running."""
