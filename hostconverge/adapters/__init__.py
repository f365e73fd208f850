"""Collaborators — the engine's only path to the host.

Public re-exports for convenient access.
"""

from hostconverge.adapters.base import (
    AccountManager,
    Collaborator,
    CommandResult,
    CommandRunner,
    DatabaseAdmin,
    Filesystem,
    KeyGenerator,
    KeyPair,
    PackageManager,
    ServiceManager,
    TemplateRenderer,
    VersionControl,
)
from hostconverge.adapters.mock import MockHost
from hostconverge.adapters.registry import CollaboratorRegistry

__all__ = [
    "AccountManager",
    "Collaborator",
    "CollaboratorRegistry",
    "CommandResult",
    "CommandRunner",
    "DatabaseAdmin",
    "Filesystem",
    "KeyGenerator",
    "KeyPair",
    "MockHost",
    "PackageManager",
    "ServiceManager",
    "TemplateRenderer",
    "VersionControl",
]
