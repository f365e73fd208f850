"""
Per-kind attribute schemas — what each action kind accepts.

The ActionSpec keeps its attributes as a plain mapping (passed verbatim to
collaborators); these models validate that mapping when the ActionSpec is built
and give the guard and executor typed access to it.

Fields that name the target (``path``, ``package``, ``service``, ``name``,
``destination``) default to the action's identity when omitted.
"""

from __future__ import annotations

import re
import shlex
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

DatabaseEngine = Literal["mysql", "postgresql"]
ServiceState = Literal["started", "stopped"]


def parse_mode(value: Any) -> int | None:
    """Normalize a permission mode.

    Ints are taken as-is (YAML ``0755`` already loads as octal); strings
    are parsed as octal (``"0755"``, ``"755"``).
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("mode must be an octal string or an integer")
    if isinstance(value, int):
        mode = value
    elif isinstance(value, str):
        try:
            mode = int(value.strip(), 8)
        except ValueError:
            raise ValueError(f"mode {value!r} is not an octal number") from None
    else:
        raise ValueError(f"mode must be an octal string or an integer, got {type(value).__name__}")
    if not 0 <= mode <= 0o7777:
        raise ValueError(f"mode {oct(mode)} out of range")
    return mode


class SecretRef(BaseModel):
    """Reference to a run-scoped secret, resolved only when the action runs."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    secret: str
    field: str = "value"


class _Attributes(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class _OwnedAttributes(_Attributes):
    owner: str | int | None = None
    group: str | int | None = None
    mode: int | None = None

    @field_validator("mode", mode="before")
    @classmethod
    def _mode(cls, v: Any) -> int | None:
        return parse_mode(v)


class PackageAttributes(_Attributes):
    package: str | None = None
    version: str | None = None
    manager: str = "apt"


class DirectoryAttributes(_OwnedAttributes):
    path: str | None = None
    recursive: bool = False


class FileAttributes(_OwnedAttributes):
    path: str | None = None
    content: str | SecretRef = ""


class TemplateAttributes(_OwnedAttributes):
    path: str | None = None
    source: str | None = None
    variables: dict[str, Any] = Field(default_factory=dict)

    def source_for(self, target: str) -> str:
        """Template id; defaults to the target's basename plus ``.j2``."""
        if self.source:
            return self.source
        return target.rstrip("/").rsplit("/", 1)[-1] + ".j2"


class CommandAttributes(_Attributes):
    """A typed command: argv, user, working directory. Never a shell string.

    A string ``command`` is split with shlex rules; it is still executed
    without a shell.
    """

    command: list[str]
    user: str | None = None
    cwd: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    timeout: float | None = Field(default=None, gt=0)

    @field_validator("command", mode="before")
    @classmethod
    def _split(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = shlex.split(v)
        if isinstance(v, (list, tuple)) and not v:
            raise ValueError("command must not be empty")
        return v


class ServiceAttributes(_Attributes):
    service: str | None = None
    state: ServiceState = "started"


class UserAttributes(_Attributes):
    name: str | None = None
    home: str | None = None
    shell: str | None = None
    system: bool = False
    groups: list[str] = Field(default_factory=list)


class GroupAttributes(_Attributes):
    name: str | None = None
    members: list[str] = Field(default_factory=list)
    system: bool = False


class DatabaseUserAttributes(_Attributes):
    engine: DatabaseEngine
    name: str | None = None
    password: str | SecretRef | None = None
    host: str = "localhost"


class DatabaseAttributes(_Attributes):
    engine: DatabaseEngine
    name: str | None = None


class GrantPrivilegeAttributes(_Attributes):
    """Grant ``privileges`` on ``database`` (all databases when None) to ``user``."""

    engine: DatabaseEngine
    user: str
    database: str | None = None
    privileges: list[str] = Field(default_factory=lambda: ["ALL"])
    host: str = "localhost"

    @field_validator("privileges")
    @classmethod
    def _privileges(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("privileges must not be empty")
        for p in v:
            if not re.fullmatch(r"[A-Za-z ]+", p):
                raise ValueError(f"invalid privilege {p!r}")
        return [p.upper() for p in v]


class LinkAttributes(_Attributes):
    path: str | None = None
    to: str


class GitCheckoutAttributes(_Attributes):
    destination: str | None = None
    repository: str
    reference: str = "master"
    user: str | None = None
    timeout: float | None = Field(default=None, gt=0)
