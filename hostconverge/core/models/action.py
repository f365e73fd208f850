"""
ActionSpec — the desired-state contract.

An ActionSpec says "this thing should be true on the host": a package is
installed, a file exists with some owner and mode, a command has run. It
carries no behavior. The guard decides whether it is already true, the
executor makes it true, the sequencer decides when.

Construction validates everything it can locally (kind, identity,
per-kind attributes, guard shape, self-dependency). Graph-level checks
(unknown references, cycles) belong to the sequencer.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from hostconverge.core.errors import ValidationError
from hostconverge.core.models.attributes import (
    CommandAttributes,
    DatabaseAttributes,
    DatabaseUserAttributes,
    DirectoryAttributes,
    FileAttributes,
    GitCheckoutAttributes,
    GrantPrivilegeAttributes,
    GroupAttributes,
    LinkAttributes,
    PackageAttributes,
    ServiceAttributes,
    TemplateAttributes,
    UserAttributes,
)


class ActionKind(str, Enum):
    """Every kind of desired-state unit the engine knows how to converge."""

    PACKAGE = "package"
    DIRECTORY = "directory"
    FILE = "file"
    TEMPLATE = "template"
    COMMAND = "command"
    SERVICE = "service"
    USER = "user"
    GROUP = "group"
    DATABASE_USER = "database_user"
    DATABASE = "database"
    GRANT_PRIVILEGE = "grant_privilege"
    LINK = "link"
    GIT_CHECKOUT = "git_checkout"


ATTRIBUTE_MODELS: dict[ActionKind, type[BaseModel]] = {
    ActionKind.PACKAGE: PackageAttributes,
    ActionKind.DIRECTORY: DirectoryAttributes,
    ActionKind.FILE: FileAttributes,
    ActionKind.TEMPLATE: TemplateAttributes,
    ActionKind.COMMAND: CommandAttributes,
    ActionKind.SERVICE: ServiceAttributes,
    ActionKind.USER: UserAttributes,
    ActionKind.GROUP: GroupAttributes,
    ActionKind.DATABASE_USER: DatabaseUserAttributes,
    ActionKind.DATABASE: DatabaseAttributes,
    ActionKind.GRANT_PRIVILEGE: GrantPrivilegeAttributes,
    ActionKind.LINK: LinkAttributes,
    ActionKind.GIT_CHECKOUT: GitCheckoutAttributes,
}


# ── Guards ───────────────────────────────────────────────────────────


class FileContains(BaseModel):
    """Holds when ``pattern`` (a regular expression) matches inside ``path``."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    path: str
    pattern: str

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"invalid pattern {v!r}: {e}") from None
        return v


class GuardCheck(BaseModel):
    """A single read-only observation. Exactly one field must be set."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    path_exists: str | None = None
    file_contains: FileContains | None = None
    command: list[str] | None = None
    user: str | None = None
    cwd: str | None = None

    @model_validator(mode="after")
    def _exactly_one(self) -> GuardCheck:
        declared = [
            name
            for name in ("path_exists", "file_contains", "command")
            if getattr(self, name) is not None
        ]
        if len(declared) != 1:
            raise ValueError(
                "a guard check needs exactly one of path_exists, file_contains, command"
            )
        if self.command is not None and not self.command:
            raise ValueError("guard command must not be empty")
        return self

    def describe(self) -> str:
        if self.path_exists is not None:
            return f"exists({self.path_exists})"
        if self.file_contains is not None:
            return f"grep({self.file_contains.pattern!r}, {self.file_contains.path})"
        return f"command({' '.join(self.command or [])})"


class Guard(BaseModel):
    """``not_if``: skip when the check holds. ``only_if``: skip unless it holds."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    not_if: GuardCheck | None = None
    only_if: GuardCheck | None = None

    @model_validator(mode="after")
    def _one_mode(self) -> Guard:
        if (self.not_if is None) == (self.only_if is None):
            raise ValueError("a guard needs exactly one of not_if, only_if")
        return self

    @property
    def mode(self) -> str:
        return "not_if" if self.not_if is not None else "only_if"

    @property
    def check(self) -> GuardCheck:
        check = self.not_if if self.not_if is not None else self.only_if
        assert check is not None
        return check

    def describe(self) -> str:
        return f"{self.mode} {self.check.describe()}"


# ── ActionSpec ───────────────────────────────────────────────────────


class ActionSpec(BaseModel):
    """An immutable desired-state unit.

    ``key`` (``kind:identity``) is the unique handle used by the
    sequencer, the run record, and the state file.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: ActionKind
    identity: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    guard: Guard | None = None
    depends_on: tuple[str, ...] = ()
    description: str = ""

    @field_validator("identity")
    @classmethod
    def _identity(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("identity must not be empty")
        return v

    @field_validator("depends_on", mode="before")
    @classmethod
    def _depends_on(cls, v: Any) -> Any:
        if v is None:
            return ()
        if isinstance(v, str):
            v = [v]
        if isinstance(v, (set, frozenset)):
            v = sorted(v)
        seen: list[str] = []
        for ref in v:
            ref = str(ref).strip()
            if ref and ref not in seen:
                seen.append(ref)
        return tuple(seen)

    @model_validator(mode="after")
    def _consistent(self) -> ActionSpec:
        # A bare identity may name another kind; the sequencer resolves it
        if self.key in self.depends_on:
            raise ValueError(f"{self.key} depends on itself")
        schema = ATTRIBUTE_MODELS[self.kind]
        try:
            schema.model_validate(self.attributes)
        except PydanticValidationError as e:
            raise ValueError(f"invalid {self.kind.value} attributes: {e}") from None
        return self

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.identity}"

    def params(self) -> Any:
        """The attributes, validated into this kind's typed schema."""
        return ATTRIBUTE_MODELS[self.kind].model_validate(self.attributes)

    def __str__(self) -> str:
        return self.key


def parse_action(data: Mapping[str, Any]) -> ActionSpec:
    """Build an ActionSpec, turning schema failures into ``ValidationError``.

    Raises:
        ValidationError: unknown kind, empty identity, bad attributes,
            malformed guard, or a self-referential ``depends_on``.
    """
    try:
        return ActionSpec.model_validate(dict(data))
    except PydanticValidationError as e:
        label = f"{data.get('kind', '?')}:{data.get('identity', '?')}"
        raise ValidationError(f"Invalid action {label}: {e}") from None
