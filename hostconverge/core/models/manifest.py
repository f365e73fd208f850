"""
Manifest model — a fully interpolated provisioning manifest.

The loader turns provision.yml into this model: attributes merged,
templated strings rendered, ``for_each`` entries expanded, actions
parsed into ActionSpecs.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from hostconverge.core.models.action import ActionSpec
from hostconverge.core.models.attributes import DatabaseEngine, SecretRef


class SecretSpec(BaseModel):
    """How to obtain a run-scoped secret.

    ssh-keypair: loaded from ``load_from`` (and ``load_from``.pub) when both
    files exist, generated otherwise. password: literal ``value``, else
    the ``env`` variable, else a random token of ``length``.
    """

    model_config = ConfigDict(extra="forbid")

    type: Literal["ssh-keypair", "password"]
    algorithm: Literal["rsa", "ed25519"] = "rsa"
    bits: int = Field(default=4096, ge=2048)
    comment: str = ""
    load_from: str | None = None
    env: str | None = None
    value: str | None = None
    length: int = Field(default=32, ge=8, le=256)

    @model_validator(mode="after")
    def _fields_match_type(self) -> SecretSpec:
        if self.type == "ssh-keypair" and (self.env or self.value):
            raise ValueError("ssh-keypair secrets take algorithm/comment/load_from, not env/value")
        return self


class DatabaseConnection(BaseModel):
    """Administrative connection for one database engine."""

    model_config = ConfigDict(extra="forbid")

    host: str = "localhost"
    port: int | None = None
    username: str
    password: str | SecretRef | None = None


class Manifest(BaseModel):
    """A loaded, validated provisioning manifest."""

    name: str
    description: str = ""
    templates_dir: str = "templates"
    attributes: dict[str, Any] = Field(default_factory=dict)
    databases: dict[DatabaseEngine, DatabaseConnection] = Field(default_factory=dict)
    secrets: dict[str, SecretSpec] = Field(default_factory=dict)
    actions: list[ActionSpec] = Field(default_factory=list)

    def get_action(self, key: str) -> ActionSpec | None:
        for spec in self.actions:
            if spec.key == key or spec.identity == key:
                return spec
        return None
