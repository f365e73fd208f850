"""
SecretStore — run-scoped secret material.

Secrets are declared in the manifest and obtained lazily: nothing is
generated or read until an action that references the secret actually
runs. Values are held as ``pydantic.SecretStr`` so an accidental
``repr`` or log call shows ``**********``. The store is cleared at the
end of every run.

Reference syntax inside action attributes::

    {secret: deploy_key, field: private_key}

Fields: ssh-keypair → ``private_key``, ``public_key``;
password → ``value``.
"""

from __future__ import annotations

import logging
import os
import secrets
from collections.abc import Mapping
from typing import Any

from pydantic import SecretStr

from hostconverge.adapters.base import Filesystem, KeyGenerator
from hostconverge.core.errors import ExecutionError
from hostconverge.core.models.attributes import SecretRef
from hostconverge.core.models.manifest import SecretSpec

logger = logging.getLogger(__name__)

SECRET_FIELDS = {
    "ssh-keypair": ("private_key", "public_key"),
    "password": ("value",),
}


def as_secret_ref(value: Any) -> SecretRef | None:
    """Return a SecretRef if ``value`` is one (model or ``{secret, field}`` dict)."""
    if isinstance(value, SecretRef):
        return value
    if isinstance(value, Mapping) and "secret" in value and set(value) <= {"secret", "field"}:
        return SecretRef.model_validate(dict(value))
    return None


def find_secret_refs(value: Any) -> list[SecretRef]:
    """All secret references nested anywhere inside ``value``."""
    ref = as_secret_ref(value)
    if ref is not None:
        return [ref]
    if isinstance(value, Mapping):
        return [r for v in value.values() for r in find_secret_refs(v)]
    if isinstance(value, (list, tuple)):
        return [r for v in value for r in find_secret_refs(v)]
    return []


class SecretStore:
    """Resolves secret references for one run."""

    def __init__(
        self,
        specs: Mapping[str, SecretSpec],
        keygen: KeyGenerator,
        filesystem: Filesystem,
        environ: Mapping[str, str] | None = None,
    ):
        self._specs = dict(specs)
        self._keygen = keygen
        self._filesystem = filesystem
        self._environ = environ if environ is not None else os.environ
        self._values: dict[str, dict[str, SecretStr]] = {}

    @property
    def resolved_names(self) -> list[str]:
        """Names of secrets materialized so far (never their values)."""
        return sorted(self._values)

    def get(self, name: str, field: str = "value") -> SecretStr:
        if name not in self._specs:
            raise ExecutionError("secrets", name, "unknown secret")
        spec = self._specs[name]
        if field not in SECRET_FIELDS[spec.type]:
            raise ExecutionError(
                "secrets", name,
                f"{spec.type} secrets have no field '{field}' "
                f"(valid: {', '.join(SECRET_FIELDS[spec.type])})",
            )
        if name not in self._values:
            self._values[name] = self._materialize(name, spec)
        return self._values[name][field]

    def resolve(self, value: Any) -> Any:
        """Replace every reference inside ``value`` with its SecretStr."""
        ref = as_secret_ref(value)
        if ref is not None:
            return self.get(ref.secret, ref.field)
        if isinstance(value, Mapping):
            return {k: self.resolve(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.resolve(v) for v in value]
        if isinstance(value, tuple):
            return tuple(self.resolve(v) for v in value)
        return value

    def reveal(self, value: Any) -> Any:
        """Like ``resolve`` but unwrapped to plain strings, for handing to collaborators."""
        resolved = self.resolve(value)
        return _unwrap(resolved)

    def clear(self) -> None:
        """Forget every materialized secret."""
        if self._values:
            logger.debug("Discarding %d run secret(s)", len(self._values))
        self._values.clear()

    # ── Materialization ──────────────────────────────────────────

    def _materialize(self, name: str, spec: SecretSpec) -> dict[str, SecretStr]:
        if spec.type == "ssh-keypair":
            return self._keypair(name, spec)
        return {"value": SecretStr(self._password(name, spec))}

    def _keypair(self, name: str, spec: SecretSpec) -> dict[str, SecretStr]:
        path = spec.load_from
        if path and self._filesystem.exists(path) and self._filesystem.exists(path + ".pub"):
            try:
                private = self._filesystem.read_text(path)
                public = self._filesystem.read_text(path + ".pub")
            except OSError as e:
                raise ExecutionError("secrets", name, f"cannot read key from {path}: {e}") from None
            logger.info("Secret %s: loaded existing keypair from %s", name, path)
        else:
            try:
                pair = self._keygen.generate_keypair(spec.algorithm, spec.comment, spec.bits)
            except ValueError as e:
                raise ExecutionError(self._keygen.name, name, str(e)) from None
            private, public = pair.private_key, pair.public_key
            logger.info("Secret %s: generated %s keypair", name, spec.algorithm)
        return {"private_key": SecretStr(private), "public_key": SecretStr(public)}

    def _password(self, name: str, spec: SecretSpec) -> str:
        if spec.value is not None:
            return spec.value
        if spec.env:
            if spec.env in self._environ:
                logger.info("Secret %s: taken from $%s", name, spec.env)
                return self._environ[spec.env]
            logger.debug("Secret %s: $%s not set, generating", name, spec.env)
        logger.info("Secret %s: generated random password", name)
        return secrets.token_urlsafe(spec.length)[: spec.length]


def _unwrap(value: Any) -> Any:
    if isinstance(value, SecretStr):
        return value.get_secret_value()
    if isinstance(value, dict):
        return {k: _unwrap(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_unwrap(v) for v in value]
    if isinstance(value, tuple):
        return tuple(_unwrap(v) for v in value)
    return value
