"""
Manifest loader — reads provision.yml into a validated Manifest.

Pipeline:
    YAML → attribute overrides (--set) → attribute interpolation
         → interpolate actions/secrets/databases → expand for_each
         → parse ActionSpecs → check secret references → Manifest

Interpolation is Jinja2 with StrictUndefined: ``{{ gitlab.home }}/.ssh``.
A string that is a single ``{{ expression }}`` keeps the expression's
native type, so ``members: "{{ gitlab.groups }}"`` yields a list.
Every failure is raised as ConfigError naming the file and location.
"""

from __future__ import annotations

import logging
import os
import platform
import re
import socket
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import jinja2
import yaml
from pydantic import ValidationError as PydanticValidationError

from hostconverge.core.errors import ConfigError, ValidationError
from hostconverge.core.models.action import parse_action
from hostconverge.core.models.manifest import Manifest
from hostconverge.core.secrets import find_secret_refs

logger = logging.getLogger(__name__)

MANIFEST_FILE = "provision.yml"

_SINGLE_EXPR_RE = re.compile(r"^\{\{\s*(.+?)\s*\}\}$", re.DOTALL)
_ARCH_MAP = {"x86_64": "amd64", "aarch64": "arm64", "armv7l": "armhf"}
_MAX_ATTRIBUTE_PASSES = 10

_env = jinja2.Environment(undefined=jinja2.StrictUndefined, keep_trailing_newline=True)


def find_manifest_file(start_dir: Path | None = None) -> Path | None:
    """Search for provision.yml starting from ``start_dir`` (default: cwd), walking up."""
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / MANIFEST_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def manifest_root(manifest_path: Path) -> Path:
    """The directory a manifest lives in; relative paths resolve from here."""
    return manifest_path.parent.resolve()


def builtin_attributes() -> dict[str, Any]:
    """Facts about this host, available to every manifest."""
    machine = platform.machine().lower()
    return {
        "fqdn": socket.getfqdn(),
        "hostname": socket.gethostname(),
        "user": os.getenv("USER", os.getenv("LOGNAME", "unknown")),
        "home": str(Path.home()),
        "arch": _ARCH_MAP.get(machine, machine),
    }


# ── Overrides ────────────────────────────────────────────────────────


def parse_override(text: str) -> tuple[list[str], Any]:
    """Parse ``a.b.c=value``; the value is YAML-typed (``true``, ``3``, ``[x, y]``)."""
    key, sep, raw = text.partition("=")
    path = [p for p in key.strip().split(".") if p]
    if not sep or not path:
        raise ConfigError(f"Invalid override {text!r}: expected key.path=value")
    try:
        value = yaml.safe_load(raw) if raw.strip() else ""
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid override value in {text!r}: {e}") from e
    return path, value


def apply_overrides(attributes: dict[str, Any], overrides: Iterable[str]) -> dict[str, Any]:
    """Set each ``key.path=value`` into ``attributes`` (in place), creating maps as needed."""
    for text in overrides:
        path, value = parse_override(text)
        node = attributes
        for part in path[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[path[-1]] = value
        logger.debug("Override %s", ".".join(path))
    return attributes


# ── Interpolation ────────────────────────────────────────────────────


def evaluate(expression: str, context: Mapping[str, Any]) -> Any:
    """Evaluate one Jinja expression to a native value. Undefined is an error."""
    result = _env.compile_expression(expression, undefined_to_none=False)(**context)
    if isinstance(result, jinja2.Undefined):
        raise jinja2.UndefinedError(f"'{expression}' is undefined")
    return result


def interpolate(value: Any, context: Mapping[str, Any], where: str = "") -> Any:
    """Render every string inside ``value`` against ``context``."""
    if isinstance(value, str):
        if "{{" not in value and "{%" not in value:
            return value
        try:
            match = _SINGLE_EXPR_RE.match(value)
            if match and "}}" not in match.group(1):
                return evaluate(match.group(1), context)
            return _env.from_string(value).render(**context)
        except jinja2.UndefinedError as e:
            raise ConfigError(f"{where}: undefined variable in {value!r}: {e.message}") from None
        except jinja2.TemplateSyntaxError as e:
            raise ConfigError(f"{where}: template syntax error in {value!r}: {e.message}") from None
    if isinstance(value, dict):
        return {k: interpolate(v, context, f"{where}.{k}" if where else str(k)) for k, v in value.items()}
    if isinstance(value, list):
        return [interpolate(v, context, f"{where}[{i}]") for i, v in enumerate(value)]
    return value


def resolve_attributes(attributes: dict[str, Any], builtins: Mapping[str, Any]) -> dict[str, Any]:
    """Interpolate attributes against themselves until nothing changes."""
    current = {**builtins, **attributes}
    for _ in range(_MAX_ATTRIBUTE_PASSES):
        rendered = interpolate(current, current, "attributes")
        if rendered == current:
            return rendered
        current = rendered
    raise ConfigError("attributes: interpolation does not settle (self-referencing attribute?)")


def expand_actions(raw_actions: list[Any], context: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Interpolate action entries, expanding ``for_each`` into one entry per item."""
    expanded: list[dict[str, Any]] = []
    for i, raw in enumerate(raw_actions):
        where = f"actions[{i}]"
        if not isinstance(raw, dict):
            raise ConfigError(f"{where}: expected a mapping, got {type(raw).__name__}")
        entry = dict(raw)
        loop = entry.pop("for_each", None)
        if loop is None:
            expanded.append(interpolate(entry, context, where))
            continue

        items = _loop_items(loop, context, where)
        for n, item in enumerate(items):
            expanded.append(interpolate(entry, {**context, "item": item}, f"{where}[item {n}]"))
    return expanded


def _loop_items(loop: Any, context: Mapping[str, Any], where: str) -> list[Any]:
    if isinstance(loop, str):
        expr = loop
        match = _SINGLE_EXPR_RE.match(loop)
        if match:
            expr = match.group(1)
        try:
            loop = evaluate(expr, context)
        except jinja2.UndefinedError as e:
            raise ConfigError(f"{where}.for_each: undefined variable: {e.message}") from None
        except jinja2.TemplateSyntaxError as e:
            raise ConfigError(f"{where}.for_each: syntax error: {e.message}") from None
    if isinstance(loop, Mapping):
        return [{"key": k, "value": v} for k, v in loop.items()]
    if not isinstance(loop, (list, tuple)):
        raise ConfigError(f"{where}.for_each: expected a list, got {type(loop).__name__}")
    return list(loop)


# ── Loading ──────────────────────────────────────────────────────────


def load_manifest(path: Path | None = None, overrides: Iterable[str] = ()) -> Manifest:
    """Load and validate a provisioning manifest.

    Args:
        path: Explicit path to provision.yml. If None, searches upward.
        overrides: ``key.path=value`` attribute overrides.

    Returns:
        The validated Manifest with interpolated, parsed actions.

    Raises:
        ConfigError: the file is missing, unreadable, or invalid.
    """
    if path is None:
        path = find_manifest_file()

    if path is None:
        raise ConfigError(f"No {MANIFEST_FILE} found. Create one, or pass --manifest.")

    if not path.is_file():
        raise ConfigError(f"Manifest not found: {path}")

    logger.debug("Loading manifest from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        return _build_manifest(data, overrides)
    except ConfigError as e:
        raise ConfigError(f"{path}: {e}") from None


def _build_manifest(data: dict[str, Any], overrides: Iterable[str]) -> Manifest:
    attributes = data.get("attributes") or {}
    if not isinstance(attributes, dict):
        raise ConfigError("attributes: expected a mapping")
    attributes = apply_overrides(dict(attributes), overrides)
    context = resolve_attributes(attributes, builtin_attributes())

    raw_actions = data.get("actions") or []
    if not isinstance(raw_actions, list):
        raise ConfigError("actions: expected a list")

    actions = []
    for i, entry in enumerate(expand_actions(raw_actions, context)):
        try:
            actions.append(parse_action(entry))
        except ValidationError as e:
            raise ConfigError(f"actions[{i}]: {e}") from None

    payload = {
        "name": interpolate(data.get("name", ""), context, "name"),
        "description": interpolate(data.get("description", ""), context, "description"),
        "templates_dir": interpolate(data.get("templates_dir", "templates"), context, "templates_dir"),
        "attributes": context,
        "databases": interpolate(data.get("databases") or {}, context, "databases"),
        "secrets": interpolate(data.get("secrets") or {}, context, "secrets"),
        "actions": actions,
    }
    try:
        manifest = Manifest.model_validate(payload)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid manifest: {e}") from None

    _check_secret_refs(manifest)
    logger.info("Loaded manifest '%s' with %d action(s)", manifest.name, len(manifest.actions))
    return manifest


def _check_secret_refs(manifest: Manifest) -> None:
    """Every ``{secret: name}`` must name a declared secret."""
    known = set(manifest.secrets)
    sources: list[tuple[str, Any]] = [(spec.key, spec.attributes) for spec in manifest.actions]
    sources += [(f"databases.{e}", c.password) for e, c in manifest.databases.items()]
    for where, value in sources:
        for ref in find_secret_refs(value):
            if ref.secret not in known:
                raise ConfigError(f"{where}: unknown secret '{ref.secret}'")
