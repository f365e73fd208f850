"""
State file persistence — atomic read/write for HostState.

State is stored as JSON in .state/current.json next to the manifest.
Writes are atomic (write to temp file, then rename) so a crash mid-write
never leaves a truncated file.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from hostconverge.core.models.run import RunRecord
from hostconverge.core.models.state import HostState

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".state"
DEFAULT_STATE_FILE = "current.json"


def state_dir(project_root: Path) -> Path:
    """The state directory: ``$HC_STATE_DIR`` if set, else ``<root>/.state``."""
    override = os.environ.get("HC_STATE_DIR")
    if override:
        return Path(override)
    return project_root / DEFAULT_STATE_DIR


def default_state_path(project_root: Path) -> Path:
    return state_dir(project_root) / DEFAULT_STATE_FILE


def load_state(path: Path) -> HostState:
    """Load host state. A missing or corrupt file yields a fresh state."""
    if not path.is_file():
        logger.info("No state file at %s — starting fresh", path)
        return HostState()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        state = HostState.model_validate(data)
        logger.debug("Loaded state from %s (updated_at=%s)", path, state.updated_at)
        return state
    except json.JSONDecodeError as e:
        logger.warning("Corrupt state file %s: %s — starting fresh", path, e)
    except (OSError, PydanticValidationError) as e:
        logger.warning("Cannot load state from %s: %s — starting fresh", path, e)
    return HostState()


def save_state(state: HostState, path: Path) -> None:
    """Save host state (atomic write)."""
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp.replace(path)
        logger.debug("State saved to %s", path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save state to %s: %s", path, e)
        raise


def record_run(state: HostState, record: RunRecord) -> HostState:
    """Fold a finished run into the state: last run plus per-action outcomes."""
    if record.manifest:
        state.manifest_name = record.manifest
    state.last_run = record.to_dict()
    for entry in record.entries:
        previous = state.actions.get(entry.action_key)
        updates = {
            "last_outcome": entry.outcome.value,
            "last_seen_at": entry.timestamp,
            "run_count": (previous.run_count if previous else 0) + 1,
        }
        if entry.applied:
            updates["last_applied_at"] = entry.timestamp
        state.set_action_state(entry.action_key, **updates)
    return state
