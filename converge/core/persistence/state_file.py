"""
State file persistence — atomic read/write for RunState.

Writes are atomic (write to temp file, then rename) so a crash
mid-write never leaves a truncated current.json behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from converge.core.models.state import RunState

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".state"
DEFAULT_STATE_FILE = "current.json"


def default_state_dir(manifest_dir: Path) -> Path:
    """Get the default state directory for a manifest."""
    return manifest_dir / DEFAULT_STATE_DIR


def resolve_state_dir(configured: str | None, manifest_dir: Path) -> Path:
    """State directory from settings; relative paths are manifest-relative."""
    if not configured:
        return default_state_dir(manifest_dir)
    path = Path(os.path.expanduser(configured))
    return path if path.is_absolute() else manifest_dir / path


def state_path(state_dir: Path) -> Path:
    """Path of the state file inside a state directory."""
    return state_dir / DEFAULT_STATE_FILE


def load_state(path: Path) -> RunState:
    """Load run state from a JSON file.

    Args:
        path: Path to the state JSON file.

    Returns:
        RunState model. If the file is missing or corrupt, a fresh state.
    """
    if not path.is_file():
        logger.info("No state file at %s — starting fresh", path)
        return RunState()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        state = RunState.model_validate(data)
        logger.debug("Loaded state from %s (updated_at=%s)", path, state.updated_at)
        return state
    except json.JSONDecodeError as e:
        logger.warning("Corrupt state file %s: %s — starting fresh", path, e)
        return RunState()
    except Exception as e:
        logger.warning("Cannot load state from %s: %s — starting fresh", path, e)
        return RunState()


def save_state(state: RunState, path: Path) -> None:
    """Save run state to a JSON file (atomic write).

    Args:
        state: The state to save.
        path: Target path for the state file.
    """
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = state.model_dump(mode="json")
    content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with open(fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp.replace(path)
        logger.debug("State saved to %s", path)
    except Exception:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save state to %s", path)
        raise
