"""
Status use case — what the last run did, from state and audit history.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from converge.core.config.loader import manifest_root
from converge.core.errors import ManifestError
from converge.core.models.resource import Manifest
from converge.core.models.state import RunState
from converge.core.persistence.audit import AuditEntry, AuditWriter
from converge.core.persistence.state_file import load_state, resolve_state_dir, state_path
from converge.core.use_cases.run import load_run_context


@dataclass
class StatusResult:
    """Manifest identity, last-run state and recent history."""

    manifest: Manifest | None = None
    manifest_path: Path | None = None
    state_dir: Path | None = None
    state: RunState | None = None
    history: list[AuditEntry] = field(default_factory=list)
    error: str | None = None

    @property
    def has_run(self) -> bool:
        return bool(self.state and self.state.last_run.operation_id)

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}

        result: dict = {
            "manifest": {
                "name": self.manifest.name if self.manifest else "",
                "path": str(self.manifest_path),
                "resources": len(self.manifest.resources) if self.manifest else 0,
            },
            "state_dir": str(self.state_dir),
        }
        if self.state:
            result["last_run"] = self.state.last_run.model_dump(mode="json")
            result["resources"] = {
                rid: rs.model_dump(mode="json", exclude={"resource_id"})
                for rid, rs in self.state.resources.items()
            }
        result["history"] = [e.model_dump(mode="json") for e in self.history]
        return result


def get_status(
    manifest_path: Path | None = None,
    state_dir: str | None = None,
    history: int = 5,
) -> StatusResult:
    """Load the manifest, its last-run state and recent audit entries."""
    result = StatusResult()

    try:
        path, manifest, settings = load_run_context(manifest_path, state_dir=state_dir)
    except ManifestError as e:
        result.error = str(e)
        return result

    result.manifest = manifest
    result.manifest_path = path
    result.state_dir = resolve_state_dir(settings.state_dir, manifest_root(path))
    result.state = load_state(state_path(result.state_dir))
    result.history = AuditWriter(result.state_dir).read_recent(history)
    return result
