"""
RunState — what the last run did, per resource.

Serialized to ``<state_dir>/current.json`` after every non-dry run and
read back by ``converge status``. It is a history, not a source of
truth: the planner always probes the live machine.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ResourceState(BaseModel):
    """Last known result for one resource."""

    resource_id: str
    last_verb: str = ""
    last_outcome: str = ""
    last_error: str | None = None
    last_run_at: str | None = None


class RunRecord(BaseModel):
    """Summary of the last run."""

    operation_id: str = ""
    manifest: str = ""
    started_at: str = ""
    ended_at: str = ""
    status: str = ""  # ok, partial, failed, cancelled
    actions_total: int = 0
    actions_succeeded: int = 0
    actions_skipped: int = 0
    actions_failed: int = 0
    duration_ms: int = 0


class RunState(BaseModel):
    """Root state model — serialized to ``current.json``."""

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Identity ─────────────────────────────────────────────────
    manifest_name: str = ""
    manifest_path: str = ""

    # ── Timestamps ───────────────────────────────────────────────
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    # ── Per-resource history ─────────────────────────────────────
    resources: dict[str, ResourceState] = Field(default_factory=dict)

    # ── Last run ─────────────────────────────────────────────────
    last_run: RunRecord = Field(default_factory=RunRecord)

    metadata: dict[str, Any] = Field(default_factory=dict)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def set_resource_state(self, resource_id: str, **kwargs: Any) -> None:
        """Update or create a resource state entry."""
        if resource_id in self.resources:
            for key, value in kwargs.items():
                setattr(self.resources[resource_id], key, value)
        else:
            self.resources[resource_id] = ResourceState(resource_id=resource_id, **kwargs)
