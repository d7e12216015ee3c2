"""
Probe results and execution records.

ProbeResults are ephemeral: recomputed every run, never persisted.
ExecutionRecords are appended by the executor, frozen once written,
and consumed by the reporter at the end of the run.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from converge.core.models.action import Verb


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ProbeResult(BaseModel):
    """Observed state of one resource.

    ``observed`` holds the installed version, content hash or link
    target, whichever the driver compares against. ``detail`` carries
    diagnostics, notably why inspection failed when ``present`` is False
    only for lack of certainty.
    """

    model_config = ConfigDict(frozen=True)

    resource_id: str
    present: bool
    observed: str | None = None
    detail: str = ""


class Outcome(StrEnum):
    """Terminal outcome of a planned action."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    DEPENDENCY_FAILED = "skipped-due-to-dependency-failure"
    CANCELLED = "cancelled"


class ExecutionRecord(BaseModel):
    """Immutable record of what happened to one planned action."""

    model_config = ConfigDict(frozen=True)

    resource_id: str
    verb: Verb
    outcome: Outcome
    detail: str = ""
    error_detail: str | None = None
    duration_ms: int = 0
    attempts: int = 0
    started_at: str = Field(default_factory=_now_iso)

    @property
    def ok(self) -> bool:
        """Succeeded or skipped: dependents may proceed."""
        return self.outcome in (Outcome.SUCCEEDED, Outcome.SKIPPED)
