"""
Action, Plan and Receipt models — the planning/apply contract.

The planner emits Actions (one per resource, in dependency order) and
hands the Plan to the executor. Drivers answer each apply with a
Receipt. Never exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from converge.core.models.record import ProbeResult


class Verb(StrEnum):
    """What the executor has to do to converge a resource."""

    SKIP = "skip"
    INSTALL = "install"
    REINSTALL = "reinstall"
    UPDATE = "update"
    CREATE = "create"


class Action(BaseModel):
    """A planned operation on one resource."""

    resource_id: str
    kind: str
    verb: Verb
    rationale: str = ""

    @property
    def changes(self) -> bool:
        """Whether applying this action touches the machine."""
        return self.verb != Verb.SKIP


@dataclass
class Plan:
    """Ordered, fully-resolved sequence of actions ready for execution.

    ``dependencies`` maps each planned resource id to the planned ids it
    depends on. Dependencies outside the plan (filtered out with
    ``--only``) are not listed.
    """

    operation_id: str = ""
    manifest_name: str = ""
    actions: list[Action] = field(default_factory=list)
    dependencies: dict[str, list[str]] = field(default_factory=dict)
    probes: dict[str, ProbeResult] = field(default_factory=dict)

    @property
    def total_actions(self) -> int:
        return len(self.actions)

    @property
    def pending_changes(self) -> int:
        return sum(1 for a in self.actions if a.changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "manifest": self.manifest_name,
            "total": self.total_actions,
            "changes": self.pending_changes,
            "actions": [
                {
                    **a.model_dump(mode="json"),
                    "depends_on": self.dependencies.get(a.resource_id, []),
                }
                for a in self.actions
            ],
        }


ErrorKind = Literal["transient", "integrity", "error"]


class Receipt(BaseModel):
    """Result of one driver apply attempt.

    ``error_kind`` classifies failures so the executor can decide on
    retries: only ``transient`` failures of network-sourced kinds are
    retried.
    """

    resource_id: str
    verb: Verb
    status: Literal["ok", "skipped", "failed"] = "ok"
    output: str = ""
    error: str | None = None
    error_kind: ErrorKind | None = None
    duration_ms: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @property
    def transient(self) -> bool:
        return self.failed and self.error_kind == "transient"

    @classmethod
    def success(cls, resource_id: str, verb: Verb, output: str = "", **kwargs: Any) -> Receipt:
        """Create a success receipt."""
        return cls(resource_id=resource_id, verb=verb, status="ok", output=output, **kwargs)

    @classmethod
    def failure(
        cls,
        resource_id: str,
        verb: Verb,
        error: str,
        error_kind: ErrorKind = "error",
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(
            resource_id=resource_id,
            verb=verb,
            status="failed",
            error=error,
            error_kind=error_kind,
            **kwargs,
        )

    @classmethod
    def skip(cls, resource_id: str, verb: Verb, reason: str = "", **kwargs: Any) -> Receipt:
        """Create a skip receipt."""
        return cls(resource_id=resource_id, verb=verb, status="skipped", output=reason, **kwargs)
