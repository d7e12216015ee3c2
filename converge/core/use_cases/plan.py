"""
Plan use case — show what a run would do, without doing it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from converge.core.engine.executor import generate_operation_id
from converge.core.engine.planner import build_plan
from converge.core.engine.reporter import EXIT_MANIFEST, EXIT_OK
from converge.core.errors import ManifestError
from converge.core.models.action import Plan
from converge.core.models.resource import Manifest
from converge.core.use_cases.run import load_run_context
from converge.drivers.registry import DriverRegistry, default_registry


@dataclass
class PlanResult:
    """A computed plan, or why it could not be computed."""

    manifest: Manifest | None = None
    manifest_path: Path | None = None
    plan: Plan | None = None
    error: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return EXIT_MANIFEST if self.error else EXIT_OK

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error, "errors": self.errors}
        result: dict = {"manifest_path": str(self.manifest_path)}
        if self.plan:
            result["plan"] = self.plan.to_dict()
        return result


def plan_manifest(
    manifest_path: Path | None = None,
    *,
    only: list[str] | None = None,
    parallelism: int | None = None,
    registry: DriverRegistry | None = None,
) -> PlanResult:
    """Probe the machine and compute the plan for a manifest."""
    result = PlanResult()

    try:
        path, manifest, settings = load_run_context(manifest_path, parallelism=parallelism)
        result.manifest = manifest
        result.manifest_path = path

        if registry is None:
            registry = default_registry(settings)

        result.plan = build_plan(
            manifest,
            registry,
            only=only,
            parallelism=settings.parallelism,
            operation_id=generate_operation_id(),
        )
    except ManifestError as e:
        result.error = str(e)
        result.errors = e.errors

    return result
