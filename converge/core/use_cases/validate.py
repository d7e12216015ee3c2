"""
Validate use case — check a manifest without probing the machine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from converge.core.engine.planner import validate_manifest
from converge.core.engine.reporter import EXIT_MANIFEST, EXIT_OK
from converge.core.errors import ManifestError
from converge.core.models.resource import Manifest
from converge.core.use_cases.run import load_run_context
from converge.drivers.registry import DriverRegistry, default_registry


@dataclass
class ValidateResult:
    """Result of manifest validation."""

    valid: bool = False
    manifest: Manifest | None = None
    manifest_path: Path | None = None
    order: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return EXIT_OK if self.valid else EXIT_MANIFEST

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "manifest_path": str(self.manifest_path) if self.manifest_path else None,
            "manifest": self.manifest.name if self.manifest else None,
            "resource_count": len(self.manifest.resources) if self.manifest else 0,
            "order": self.order,
            "errors": self.errors,
            "warnings": self.warnings,
        }


def validate_manifest_file(
    manifest_path: Path | None = None,
    registry: DriverRegistry | None = None,
) -> ValidateResult:
    """Run structural and per-driver checks and report issues.

    Args:
        manifest_path: Explicit manifest path (default: discover converge.yml).
        registry: Driver registry to check kinds and parameters against.

    Returns:
        ValidateResult with validation status and any issues.
    """
    result = ValidateResult()

    try:
        path, manifest, settings = load_run_context(manifest_path)
        result.manifest = manifest
        result.manifest_path = path

        if registry is None:
            registry = default_registry(settings)
        result.order = validate_manifest(manifest, registry)
    except ManifestError as e:
        result.errors.extend(e.errors)
        return result

    result.valid = True
    result.warnings = _warnings(manifest)
    return result


def _warnings(manifest: Manifest) -> list[str]:
    warnings: list[str] = []

    if not manifest.resources:
        warnings.append("No resources declared. The manifest has nothing to converge.")

    for decl in manifest.resources:
        if decl.flag("reinstall"):
            warnings.append(f"{decl.id}: reinstalls on every run")
        if decl.kind == "command" and not (decl.param("creates") or decl.param("unless")):
            warnings.append(f"{decl.id}: no 'creates' or 'unless' guard, runs on every run")
        if decl.kind == "downloaded-file" and not decl.param("checksum"):
            warnings.append(f"{decl.id}: no checksum, content is not verified")

    return warnings
