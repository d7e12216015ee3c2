"""
Planner — turn a manifest and the live machine into an ordered Plan.

Flow:
    structure checks → driver checks → topological order → --only filter
    → probe → plan_action per resource (in dependency order)

Everything that can make a manifest malformed is detected here, before
the executor touches the machine.
"""

from __future__ import annotations

import logging

from converge.core.engine.graph import check_structure, topological_order
from converge.core.engine.probe import probe_all
from converge.core.errors import InvalidParametersError, UnknownKindError
from converge.core.models.action import Action, Plan, Verb
from converge.core.models.record import ProbeResult
from converge.core.models.resource import Manifest, ResourceDeclaration
from converge.drivers.registry import DriverRegistry

logger = logging.getLogger(__name__)


def validate_manifest(manifest: Manifest, registry: DriverRegistry) -> list[str]:
    """Run every static check and return the resource order.

    Raises:
        ManifestError: Any subclass, for the first class of problem found.
    """
    check_structure(manifest)

    unknown = sorted({d.kind for d in manifest.resources if d.kind not in registry})
    if unknown:
        errors = [f"Unknown kind '{k}'" for k in unknown]
        raise UnknownKindError(
            f"No driver for kind(s): {', '.join(unknown)}. "
            f"Known kinds: {', '.join(sorted(registry.kinds()))}",
            errors,
        )

    errors: list[str] = []
    for decl in manifest.resources:
        errors.extend(registry.require(decl.kind).validate(decl))
    if errors:
        headline = errors[0] if len(errors) == 1 else f"{len(errors)} invalid declarations"
        raise InvalidParametersError(headline, errors)

    return topological_order(manifest)


def build_plan(
    manifest: Manifest,
    registry: DriverRegistry,
    *,
    only: list[str] | None = None,
    parallelism: int = 1,
    operation_id: str = "",
) -> Plan:
    """Build the execution plan for a manifest.

    Args:
        manifest: The desired state.
        registry: Driver lookup.
        only: Restrict the plan to these kinds. Dependencies on
            resources outside the filter are treated as satisfied.
        parallelism: Worker count for probing.
        operation_id: Identifier stamped on the plan.

    Raises:
        ManifestError: Malformed manifest (duplicates, dangling or
            cyclic dependencies, unknown kinds, invalid parameters).
    """
    order = validate_manifest(manifest, registry)

    if only:
        unknown = sorted(set(only) - set(registry.kinds()))
        if unknown:
            raise UnknownKindError(f"Unknown kind(s) in --only: {', '.join(unknown)}")
        order = [rid for rid in order if manifest.get(rid).kind in only]

    declarations = [manifest.get(rid) for rid in order]
    selected = set(order)

    probes = probe_all(declarations, registry, parallelism=parallelism)

    plan = Plan(operation_id=operation_id, manifest_name=manifest.name, probes=probes)
    for decl in declarations:
        verb, rationale = _plan_one(registry, decl, probes[decl.id])
        plan.actions.append(
            Action(resource_id=decl.id, kind=decl.kind, verb=verb, rationale=rationale)
        )
        plan.dependencies[decl.id] = [d for d in decl.depends_on if d in selected]

    logger.info(
        "Planned %d actions (%d changes) for '%s'",
        plan.total_actions,
        plan.pending_changes,
        manifest.name,
    )
    return plan


def _plan_one(
    registry: DriverRegistry,
    decl: ResourceDeclaration,
    current: ProbeResult,
) -> tuple[Verb, str]:
    driver = registry.require(decl.kind)
    try:
        return driver.plan_action(decl, current)
    except Exception as e:
        # Uncertain state plans as absent
        logger.warning("Planning %s failed (%s); planning as absent", decl.id, e)
        return driver.plan_action(decl, driver.absent(decl, f"plan failed: {e}"))
