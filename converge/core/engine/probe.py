"""
Probe — observe the current state of every planned resource.

Probes are read-only and independent of each other, so with
``parallelism > 1`` they run on a thread pool. A failing probe never
aborts planning: the driver reports the resource as absent.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

from converge.core.models.record import ProbeResult
from converge.core.models.resource import ResourceDeclaration
from converge.drivers.registry import DriverRegistry

logger = logging.getLogger(__name__)


def probe_all(
    declarations: list[ResourceDeclaration],
    registry: DriverRegistry,
    parallelism: int = 1,
) -> dict[str, ProbeResult]:
    """Probe every declaration through its driver.

    Returns:
        ``{resource_id: ProbeResult}`` in declaration order.
    """

    def _probe(decl: ResourceDeclaration) -> ProbeResult:
        result = registry.require(decl.kind).probe(decl)
        logger.debug(
            "Probed %s: present=%s observed=%s %s",
            decl.id, result.present, result.observed, result.detail,
        )
        return result

    if parallelism <= 1 or len(declarations) <= 1:
        return {decl.id: _probe(decl) for decl in declarations}

    with ThreadPoolExecutor(max_workers=min(parallelism, len(declarations))) as pool:
        results = list(pool.map(_probe, declarations))
    return {decl.id: result for decl, result in zip(declarations, results)}
