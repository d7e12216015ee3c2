"""
Dependency graph utilities (pure).

Structural checks, deterministic topological ordering and cycle
extraction over a manifest's ``depends_on`` edges.
No I/O, no subprocess.
"""

from __future__ import annotations

import heapq

from converge.core.errors import CycleError, DanglingDependencyError, DuplicateResourceError
from converge.core.models.resource import Manifest


def check_structure(manifest: Manifest) -> None:
    """Reject duplicate identities and dependencies on unknown resources.

    All problems of one class are collected before raising, so a user
    fixing a manifest sees every duplicate (or every dangling edge) at
    once.

    Raises:
        DuplicateResourceError: Two declarations share a ``kind:name``.
        DanglingDependencyError: A ``depends_on`` target is not declared.
    """
    seen: set[str] = set()
    duplicates: list[str] = []
    for decl in manifest.resources:
        if decl.id in seen and decl.id not in duplicates:
            duplicates.append(decl.id)
        seen.add(decl.id)
    if duplicates:
        errors = [f"Duplicate resource: {rid}" for rid in duplicates]
        raise DuplicateResourceError(_headline(errors, "duplicate resources"), errors)

    dangling = [
        f"{decl.id} depends on unknown resource '{dep}'"
        for decl in manifest.resources
        for dep in decl.depends_on
        if dep not in seen
    ]
    if dangling:
        raise DanglingDependencyError(_headline(dangling, "unresolved dependencies"), dangling)


def _headline(errors: list[str], noun: str) -> str:
    return errors[0] if len(errors) == 1 else f"{len(errors)} {noun}"


def topological_order(manifest: Manifest) -> list[str]:
    """Order resource ids so every resource follows its dependencies.

    Kahn's algorithm with a heap keyed on declaration index: among the
    resources that are ready at any point, the one declared first goes
    first. The order is therefore fully determined by the manifest.

    Raises:
        CycleError: The graph is not acyclic; the error names one cycle.
    """
    index = {decl.id: i for i, decl in enumerate(manifest.resources)}
    deps = {decl.id: list(decl.depends_on) for decl in manifest.resources}

    in_degree = {rid: len(d) for rid, d in deps.items()}
    dependents: dict[str, list[str]] = {rid: [] for rid in deps}
    for rid, d in deps.items():
        for dep in d:
            dependents[dep].append(rid)

    ready = [(index[rid], rid) for rid, n in in_degree.items() if n == 0]
    heapq.heapify(ready)

    order: list[str] = []
    while ready:
        _, rid = heapq.heappop(ready)
        order.append(rid)
        for successor in dependents[rid]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                heapq.heappush(ready, (index[successor], successor))

    if len(order) < len(deps):
        remaining = {rid for rid in deps if in_degree[rid] > 0}
        raise CycleError(find_cycle(remaining, deps, index))
    return order


def find_cycle(
    remaining: set[str],
    deps: dict[str, list[str]],
    index: dict[str, int],
) -> list[str]:
    """Extract one cycle from the nodes Kahn's algorithm could not order.

    Every remaining node has at least one remaining dependency, so
    walking dependency edges from any of them must revisit a node.
    The walk starts at the earliest-declared node and always follows
    the earliest-declared dependency.

    Returns:
        The cycle as ``[a, b, ..., a]`` (``a`` depends on ``b``, ...).
    """
    node = min(remaining, key=index.__getitem__)
    path: list[str] = []
    position: dict[str, int] = {}
    while node not in position:
        position[node] = len(path)
        path.append(node)
        node = min((d for d in deps[node] if d in remaining), key=index.__getitem__)
    return path[position[node]:] + [node]
