"""
Error taxonomy for the reconciliation engine.

Only ``ManifestError`` stops a run. Every other error is isolated to the
resource it happened on (and the resources that depend on it) and ends up
in the final report.
"""

from __future__ import annotations


class ConvergeError(Exception):
    """Base class for every converge error."""


# ── Manifest (fatal, raised before any action runs) ─────────────────


class ManifestError(ConvergeError):
    """The manifest is malformed: unreadable, invalid, or not a DAG.

    Args:
        message: Summary line.
        errors: Individual problems, when more than one was found.
    """

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or [message]


class DuplicateResourceError(ManifestError):
    """Two declarations share the same ``kind:name`` identity."""


class DanglingDependencyError(ManifestError):
    """A ``depends_on`` entry names a resource missing from the manifest."""


class UnknownKindError(ManifestError):
    """No driver is registered for a declaration's kind."""


class InvalidParametersError(ManifestError):
    """A driver rejected a declaration's parameters."""


class CycleError(ManifestError):
    """The dependency graph contains a cycle.

    ``cycle`` lists the resource ids along the loop, with the first id
    repeated at the end (``a -> b -> a``).
    """

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Dependency cycle: {' -> '.join(cycle)}")


# ── Probe (non-fatal, treated as "absent") ──────────────────────────


class ProbeError(ConvergeError):
    """Inspecting a resource failed; the resource is treated as absent."""


# ── Execution (isolated to one resource subtree) ────────────────────


class ExecutionError(ConvergeError):
    """Applying a resource failed permanently."""


class TransientExecutionError(ExecutionError):
    """A retryable failure: timeout, connection reset, server busy."""


class IntegrityError(ExecutionError):
    """Fetched content did not match the declared checksum. Never retried."""


class DependencyFailure(ConvergeError):
    """A resource was not attempted because a dependency failed."""

    def __init__(self, resource_id: str, failed_dependency: str):
        self.resource_id = resource_id
        self.failed_dependency = failed_dependency
        super().__init__(
            f"{resource_id} skipped: dependency {failed_dependency} did not succeed"
        )
