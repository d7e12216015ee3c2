"""
Driver base — the contract between the engine and one resource kind.

Every resource kind (package, symlink, rc line, ...) is handled by a
driver that knows how to probe, plan and apply it. The engine only
talks to drivers through this interface, and only through the
registry.

To create a new driver:
    1. Subclass Driver
    2. Implement kind, inspect, plan_action, converge
    3. Register it in the DriverRegistry
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any

from converge.core.errors import (
    ExecutionError,
    IntegrityError,
    TransientExecutionError,
)
from converge.core.models.action import Action, Receipt, Verb
from converge.core.models.record import ProbeResult
from converge.core.models.resource import ResourceDeclaration

logger = logging.getLogger(__name__)


class Driver(ABC):
    """Abstract base class for resource drivers.

    Class attributes:
        network: The kind fetches from the network; transient failures
            are retried by the executor.
        lock: Name of an exclusive lock held around every apply
            (``"apt"`` for everything that drives the package manager).
        required: Parameters that must be present and non-empty.
    """

    network: bool = False
    lock: str | None = None
    required: tuple[str, ...] = ()

    @property
    @abstractmethod
    def kind(self) -> str:
        """The kind name used in manifests (e.g. 'package', 'symlink')."""

    # ── Validation ───────────────────────────────────────────────

    def validate(self, decl: ResourceDeclaration) -> list[str]:
        """Check a declaration's parameters. Returns error strings."""
        return [
            f"{decl.id}: missing required parameter '{key}'"
            for key in self.required
            if not decl.param(key)
        ]

    # ── Probe ────────────────────────────────────────────────────

    def probe(self, decl: ResourceDeclaration) -> ProbeResult:
        """Observe the resource. Never mutates the machine, never raises.

        An inspection error yields ``present=False`` so the resource is
        re-applied rather than wrongly skipped.
        """
        try:
            return self.inspect(decl)
        except Exception as e:
            logger.debug("Probe of %s failed: %s", decl.id, e)
            return self.absent(decl, f"probe failed: {e}")

    @abstractmethod
    def inspect(self, decl: ResourceDeclaration) -> ProbeResult:
        """Observe the resource; may raise ``ProbeError`` or ``OSError``."""

    # ── Plan ─────────────────────────────────────────────────────

    @abstractmethod
    def plan_action(self, decl: ResourceDeclaration, current: ProbeResult) -> tuple[Verb, str]:
        """Decide what converging the resource takes: (verb, rationale)."""

    # ── Apply ────────────────────────────────────────────────────

    @abstractmethod
    def converge(self, decl: ResourceDeclaration, verb: Verb, current: ProbeResult) -> str:
        """Change the machine. Returns a short description of what was done.

        Raises:
            TransientExecutionError: Retryable failure.
            IntegrityError: Content did not match its checksum.
            ExecutionError: Any other failure.
        """

    def apply(self, action: Action, decl: ResourceDeclaration) -> Receipt:
        """Apply a planned action and return a receipt. Never raises.

        The precondition is re-checked first: if the machine already
        satisfies the declaration (someone else converged it since the
        plan was made) the action degrades to a skip.
        """
        start = time.monotonic()

        current = self.probe(decl)
        try:
            verb, rationale = self.plan_action(decl, current)
        except Exception as e:
            logger.debug("Re-check of %s failed: %s", decl.id, e)
            verb, rationale = action.verb, ""
        if verb == Verb.SKIP:
            return Receipt.skip(
                resource_id=decl.id,
                verb=action.verb,
                reason=f"already satisfied at apply time ({rationale})",
                duration_ms=_elapsed_ms(start),
            )

        try:
            output = self.converge(decl, action.verb, current)
        except TransientExecutionError as e:
            return self._failed(decl, action, str(e), "transient", start)
        except IntegrityError as e:
            return self._failed(decl, action, str(e), "integrity", start)
        except (ExecutionError, OSError) as e:
            return self._failed(decl, action, str(e), "error", start)
        except Exception as e:
            logger.error("Driver %s raised during apply of %s: %s", self.kind, decl.id, e)
            return self._failed(decl, action, f"Unexpected error: {e}", "error", start)

        return Receipt.success(
            resource_id=decl.id,
            verb=action.verb,
            output=output,
            duration_ms=_elapsed_ms(start),
        )

    # ── Helpers ──────────────────────────────────────────────────

    @staticmethod
    def present(decl: ResourceDeclaration, observed: str | None = None, detail: str = "") -> ProbeResult:
        return ProbeResult(resource_id=decl.id, present=True, observed=observed, detail=detail)

    @staticmethod
    def absent(decl: ResourceDeclaration, detail: str = "") -> ProbeResult:
        return ProbeResult(resource_id=decl.id, present=False, detail=detail)

    def describe(self) -> dict[str, Any]:
        return {"kind": self.kind, "network": self.network, "lock": self.lock}

    @staticmethod
    def _failed(decl, action, error, error_kind, start) -> Receipt:
        return Receipt.failure(
            resource_id=decl.id,
            verb=action.verb,
            error=error,
            error_kind=error_kind,
            duration_ms=_elapsed_ms(start),
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} kind={self.kind!r}>"


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
