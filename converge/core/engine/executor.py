"""
Engine executor — applies a Plan and records what happened.

Takes the planner's ordered actions, applies each one through its
driver, and turns receipts into ExecutionRecords.

Per action:
    cancellation check → dependency check → kind lock → apply (+ retry) → record

Failures never abort the run. A failed resource takes down only the
resources that (transitively) depend on it; independent branches carry
on. With ``parallelism > 1`` independent actions share a worker pool,
but actions of the same lock (everything that drives apt, say) are
never in flight together.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import uuid
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import UTC, datetime

from converge.core.errors import DependencyFailure
from converge.core.models.action import Action, Plan, Receipt
from converge.core.models.record import ExecutionRecord, Outcome
from converge.core.models.resource import Manifest
from converge.core.reliability.retry import NO_RETRY, RetryPolicy
from converge.drivers.base import Driver
from converge.drivers.registry import DriverRegistry

logger = logging.getLogger(__name__)

RecordCallback = Callable[[ExecutionRecord], None]


class Executor:
    """Apply plans through the driver registry.

    Args:
        registry: Driver lookup.
        retry: Backoff policy for transient failures of network kinds.
        parallelism: Worker count; 1 applies strictly in plan order.
        dry_run: Record what would happen without applying anything.
        cancel_event: Set to stop the run; checked between actions.
        on_record: Called with every record as soon as it exists.
    """

    def __init__(
        self,
        registry: DriverRegistry,
        *,
        retry: RetryPolicy | None = None,
        parallelism: int = 1,
        dry_run: bool = False,
        cancel_event: threading.Event | None = None,
        on_record: RecordCallback | None = None,
    ):
        self._registry = registry
        self._retry = retry or RetryPolicy()
        self._parallelism = max(1, parallelism)
        self._dry_run = dry_run
        self._cancel = cancel_event or threading.Event()
        self._on_record = on_record

        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def execute(self, plan: Plan, manifest: Manifest) -> list[ExecutionRecord]:
        """Execute every action in the plan.

        Returns:
            One record per planned action, in plan order.
        """
        if self._parallelism == 1 or self._dry_run:
            records = self._run_sequential(plan, manifest)
        else:
            records = self._run_pool(plan, manifest)
        return [records[a.resource_id] for a in plan.actions]

    # ── Scheduling ───────────────────────────────────────────────

    def _run_sequential(self, plan: Plan, manifest: Manifest) -> dict[str, ExecutionRecord]:
        records: dict[str, ExecutionRecord] = {}

        for action in plan.actions:
            if self.cancelled:
                self._emit(records, self._cancelled(action))
                continue

            settled = self._settle(action, plan, records)
            if settled is not None:
                self._emit(records, settled)
                continue

            self._emit(records, self._apply(action, manifest))

        return records

    def _run_pool(self, plan: Plan, manifest: Manifest) -> dict[str, ExecutionRecord]:
        records: dict[str, ExecutionRecord] = {}
        pending = list(plan.actions)
        running: dict[Future, tuple[Action, str | None]] = {}

        with ThreadPoolExecutor(max_workers=self._parallelism) as pool:
            while pending or running:
                if self.cancelled:
                    for action in pending:
                        self._emit(records, self._cancelled(action))
                    pending = []
                else:
                    pending = self._settle_ready(pending, plan, records)
                    pending = self._submit_ready(pending, plan, manifest, records, running, pool)

                if not running:
                    if pending:
                        raise RuntimeError(
                            f"Scheduler stalled with {len(pending)} actions pending"
                        )
                    continue

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    running.pop(future)
                    self._emit(records, future.result())

        return records

    def _settle_ready(
        self,
        pending: list[Action],
        plan: Plan,
        records: dict[str, ExecutionRecord],
    ) -> list[Action]:
        """Record every ready action whose outcome needs no driver.

        Repeats until nothing changes: a dependency failure settles its
        dependents, which may settle theirs.
        """
        progressed = True
        while progressed:
            progressed = False
            still_pending: list[Action] = []
            for action in pending:
                if not self._deps_done(action, plan, records):
                    still_pending.append(action)
                    continue
                settled = self._settle(action, plan, records)
                if settled is None:
                    still_pending.append(action)
                else:
                    self._emit(records, settled)
                    progressed = True
            pending = still_pending
        return pending

    def _submit_ready(
        self,
        pending: list[Action],
        plan: Plan,
        manifest: Manifest,
        records: dict[str, ExecutionRecord],
        running: dict[Future, tuple[Action, str | None]],
        pool: ThreadPoolExecutor,
    ) -> list[Action]:
        """Start ready actions, at most one per lock, up to the pool size."""
        busy_locks = {lock for _, lock in running.values() if lock}
        still_pending: list[Action] = []

        for action in pending:
            if len(running) >= self._parallelism or not self._deps_done(action, plan, records):
                still_pending.append(action)
                continue
            lock = self._registry.require(action.kind).lock
            if lock and lock in busy_locks:
                still_pending.append(action)
                continue
            if lock:
                busy_locks.add(lock)
            future = pool.submit(self._apply, action, manifest)
            running[future] = (action, lock)

        return still_pending

    @staticmethod
    def _deps_done(action: Action, plan: Plan, records: dict[str, ExecutionRecord]) -> bool:
        return all(dep in records for dep in plan.dependencies.get(action.resource_id, []))

    def _settle(
        self,
        action: Action,
        plan: Plan,
        records: dict[str, ExecutionRecord],
    ) -> ExecutionRecord | None:
        """Outcome of an action that needs no driver call, if any."""
        for dep in plan.dependencies.get(action.resource_id, []):
            if not records[dep].ok:
                failure = DependencyFailure(action.resource_id, dep)
                return ExecutionRecord(
                    resource_id=action.resource_id,
                    verb=action.verb,
                    outcome=Outcome.DEPENDENCY_FAILED,
                    error_detail=str(failure),
                )

        if not action.changes:
            return ExecutionRecord(
                resource_id=action.resource_id,
                verb=action.verb,
                outcome=Outcome.SKIPPED,
                detail=action.rationale,
            )

        if self._dry_run:
            return ExecutionRecord(
                resource_id=action.resource_id,
                verb=action.verb,
                outcome=Outcome.SKIPPED,
                detail=f"[dry-run] would {action.verb} ({action.rationale})",
            )
        return None

    # ── Apply ────────────────────────────────────────────────────

    def _apply(self, action: Action, manifest: Manifest) -> ExecutionRecord:
        """Apply one action with locking and retries. Never raises."""
        started_at = datetime.now(UTC).isoformat()
        decl = manifest.get(action.resource_id)
        driver = self._registry.require(action.kind)

        receipt, attempts = self._apply_with_retry(driver, action, decl)

        if receipt.ok:
            outcome = Outcome.SUCCEEDED
        elif receipt.status == "skipped":
            outcome = Outcome.SKIPPED
        else:
            outcome = Outcome.FAILED

        return ExecutionRecord(
            resource_id=action.resource_id,
            verb=action.verb,
            outcome=outcome,
            detail=receipt.output,
            error_detail=receipt.error,
            duration_ms=receipt.duration_ms,
            attempts=attempts,
            started_at=started_at,
        )

    def _apply_with_retry(self, driver: Driver, action: Action, decl) -> tuple[Receipt, int]:
        policy = self._retry if driver.network else NO_RETRY
        total_ms = 0
        attempt = 0
        while True:
            attempt += 1
            with self._hold(driver.lock):
                receipt = driver.apply(action, decl)
            total_ms += receipt.duration_ms

            if not receipt.transient or attempt >= policy.max_attempts:
                receipt.duration_ms = total_ms
                return receipt, attempt

            logger.warning(
                "%s failed transiently (attempt %d/%d): %s",
                action.resource_id, attempt, policy.max_attempts, receipt.error,
            )
            policy.wait(attempt, action.resource_id)

    def _hold(self, name: str | None):
        """Context manager holding the named exclusive lock, if any."""
        if not name:
            return contextlib.nullcontext()
        with self._locks_guard:
            lock = self._locks.setdefault(name, threading.Lock())
        return lock

    # ── Records ──────────────────────────────────────────────────

    @staticmethod
    def _cancelled(action: Action) -> ExecutionRecord:
        return ExecutionRecord(
            resource_id=action.resource_id,
            verb=action.verb,
            outcome=Outcome.CANCELLED,
            error_detail="run cancelled before this action started",
        )

    def _emit(self, records: dict[str, ExecutionRecord], record: ExecutionRecord) -> None:
        records[record.resource_id] = record

        marker = {
            Outcome.SUCCEEDED: "✓",
            Outcome.SKIPPED: "⊘",
            Outcome.FAILED: "✗",
        }.get(record.outcome, "↷")
        logger.info(
            "%s %s %s → %s %s",
            marker,
            record.resource_id,
            record.verb,
            record.outcome,
            record.error_detail or record.detail,
        )
        if self._on_record is not None:
            self._on_record(record)


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"
