"""
Run use case — converge the machine to a manifest.

This is the top-level orchestrator: it loads the manifest, resolves
settings, plans against the live machine, executes, and persists the
results. The full vertical slice from ``converge run`` to an audited
run.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from converge.core.config.loader import manifest_root, resolve_manifest
from converge.core.config.settings import Settings
from converge.core.engine.executor import Executor, RecordCallback, generate_operation_id
from converge.core.engine.planner import build_plan
from converge.core.engine.reporter import EXIT_MANIFEST, Summary, summarize
from converge.core.errors import ManifestError
from converge.core.models.action import Plan
from converge.core.models.resource import Manifest
from converge.core.persistence.audit import AuditEntry, AuditWriter
from converge.core.persistence.state_file import (
    load_state,
    resolve_state_dir,
    save_state,
    state_path,
)
from converge.core.reliability.retry import RetryPolicy
from converge.drivers.registry import DriverRegistry, default_registry

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Result of one ``converge run``."""

    manifest: Manifest | None = None
    manifest_path: Path | None = None
    settings: Settings | None = None
    plan: Plan | None = None
    summary: Summary | None = None
    state_dir: Path | None = None
    error: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        if self.error or self.summary is None:
            return EXIT_MANIFEST
        return self.summary.exit_code

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error, "errors": self.errors, "exit_code": self.exit_code}

        result: dict = {
            "manifest": self.manifest.name if self.manifest else "",
            "manifest_path": str(self.manifest_path),
            "exit_code": self.exit_code,
        }
        if self.summary:
            result["summary"] = self.summary.to_dict()
        return result


def load_run_context(
    manifest_path: Path | None,
    *,
    parallelism: int | None = None,
    state_dir: str | None = None,
) -> tuple[Path, Manifest, Settings]:
    """Load a manifest and resolve its effective settings.

    Precedence: explicit arguments > ``CONVERGE_*`` env > manifest > defaults.

    Raises:
        ManifestError: Manifest missing or invalid, or bad settings.
    """
    path, manifest = resolve_manifest(manifest_path)
    try:
        settings = manifest.settings.with_env()
    except ValidationError as e:
        raise ManifestError(f"Invalid CONVERGE_* setting: {e}") from e
    settings = settings.merged(parallelism=parallelism, state_dir=state_dir)
    return path, manifest, settings


def run_manifest(
    manifest_path: Path | None = None,
    *,
    dry_run: bool = False,
    only: list[str] | None = None,
    parallelism: int | None = None,
    state_dir: str | None = None,
    registry: DriverRegistry | None = None,
    cancel_event: threading.Event | None = None,
    on_record: RecordCallback | None = None,
    sleep: Callable[[float], None] | None = None,
) -> RunResult:
    """Plan and apply a manifest.

    Args:
        manifest_path: Explicit manifest path (default: discover converge.yml).
        dry_run: Plan and report without changing the machine.
        only: Restrict the run to these kinds.
        parallelism: Override the worker count.
        state_dir: Override where state and audit files go.
        registry: Pre-configured driver registry (tests pass mocks).
        cancel_event: Set from a signal handler to stop between actions.
        on_record: Called with each ExecutionRecord as it is produced.
        sleep: Backoff sleep function (tests pass a no-op).

    Returns:
        RunResult; ``exit_code`` is 0, 1 or 2.
    """
    result = RunResult()

    # ── Load manifest and settings ───────────────────────────────
    try:
        path, manifest, settings = load_run_context(
            manifest_path, parallelism=parallelism, state_dir=state_dir
        )
    except ManifestError as e:
        result.error = str(e)
        result.errors = e.errors
        return result

    result.manifest = manifest
    result.manifest_path = path
    result.settings = settings
    state_root = resolve_state_dir(settings.state_dir, manifest_root(path))
    result.state_dir = state_root

    if registry is None:
        registry = default_registry(settings)

    # ── Plan ─────────────────────────────────────────────────────
    operation_id = generate_operation_id()
    started_at = datetime.now(UTC).isoformat()
    start = time.monotonic()

    try:
        plan = build_plan(
            manifest,
            registry,
            only=only,
            parallelism=settings.parallelism,
            operation_id=operation_id,
        )
    except ManifestError as e:
        result.error = str(e)
        result.errors = e.errors
        return result
    result.plan = plan

    # ── Execute ──────────────────────────────────────────────────
    retry = RetryPolicy(
        max_retries=settings.max_retries,
        base_delay=settings.backoff_base,
        max_delay=settings.backoff_max,
        sleep=sleep or time.sleep,
    )

    executor = Executor(
        registry,
        retry=retry,
        parallelism=settings.parallelism,
        dry_run=dry_run,
        cancel_event=cancel_event,
        on_record=on_record,
    )
    records = executor.execute(plan, manifest)

    summary = summarize(
        records,
        operation_id=operation_id,
        manifest_name=manifest.name,
        duration_ms=int((time.monotonic() - start) * 1000),
        dry_run=dry_run,
    )
    result.summary = summary

    # ── Persist ──────────────────────────────────────────────────
    if not dry_run:
        _persist(summary, state_root, path, started_at, only)

    return result


def _persist(
    summary: Summary,
    state_root: Path,
    manifest_path: Path,
    started_at: str,
    only: list[str] | None,
) -> None:
    path = state_path(state_root)
    state = load_state(path)
    state.manifest_name = summary.manifest_name
    state.manifest_path = str(manifest_path)

    ended_at = datetime.now(UTC).isoformat()
    run = state.last_run
    run.operation_id = summary.operation_id
    run.manifest = summary.manifest_name
    run.started_at = started_at
    run.ended_at = ended_at
    run.status = summary.status
    run.actions_total = summary.total
    run.actions_succeeded = summary.succeeded
    run.actions_skipped = summary.skipped
    run.actions_failed = len(summary.failures)
    run.duration_ms = summary.duration_ms

    for record in summary.records:
        state.set_resource_state(
            record.resource_id,
            last_verb=record.verb.value,
            last_outcome=record.outcome.value,
            last_error=record.error_detail,
            last_run_at=record.started_at,
        )

    try:
        save_state(state, path)
    except OSError as e:
        logger.error("Could not save state to %s: %s", path, e)

    AuditWriter(state_root).write(AuditEntry.from_summary(summary, only))
