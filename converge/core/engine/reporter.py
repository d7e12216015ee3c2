"""
Reporter — pure aggregation over execution records.

Counts by outcome, the failures with their reasons, total duration and
the process exit code. No side effects: printing is the CLI's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from converge.core.models.record import ExecutionRecord, Outcome

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_MANIFEST = 2


@dataclass
class Summary:
    """Result of one run, as reported to the user."""

    operation_id: str = ""
    manifest_name: str = ""
    dry_run: bool = False
    duration_ms: int = 0
    records: list[ExecutionRecord] = field(default_factory=list)

    def count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.records if r.outcome == outcome)

    @property
    def total(self) -> int:
        return len(self.records)

    @property
    def succeeded(self) -> int:
        return self.count(Outcome.SUCCEEDED)

    @property
    def skipped(self) -> int:
        return self.count(Outcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(Outcome.FAILED)

    @property
    def dependency_failed(self) -> int:
        return self.count(Outcome.DEPENDENCY_FAILED)

    @property
    def cancelled(self) -> int:
        return self.count(Outcome.CANCELLED)

    @property
    def failures(self) -> list[ExecutionRecord]:
        """Records that did not converge, in plan order."""
        return [r for r in self.records if not r.ok]

    @property
    def status(self) -> str:
        if self.cancelled:
            return "cancelled"
        if not self.failures:
            return "ok"
        if self.succeeded or self.skipped:
            return "partial"
        return "failed"

    @property
    def exit_code(self) -> int:
        return EXIT_OK if not self.failures else EXIT_FAILED

    def counts(self) -> dict[str, int]:
        return {outcome.value: self.count(outcome) for outcome in Outcome}

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "manifest": self.manifest_name,
            "dry_run": self.dry_run,
            "status": self.status,
            "total": self.total,
            "counts": self.counts(),
            "duration_ms": self.duration_ms,
            "failures": [
                {"resource_id": r.resource_id, "outcome": r.outcome.value, "error": r.error_detail}
                for r in self.failures
            ],
            "records": [r.model_dump(mode="json") for r in self.records],
        }


def summarize(
    records: list[ExecutionRecord],
    *,
    operation_id: str = "",
    manifest_name: str = "",
    duration_ms: int = 0,
    dry_run: bool = False,
) -> Summary:
    """Aggregate records into a Summary."""
    return Summary(
        operation_id=operation_id,
        manifest_name=manifest_name,
        dry_run=dry_run,
        duration_ms=duration_ms,
        records=list(records),
    )


def format_record(record: ExecutionRecord) -> str:
    """One execution-log line: resource, verb, outcome and detail."""
    line = f"{record.resource_id} {record.verb.value} → {record.outcome.value}"
    detail = record.error_detail or record.detail
    if detail:
        line += f": {detail}"
    if record.attempts > 1:
        line += f" (after {record.attempts} attempts)"
    return line


def format_duration(ms: int) -> str:
    if ms < 1000:
        return f"{ms}ms"
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, seconds = divmod(int(seconds), 60)
    return f"{minutes}m{seconds:02d}s"
