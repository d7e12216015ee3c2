"""
Audit ledger — one NDJSON line per applied run, never rewritten.

Dry runs leave no entry. ``converge status`` reads the tail of the
ledger to show recent history.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from converge.core.engine.reporter import Summary

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """What one run did, in a form that survives the process."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    operation_id: str = ""
    manifest: str = ""
    dry_run: bool = False
    status: str = ""
    actions_total: int = 0
    duration_ms: int = 0
    counts: dict[str, int] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    only: list[str] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: Summary, only: list[str] | None = None) -> AuditEntry:
        return cls(
            operation_id=summary.operation_id,
            manifest=summary.manifest_name,
            dry_run=summary.dry_run,
            status=summary.status,
            actions_total=summary.total,
            duration_ms=summary.duration_ms,
            counts=summary.counts(),
            errors=[f"{r.resource_id}: {r.error_detail}" for r in summary.failures],
            only=list(only or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class AuditWriter:
    """Appends to and reads back ``<state dir>/audit.ndjson``."""

    def __init__(self, state_dir: Path):
        self._path = state_dir / DEFAULT_AUDIT_FILE

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append one entry. A failed write is logged, not raised."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")
        except OSError as e:
            logger.error("Could not append to audit ledger %s: %s", self._path, e)
            return
        logger.debug("Audited run %s (%s)", entry.operation_id, entry.status)

    def read_all(self) -> list[AuditEntry]:
        """Every readable entry, oldest first."""
        return list(self._entries())

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        """The last ``n`` entries, oldest first."""
        return list(deque(self._entries(), maxlen=n))

    def _entries(self) -> Iterator[AuditEntry]:
        if not self._path.is_file():
            return
        try:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            logger.error("Could not read audit ledger %s: %s", self._path, e)
            return
        for number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                yield AuditEntry.model_validate_json(line)
            except ValueError as e:
                logger.warning("Skipping unreadable audit line %d: %s", number, e)
