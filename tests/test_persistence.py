"""
Tests for persistence — state file and audit ledger.
"""

import json
import time
from pathlib import Path

from converge.core.engine.reporter import summarize
from converge.core.models.action import Verb
from converge.core.models.record import ExecutionRecord, Outcome
from converge.core.models.state import RunState
from converge.core.persistence.audit import AuditEntry, AuditWriter
from converge.core.persistence.state_file import (
    load_state,
    resolve_state_dir,
    save_state,
    state_path,
)


class TestStateFile:
    """Tests for state file persistence."""

    def test_save_and_load(self, tmp_path: Path):
        """State roundtrips through save/load."""
        path = tmp_path / ".state" / "current.json"
        state = RunState(manifest_name="laptop")
        state.set_resource_state("package:git", last_verb="install", last_outcome="succeeded")
        state.last_run.status = "ok"

        save_state(state, path)
        assert path.is_file()

        loaded = load_state(path)
        assert loaded.manifest_name == "laptop"
        assert loaded.resources["package:git"].last_outcome == "succeeded"
        assert loaded.last_run.status == "ok"

    def test_load_missing_returns_fresh(self, tmp_path: Path):
        state = load_state(tmp_path / "nonexistent.json")
        assert state.manifest_name == ""
        assert state.resources == {}

    def test_load_corrupt_returns_fresh(self, tmp_path: Path):
        path = tmp_path / "corrupt.json"
        path.write_text("not json at all {{{")
        assert load_state(path).manifest_name == ""

    def test_load_wrong_shape_returns_fresh(self, tmp_path: Path):
        path = tmp_path / "current.json"
        path.write_text(json.dumps({"resources": "nope"}))
        assert load_state(path).resources == {}

    def test_save_is_valid_json(self, tmp_path: Path):
        path = tmp_path / "state.json"
        save_state(RunState(manifest_name="json-test"), path)
        data = json.loads(path.read_text())
        assert data["manifest_name"] == "json-test"
        assert data["schema_version"] == 1

    def test_save_atomic_no_partial(self, tmp_path: Path):
        """No temp files are left behind."""
        save_state(RunState(), tmp_path / "state.json")
        assert list(tmp_path.glob(".state_*.tmp")) == []

    def test_save_updates_timestamp(self, tmp_path: Path):
        state = RunState()
        old_ts = state.updated_at
        time.sleep(0.01)
        save_state(state, tmp_path / "state.json")
        assert state.updated_at != old_ts


class TestStateDir:
    def test_default_next_to_manifest(self, tmp_path: Path):
        assert resolve_state_dir(None, tmp_path) == tmp_path / ".state"
        assert resolve_state_dir("", tmp_path) == tmp_path / ".state"

    def test_relative_is_manifest_relative(self, tmp_path: Path):
        assert resolve_state_dir("var/state", tmp_path) == tmp_path / "var" / "state"

    def test_absolute_kept(self, tmp_path: Path):
        target = tmp_path / "elsewhere"
        assert resolve_state_dir(str(target), Path("/unused")) == target

    def test_home_expanded(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        assert resolve_state_dir("~/.converge", Path("/unused")) == tmp_path / ".converge"

    def test_state_path(self, tmp_path: Path):
        assert state_path(tmp_path) == tmp_path / "current.json"


class TestAuditLedger:
    def test_write_and_read(self, tmp_state_dir: Path):
        writer = AuditWriter(tmp_state_dir)
        writer.write(AuditEntry(operation_id="op-1", status="ok", actions_total=3))
        writer.write(AuditEntry(operation_id="op-2", status="partial", errors=["package:a: boom"]))

        entries = writer.read_all()
        assert [e.operation_id for e in entries] == ["op-1", "op-2"]
        assert entries[1].errors == ["package:a: boom"]

    def test_append_only(self, tmp_state_dir: Path):
        writer = AuditWriter(tmp_state_dir)
        writer.write(AuditEntry(operation_id="op-1"))
        writer.write(AuditEntry(operation_id="op-2"))
        lines = writer.path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["operation_id"] == "op-1"

    def test_read_missing(self, tmp_path: Path):
        assert AuditWriter(tmp_path / "none").read_all() == []

    def test_corrupt_line_skipped(self, tmp_state_dir: Path):
        writer = AuditWriter(tmp_state_dir)
        writer.write(AuditEntry(operation_id="op-1"))
        with writer.path.open("a") as f:
            f.write("{broken\n\n")
        writer.write(AuditEntry(operation_id="op-2"))
        assert [e.operation_id for e in writer.read_all()] == ["op-1", "op-2"]

    def test_read_recent(self, tmp_state_dir: Path):
        writer = AuditWriter(tmp_state_dir)
        for i in range(5):
            writer.write(AuditEntry(operation_id=f"op-{i}"))
        assert [e.operation_id for e in writer.read_recent(2)] == ["op-3", "op-4"]

    def test_entry_from_summary(self, tmp_state_dir: Path):
        summary = summarize(
            [
                ExecutionRecord(resource_id="package:a", verb=Verb.INSTALL, outcome=Outcome.FAILED, error_detail="boom"),
                ExecutionRecord(resource_id="package:b", verb=Verb.INSTALL, outcome=Outcome.DEPENDENCY_FAILED,
                                error_detail="package:a failed"),
                ExecutionRecord(resource_id="symlink:x", verb=Verb.CREATE, outcome=Outcome.SUCCEEDED),
            ],
            operation_id="op-9",
            manifest_name="desk",
            duration_ms=1200,
        )
        entry = AuditEntry.from_summary(summary, ["package", "symlink"])

        assert entry.status == "partial"
        assert entry.actions_total == 3
        assert entry.counts["failed"] == 1
        assert entry.counts["skipped-due-to-dependency-failure"] == 1
        assert entry.errors == ["package:a: boom", "package:b: package:a failed"]
        assert entry.only == ["package", "symlink"]

        writer = AuditWriter(tmp_state_dir)
        writer.write(entry)
        assert writer.read_all()[0].manifest == "desk"
