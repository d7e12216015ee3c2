"""
Tests for the reporter — counts, status, exit codes and formatting.
"""

import pytest

from converge.core.engine.reporter import (
    EXIT_FAILED,
    EXIT_OK,
    format_duration,
    format_record,
    summarize,
)
from converge.core.models.action import Verb
from converge.core.models.record import ExecutionRecord, Outcome


def record(rid: str, outcome: Outcome, **kwargs) -> ExecutionRecord:
    return ExecutionRecord(resource_id=rid, verb=Verb.INSTALL, outcome=outcome, **kwargs)


class TestSummary:
    def test_all_succeeded(self):
        s = summarize([record("package:a", Outcome.SUCCEEDED), record("package:b", Outcome.SKIPPED)])
        assert s.total == 2
        assert s.succeeded == 1
        assert s.skipped == 1
        assert s.failures == []
        assert s.status == "ok"
        assert s.exit_code == EXIT_OK

    def test_empty_run_is_ok(self):
        s = summarize([])
        assert s.status == "ok"
        assert s.exit_code == EXIT_OK

    def test_partial(self):
        s = summarize([
            record("package:a", Outcome.FAILED, error_detail="boom"),
            record("package:b", Outcome.DEPENDENCY_FAILED),
            record("package:c", Outcome.SUCCEEDED),
        ])
        assert s.failed == 1
        assert s.dependency_failed == 1
        assert [r.resource_id for r in s.failures] == ["package:a", "package:b"]
        assert s.status == "partial"
        assert s.exit_code == EXIT_FAILED

    def test_all_failed(self):
        s = summarize([record("package:a", Outcome.FAILED)])
        assert s.status == "failed"
        assert s.exit_code == EXIT_FAILED

    def test_dependency_failure_alone_fails_the_run(self):
        s = summarize([record("package:b", Outcome.DEPENDENCY_FAILED)])
        assert s.exit_code == EXIT_FAILED

    def test_cancelled(self):
        s = summarize([
            record("package:a", Outcome.SUCCEEDED),
            record("package:b", Outcome.CANCELLED),
        ])
        assert s.cancelled == 1
        assert s.status == "cancelled"
        assert s.exit_code == EXIT_FAILED

    def test_counts_cover_every_outcome(self):
        counts = summarize([record("package:a", Outcome.SUCCEEDED)]).counts()
        assert set(counts) == {o.value for o in Outcome}
        assert counts["succeeded"] == 1
        assert counts["skipped-due-to-dependency-failure"] == 0

    def test_to_dict(self):
        s = summarize(
            [record("package:a", Outcome.FAILED, error_detail="E: nope")],
            operation_id="op-1",
            manifest_name="laptop",
            duration_ms=1500,
            dry_run=True,
        )
        data = s.to_dict()
        assert data["operation_id"] == "op-1"
        assert data["manifest"] == "laptop"
        assert data["dry_run"] is True
        assert data["status"] == "failed"
        assert data["failures"] == [
            {"resource_id": "package:a", "outcome": "failed", "error": "E: nope"}
        ]
        assert data["records"][0]["verb"] == "install"


class TestFormatting:
    def test_record_line(self):
        line = format_record(record("package:git", Outcome.SUCCEEDED, detail="git 2.43"))
        assert line == "package:git install → succeeded: git 2.43"

    def test_error_preferred_over_detail(self):
        line = format_record(record("package:a", Outcome.FAILED, detail="x", error_detail="boom"))
        assert line.endswith("failed: boom")

    def test_attempts_shown_after_retries(self):
        line = format_record(record("downloaded-file:/f", Outcome.FAILED, error_detail="timeout", attempts=4))
        assert line.endswith("(after 4 attempts)")

    def test_no_detail(self):
        assert format_record(record("package:a", Outcome.CANCELLED)) == "package:a install → cancelled"

    @pytest.mark.parametrize("ms,expected", [
        (0, "0ms"),
        (999, "999ms"),
        (1500, "1.5s"),
        (61_000, "1m01s"),
        (600_000, "10m00s"),
    ])
    def test_duration(self, ms, expected):
        assert format_duration(ms) == expected
