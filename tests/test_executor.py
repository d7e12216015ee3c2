"""
Tests for the executor — ordering, failure propagation, retries,
locking, dry-run and cancellation.
"""

import threading
import time

import pytest

from conftest import decl, manifest_of
from converge.adapters.mock import MockPackageManager
from converge.core.config.settings import Settings
from converge.core.engine.executor import Executor, generate_operation_id
from converge.core.engine.planner import build_plan
from converge.core.engine.reporter import summarize
from converge.core.errors import TransientExecutionError
from converge.core.models.action import Verb
from converge.core.models.record import Outcome
from converge.core.reliability.retry import RetryPolicy
from converge.drivers.base import Driver
from converge.drivers.registry import default_registry

URL = "https://example.invalid/tool.tar.gz"


class FlakyDriver(Driver):
    """Fails transiently ``failures`` times, then succeeds."""

    def __init__(self, kind: str, failures: int, network: bool):
        self._kind = kind
        self.network = network
        self.remaining = failures
        self.calls = 0

    @property
    def kind(self) -> str:
        return self._kind

    def inspect(self, decl):
        return self.absent(decl, "never present")

    def plan_action(self, decl, current):
        return Verb.CREATE, "flaky"

    def converge(self, decl, verb, current):
        self.calls += 1
        if self.remaining > 0:
            self.remaining -= 1
            raise TransientExecutionError("connection reset")
        return "done"


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture
def retry(sleeps) -> RetryPolicy:
    return RetryPolicy(max_retries=3, base_delay=1.0, max_delay=30.0, jitter=0, sleep=sleeps.append)


def execute(manifest, registry, **kwargs):
    plan = build_plan(manifest, registry)
    kwargs.setdefault("retry", RetryPolicy(jitter=0, sleep=lambda _: None))
    return Executor(registry, **kwargs).execute(plan, manifest)


def outcomes(records) -> dict:
    return {r.resource_id: r.outcome for r in records}


# ── Basic runs ───────────────────────────────────────────────────────


class TestSequential:
    def test_two_packages_succeed(self, registry, packages):
        m = manifest_of(
            decl("package", "A"),
            decl("package", "B", depends_on=["package:A"]),
        )
        records = execute(m, registry)

        assert [r.resource_id for r in records] == ["package:A", "package:B"]
        assert all(r.outcome == Outcome.SUCCEEDED for r in records)
        assert [c[0] for c in packages.install_calls] == ["A", "B"]
        assert summarize(records).exit_code == 0

    def test_second_run_skips_everything(self, registry, packages):
        m = manifest_of(decl("package", "A"), decl("package", "B"))
        execute(m, registry)
        packages.install_calls.clear()

        records = execute(m, registry)
        assert all(r.outcome == Outcome.SKIPPED for r in records)
        assert packages.install_calls == []

    def test_failure_skips_dependent(self, registry, packages):
        packages.set_failure("A")
        m = manifest_of(
            decl("package", "A"),
            decl("package", "B", depends_on=["package:A"]),
        )
        records = execute(m, registry)

        assert outcomes(records) == {
            "package:A": Outcome.FAILED,
            "package:B": Outcome.DEPENDENCY_FAILED,
        }
        assert "Unable to locate package" in records[0].error_detail
        assert "package:A" in records[1].error_detail
        assert [c[0] for c in packages.install_calls] == ["A"]
        assert summarize(records).exit_code == 1

    def test_failure_is_isolated(self, registry, packages):
        packages.set_failure("broken")
        m = manifest_of(
            decl("package", "broken"),
            decl("package", "fine"),
            decl("package", "also-fine", depends_on=["package:fine"]),
        )
        records = execute(m, registry)
        assert outcomes(records) == {
            "package:broken": Outcome.FAILED,
            "package:fine": Outcome.SUCCEEDED,
            "package:also-fine": Outcome.SUCCEEDED,
        }

    def test_failure_propagates_transitively(self, registry, packages):
        packages.set_failure("a")
        m = manifest_of(
            decl("package", "a"),
            decl("package", "b", depends_on=["package:a"]),
            decl("package", "c", depends_on=["package:b"]),
        )
        records = execute(m, registry)
        assert records[2].outcome == Outcome.DEPENDENCY_FAILED
        assert "package:b" in records[2].error_detail
        assert [c[0] for c in packages.install_calls] == ["a"]

    def test_skipped_dependency_lets_dependents_run(self, registry, packages):
        packages.installed["a"] = "1.0"
        m = manifest_of(
            decl("package", "a"),
            decl("package", "b", depends_on=["package:a"]),
        )
        records = execute(m, registry)
        assert outcomes(records) == {"package:a": Outcome.SKIPPED, "package:b": Outcome.SUCCEEDED}

    def test_rationale_kept_on_skip(self, registry, packages):
        packages.installed["git"] = "2.43"
        records = execute(manifest_of(decl("package", "git")), registry)
        assert records[0].detail == "installed 2.43"

    def test_recheck_at_apply_time(self, registry, packages):
        m = manifest_of(decl("package", "A"))
        plan = build_plan(m, registry)
        assert plan.actions[0].verb == Verb.INSTALL

        packages.installed["A"] = "1.0"
        records = Executor(registry).execute(plan, m)

        assert records[0].outcome == Outcome.SKIPPED
        assert "already satisfied at apply time" in records[0].detail
        assert packages.install_calls == []

    def test_records_callback(self, registry):
        seen = []
        m = manifest_of(decl("package", "a"), decl("package", "b"))
        execute(m, registry, on_record=seen.append)
        assert [r.resource_id for r in seen] == ["package:a", "package:b"]


# ── Retries ──────────────────────────────────────────────────────────


class TestRetry:
    def test_always_transient_download_gets_four_attempts(self, registry, fetcher, retry, sleeps, tmp_path):
        fetcher.responses[URL] = b"payload"
        fetcher.transient_failures[URL] = 100
        m = manifest_of(decl("downloaded-file", str(tmp_path / "tool"), url=URL))

        records = execute(m, registry, retry=retry)

        assert records[0].outcome == Outcome.FAILED
        assert records[0].attempts == 4
        assert fetcher.call_count(URL) == 4
        assert sleeps == [1.0, 2.0, 4.0]
        assert not (tmp_path / "tool").exists()

    def test_transient_then_success(self, registry, fetcher, retry, sleeps, tmp_path):
        fetcher.responses[URL] = b"payload"
        fetcher.transient_failures[URL] = 2
        m = manifest_of(decl("downloaded-file", str(tmp_path / "tool"), url=URL))

        records = execute(m, registry, retry=retry)

        assert records[0].outcome == Outcome.SUCCEEDED
        assert records[0].attempts == 3
        assert len(sleeps) == 2
        assert (tmp_path / "tool").read_bytes() == b"payload"

    def test_integrity_failure_not_retried(self, registry, fetcher, retry, sleeps, tmp_path):
        fetcher.responses[URL] = b"tampered"
        m = manifest_of(decl(
            "downloaded-file", str(tmp_path / "tool"), url=URL, checksum="sha256:" + "0" * 64,
        ))

        records = execute(m, registry, retry=retry)

        assert records[0].outcome == Outcome.FAILED
        assert records[0].attempts == 1
        assert "mismatch" in records[0].error_detail
        assert sleeps == []
        assert not (tmp_path / "tool").exists()

    def test_permanent_failure_not_retried(self, registry, fetcher, retry, sleeps, tmp_path):
        m = manifest_of(decl("downloaded-file", str(tmp_path / "tool"), url=URL))
        records = execute(m, registry, retry=retry)
        assert records[0].attempts == 1
        assert "404" in records[0].error_detail
        assert sleeps == []

    def test_non_network_kind_not_retried(self, registry, retry, sleeps):
        flaky = FlakyDriver("flaky", failures=5, network=False)
        registry.register(flaky)
        records = execute(manifest_of(decl("flaky", "x")), registry, retry=retry)
        assert records[0].outcome == Outcome.FAILED
        assert records[0].attempts == 1
        assert flaky.calls == 1
        assert sleeps == []

    def test_network_kind_retried(self, registry, retry):
        flaky = FlakyDriver("flaky", failures=1, network=True)
        registry.register(flaky)
        records = execute(manifest_of(decl("flaky", "x")), registry, retry=retry)
        assert records[0].outcome == Outcome.SUCCEEDED
        assert records[0].attempts == 2

    def test_failing_index_refresh_retried_then_failed(self, registry, packages, retry, sleeps, tmp_path):
        packages.refresh_returncode = 100
        m = manifest_of(
            decl("apt-repository", "example", source="deb https://example.invalid/repo stable main",
                 sources_dir=str(tmp_path)),
            decl("package", "example-tool", depends_on=["apt-repository:example"]),
        )

        records = execute(m, registry, retry=retry)

        assert outcomes(records) == {
            "apt-repository:example": Outcome.FAILED,
            "package:example-tool": Outcome.DEPENDENCY_FAILED,
        }
        assert records[0].attempts == 4
        assert packages.refresh_calls == 4
        assert sleeps == [1.0, 2.0, 4.0]
        assert "index refresh failed" in records[0].error_detail
        assert not (tmp_path / "example.list").exists()
        assert summarize(records).exit_code == 1

    def test_index_refresh_recovers_on_retry(self, registry, packages, retry, tmp_path):
        packages.refresh_returncode = 100
        original = packages.refresh_index

        def refresh(force=False):
            result = original(force)
            packages.refresh_returncode = 0
            return result

        packages.refresh_index = refresh
        m = manifest_of(decl("apt-repository", "example", source="deb https://example.invalid/repo stable main",
                             sources_dir=str(tmp_path)))

        records = execute(m, registry, retry=retry)

        assert records[0].outcome == Outcome.SUCCEEDED
        assert records[0].attempts == 2
        assert packages.refresh_calls == 2
        assert (tmp_path / "example.list").is_file()

    def test_retries_disabled(self, registry, fetcher, sleeps, tmp_path):
        fetcher.transient_failures[URL] = 100
        m = manifest_of(decl("downloaded-file", str(tmp_path / "tool"), url=URL))
        records = execute(m, registry, retry=RetryPolicy(max_retries=0, sleep=sleeps.append))
        assert records[0].attempts == 1
        assert fetcher.call_count() == 1


# ── Dry run and cancellation ─────────────────────────────────────────


class TestDryRun:
    def test_nothing_applied(self, registry, packages, tmp_path):
        m = manifest_of(
            decl("package", "A"),
            decl("symlink", str(tmp_path / "link"), target="/usr/bin/true"),
        )
        records = execute(m, registry, dry_run=True)

        assert all(r.outcome == Outcome.SKIPPED for r in records)
        assert records[0].detail.startswith("[dry-run] would install")
        assert packages.install_calls == []
        assert not (tmp_path / "link").is_symlink()

    def test_dry_run_ignores_parallelism(self, registry, packages):
        m = manifest_of(*(decl("package", n) for n in "abc"))
        records = execute(m, registry, dry_run=True, parallelism=4)
        assert [r.resource_id for r in records] == ["package:a", "package:b", "package:c"]
        assert packages.install_calls == []


class TestCancellation:
    def test_cancel_between_actions(self, registry, packages):
        cancel = threading.Event()

        def stop_after_first(record):
            cancel.set()

        m = manifest_of(decl("package", "a"), decl("package", "b"), decl("package", "c"))
        executor = Executor(registry, cancel_event=cancel, on_record=stop_after_first)
        records = executor.execute(build_plan(m, registry), m)

        assert outcomes(records) == {
            "package:a": Outcome.SUCCEEDED,
            "package:b": Outcome.CANCELLED,
            "package:c": Outcome.CANCELLED,
        }
        assert executor.cancelled
        assert [c[0] for c in packages.install_calls] == ["a"]
        assert summarize(records).status == "cancelled"
        assert summarize(records).exit_code == 1

    def test_cancelled_before_start(self, registry, packages):
        cancel = threading.Event()
        cancel.set()
        m = manifest_of(decl("package", "a"))
        records = Executor(registry, cancel_event=cancel).execute(build_plan(m, registry), m)
        assert records[0].outcome == Outcome.CANCELLED
        assert packages.install_calls == []

    def test_cancel_in_pool(self, registry, packages):
        cancel = threading.Event()
        m = manifest_of(*(decl("package", n) for n in "abcd"))
        executor = Executor(registry, parallelism=2, cancel_event=cancel, on_record=lambda r: cancel.set())
        records = executor.execute(build_plan(m, registry), m)

        assert records[0].outcome == Outcome.SUCCEEDED
        assert all(r.outcome == Outcome.CANCELLED for r in records[1:])


# ── Worker pool ──────────────────────────────────────────────────────


class CountingPackageManager(MockPackageManager):
    """Tracks how many installs are in flight at once."""

    def __init__(self):
        super().__init__()
        self.active = 0
        self.max_active = 0
        self._count_lock = threading.Lock()

    def install(self, package, version=None, reinstall=False):
        with self._count_lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(0.01)
        try:
            return super().install(package, version, reinstall)
        finally:
            with self._count_lock:
                self.active -= 1


class TestPool:
    @pytest.fixture
    def counting(self, runner, fetcher):
        packages = CountingPackageManager()
        registry = default_registry(
            Settings(use_sudo=False), runner=runner, packages=packages, fetcher=fetcher,
        )
        return packages, registry

    def test_package_manager_never_concurrent(self, counting):
        packages, registry = counting
        m = manifest_of(*(decl("package", f"p{i}") for i in range(6)))
        records = execute(m, registry, parallelism=4)

        assert all(r.outcome == Outcome.SUCCEEDED for r in records)
        assert packages.max_active == 1

    def test_records_in_plan_order(self, counting, tmp_path):
        _, registry = counting
        m = manifest_of(
            decl("package", "a"),
            decl("symlink", str(tmp_path / "l1"), target="/t1"),
            decl("symlink", str(tmp_path / "l2"), target="/t2", depends_on=["package:a"]),
            decl("shell-rc-line", "rc", line="export X=1", file=str(tmp_path / ".zshrc")),
        )
        records = execute(m, registry, parallelism=3)
        assert [r.resource_id for r in records] == m.ids
        assert all(r.outcome == Outcome.SUCCEEDED for r in records)
        assert (tmp_path / "l2").is_symlink()

    def test_dependency_failure_in_pool(self, counting, tmp_path):
        packages, registry = counting
        packages.set_failure("a")
        m = manifest_of(
            decl("package", "a"),
            decl("symlink", str(tmp_path / "l"), target="/t", depends_on=["package:a"]),
            decl("shell-rc-line", "rc", line="x", file=str(tmp_path / ".rc"),
                 depends_on=[f"symlink:{tmp_path / 'l'}"]),
            decl("package", "b"),
        )
        records = execute(m, registry, parallelism=4)
        assert [r.outcome for r in records] == [
            Outcome.FAILED,
            Outcome.DEPENDENCY_FAILED,
            Outcome.DEPENDENCY_FAILED,
            Outcome.SUCCEEDED,
        ]
        assert not (tmp_path / "l").exists()

    def test_dependencies_finish_first(self, counting):
        packages, registry = counting
        m = manifest_of(
            decl("package", "c", depends_on=["package:b"]),
            decl("package", "b", depends_on=["package:a"]),
            decl("package", "a"),
        )
        execute(m, registry, parallelism=3)
        assert [c[0] for c in packages.install_calls] == ["a", "b", "c"]


class TestOperationId:
    def test_format(self):
        op = generate_operation_id()
        assert op.startswith("op-")
        assert len(op.split("-")) == 4

    def test_unique(self):
        assert generate_operation_id() != generate_operation_id()
