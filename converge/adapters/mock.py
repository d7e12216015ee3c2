"""
Mock collaborators — test doubles for the package manager, fetcher and
command runner.

Used to exercise drivers and the engine without touching the machine.
Each double records its calls and can be scripted to fail.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

from converge.adapters.packages.apt import PackageManager
from converge.adapters.network.fetch import Fetcher
from converge.adapters.shell.command import CommandResult, CommandRunner
from converge.core.errors import ExecutionError, TransientExecutionError


class MockPackageManager(PackageManager):
    """In-memory package database.

    Args:
        installed: Initial ``{package: version}`` map.
        default_version: Version recorded when installing without a pin.

    Set ``refresh_returncode`` to make every index refresh fail.
    """

    def __init__(
        self,
        installed: dict[str, str] | None = None,
        default_version: str = "1.0",
    ):
        self.installed: dict[str, str] = dict(installed or {})
        self.default_version = default_version
        self.install_calls: list[tuple[str, str | None, bool]] = []
        self.refresh_calls = 0
        self.refresh_returncode = 0
        self._failures: dict[str, str] = {}
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "apt"

    def set_failure(self, package: str, error: str = "E: Unable to locate package") -> None:
        """Make every install of ``package`` fail."""
        self._failures[package] = error

    def query(self, package: str) -> str | None:
        return self.installed.get(package)

    def install(
        self,
        package: str,
        version: str | None = None,
        reinstall: bool = False,
    ) -> CommandResult:
        with self._lock:
            self.install_calls.append((package, version, reinstall))
        cmd = ("apt-get", "install", "-y", package)
        if package in self._failures:
            return CommandResult(command=cmd, returncode=100, stderr=self._failures[package])
        self.installed[package] = version or self.default_version
        return CommandResult(command=cmd, returncode=0)

    def refresh_index(self, force: bool = False) -> CommandResult | None:
        self.refresh_calls += 1
        stderr = "" if self.refresh_returncode == 0 else "E: Failed to fetch index"
        return CommandResult(command=("apt-get", "update"), returncode=self.refresh_returncode, stderr=stderr)


class MockFetcher(Fetcher):
    """Serves canned bodies by URL.

    Args:
        responses: ``{url: body}``.
        transient_failures: ``{url: n}`` — fail transiently the first n
            times (use a large n for "always").
    """

    def __init__(
        self,
        responses: dict[str, bytes] | None = None,
        transient_failures: dict[str, int] | None = None,
    ):
        self.responses = dict(responses or {})
        self.transient_failures = dict(transient_failures or {})
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def call_count(self, url: str | None = None) -> int:
        if url is None:
            return len(self.calls)
        return self.calls.count(url)

    def fetch(self, url: str) -> bytes:
        with self._lock:
            self.calls.append(url)
            remaining = self.transient_failures.get(url, 0)
            if remaining > 0:
                self.transient_failures[url] = remaining - 1
                raise TransientExecutionError(f"GET {url} failed: timed out")
        if url not in self.responses:
            raise ExecutionError(f"GET {url} failed: HTTP 404 Not Found")
        return self.responses[url]


Handler = Callable[[list[str]], CommandResult | None]


class MockRunner(CommandRunner):
    """Command runner that never spawns processes.

    Commands are matched by prefix against registered handlers or
    canned results; anything unmatched succeeds with empty output.
    """

    def __init__(self, default_returncode: int = 0):
        super().__init__(use_sudo=False)
        self.commands: list[list[str]] = []
        self._rules: list[tuple[tuple[str, ...], Handler]] = []
        self._default_returncode = default_returncode

    def on(self, prefix: list[str], returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Answer commands starting with ``prefix`` with a fixed result."""
        self.handle(
            prefix,
            lambda cmd: CommandResult(tuple(cmd), returncode, stdout=stdout, stderr=stderr),
        )

    def handle(self, prefix: list[str], handler: Handler) -> None:
        """Answer commands starting with ``prefix`` by calling ``handler``."""
        self._rules.insert(0, (tuple(prefix), handler))

    def ran(self, prefix: list[str]) -> list[list[str]]:
        """Recorded commands starting with ``prefix``."""
        n = len(prefix)
        return [c for c in self.commands if c[:n] == prefix]

    def which(self, binary: str) -> str | None:
        return f"/usr/bin/{binary}"

    def run(self, cmd: list[str], **kwargs) -> CommandResult:
        self.commands.append(list(cmd))
        for prefix, handler in self._rules:
            if tuple(cmd[: len(prefix)]) == prefix:
                result = handler(list(cmd))
                if result is not None:
                    return result
        return CommandResult(tuple(cmd), self._default_returncode)
