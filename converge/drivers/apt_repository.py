"""
APT repository driver — archive components and third-party sources.

Two forms:

    # enable an archive component
    - kind: apt-repository
      name: multiverse
      parameters: {component: multiverse}

    # add a signed third-party source
    - kind: apt-repository
      name: vscode
      parameters:
        source: "deb [arch=amd64 signed-by=/etc/apt/keyrings/packages.microsoft.gpg] https://packages.microsoft.com/repos/code stable main"
        key_url: https://packages.microsoft.com/keys/microsoft.asc
        keyring: /etc/apt/keyrings/packages.microsoft.gpg

A source is written to ``<sources_dir>/<name>.list`` (``sources_dir``
defaults to ``/etc/apt/sources.list.d``). After any change the package
index is refreshed; a failed refresh counts as transient and takes the
source entry back out, so a retry writes it and refreshes again.
"""

from __future__ import annotations

import logging
from pathlib import Path

from converge.adapters.network.fetch import Fetcher
from converge.adapters.packages.apt import DEFAULT_SOURCES, AptPackageManager, PackageManager
from converge.adapters.shell.command import CommandRunner
from converge.adapters.shell.filesystem import (
    dearmor,
    digest_bytes,
    expand_path,
    remove_file,
    sha256_file,
    write_atomic,
)
from converge.core.errors import ExecutionError, TransientExecutionError
from converge.core.models.action import Verb
from converge.core.models.record import ProbeResult
from converge.core.models.resource import ResourceDeclaration
from converge.drivers.base import Driver

logger = logging.getLogger(__name__)

DEFAULT_SOURCES_DIR = "/etc/apt/sources.list.d"


class AptRepositoryDriver(Driver):
    """Register apt repositories and keep the index in step."""

    network = True
    lock = "apt"

    def __init__(self, runner: CommandRunner, packages: PackageManager, fetcher: Fetcher):
        self._runner = runner
        self._packages = packages
        self._fetcher = fetcher

    @property
    def kind(self) -> str:
        return "apt-repository"

    def validate(self, decl: ResourceDeclaration) -> list[str]:
        errors = super().validate(decl)
        has_component = bool(decl.param("component"))
        has_source = bool(decl.param("source"))
        if has_component == has_source:
            errors.append(f"{decl.id}: exactly one of 'component' or 'source' is required")
        if bool(decl.param("key_url")) != bool(decl.param("keyring")):
            errors.append(f"{decl.id}: 'key_url' and 'keyring' go together")
        if has_source and not decl.param("source").startswith(("deb ", "deb-src ")):
            errors.append(f"{decl.id}: 'source' must be a one-line 'deb ...' entry")
        return errors

    # ── Probe ────────────────────────────────────────────────────

    def inspect(self, decl: ResourceDeclaration) -> ProbeResult:
        component = decl.param("component")
        if component:
            if self._has_component(decl, component):
                return self.present(decl, observed=component)
            return self.absent(decl, f"component '{component}' not enabled")

        list_file = self._list_file(decl)
        if not list_file.is_file():
            return self.absent(decl, f"{list_file} missing")
        if decl.param("keyring") and not expand_path(decl.param("keyring")).is_file():
            return self.absent(decl, f"keyring {decl.param('keyring')} missing")
        return self.present(decl, observed=sha256_file(list_file))

    def plan_action(self, decl: ResourceDeclaration, current: ProbeResult) -> tuple[Verb, str]:
        if not current.present:
            return Verb.CREATE, current.detail or "not registered"
        if decl.param("component"):
            return Verb.SKIP, f"component '{current.observed}' enabled"
        if current.observed != digest_bytes(self._source_content(decl)):
            return Verb.UPDATE, "source entry differs"
        return Verb.SKIP, "source registered"

    # ── Apply ────────────────────────────────────────────────────

    def converge(self, decl: ResourceDeclaration, verb: Verb, current: ProbeResult) -> str:
        component = decl.param("component")
        if component:
            result = self._add_component(component)
            if not result.ok:
                raise ExecutionError(result.summary())
            return f"enabled component {component}"

        if decl.param("key_url"):
            key = dearmor(self._fetcher.fetch(decl.param("key_url")))
            write_atomic(expand_path(decl.param("keyring")), key, 0o644, self._runner)

        list_file = self._list_file(decl)
        content = self._source_content(decl)
        previous = list_file.read_bytes() if list_file.is_file() else None
        write_atomic(list_file, content, 0o644, self._runner)

        refreshed = self._packages.refresh_index(force=True)
        if refreshed is not None and not refreshed.ok:
            self._unregister(list_file, previous, content)
            raise TransientExecutionError(f"index refresh failed: {refreshed.summary()}")
        return f"registered {list_file}"

    # ── Helpers ──────────────────────────────────────────────────

    def _list_file(self, decl: ResourceDeclaration) -> Path:
        return expand_path(decl.param("sources_dir", DEFAULT_SOURCES_DIR)) / f"{decl.name}.list"

    def _unregister(self, list_file: Path, previous: bytes | None, content: bytes) -> None:
        """Undo the source entry after a failed refresh.

        A registered source only counts once the index has picked it
        up, so the entry must not satisfy the next probe.
        """
        if previous is None or previous == content:
            remove_file(list_file, self._runner)
        else:
            write_atomic(list_file, previous, 0o644, self._runner)
        logger.info("Rolled back %s after a failed index refresh", list_file)

    @staticmethod
    def _source_content(decl: ResourceDeclaration) -> bytes:
        return (decl.param("source").strip() + "\n").encode("utf-8")

    def _has_component(self, decl: ResourceDeclaration, component: str) -> bool:
        if isinstance(self._packages, AptPackageManager):
            sources = DEFAULT_SOURCES
            if decl.param("sources_dir"):
                sources = (expand_path(decl.param("sources_dir")),)
            return self._packages.has_component(component, sources)
        result = self._runner.shell(
            f"grep -rqsw -- {component} /etc/apt/sources.list /etc/apt/sources.list.d"
        )
        return result.ok

    def _add_component(self, component: str):
        if isinstance(self._packages, AptPackageManager):
            return self._packages.add_component(component)
        return self._runner.run(["add-apt-repository", "-y", component], privileged=True)
