"""
APT package manager binding.

The engine depends only on the ``PackageManager`` contract:
``query(name)`` returns the installed version (or None) and
``install(name, version, reinstall)`` returns a command result. The apt
implementation also refreshes the package index lazily (once per run,
before the first install) and after a repository is added.

Callers hold the process-wide ``apt`` lock around every call; this
class does no locking of its own.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from converge.adapters.shell.command import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

_APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}

DEFAULT_SOURCES = (Path("/etc/apt/sources.list"), Path("/etc/apt/sources.list.d"))


class PackageManager(ABC):
    """Contract between package drivers and a system package manager."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Manager identifier (also the lock name)."""

    @abstractmethod
    def query(self, package: str) -> str | None:
        """Installed version of ``package``, or None when absent."""

    @abstractmethod
    def install(
        self,
        package: str,
        version: str | None = None,
        reinstall: bool = False,
    ) -> CommandResult:
        """Install (or reinstall) a package, optionally pinned to a version."""

    @abstractmethod
    def refresh_index(self, force: bool = False) -> CommandResult | None:
        """Update the package index. Returns None when already fresh."""


class AptPackageManager(PackageManager):
    """``dpkg-query`` for probing, ``apt-get`` for changes."""

    def __init__(self, runner: CommandRunner):
        self._runner = runner
        self._index_fresh = False

    @property
    def name(self) -> str:
        return "apt"

    def query(self, package: str) -> str | None:
        result = self._runner.run(
            ["dpkg-query", "-W", "-f=${Status}\t${Version}", package],
            timeout=60,
        )
        if not result.ok:
            return None
        status, _, version = result.stdout.strip().partition("\t")
        if not status.endswith(" installed"):
            return None
        return version or None

    def install(
        self,
        package: str,
        version: str | None = None,
        reinstall: bool = False,
    ) -> CommandResult:
        if not self._index_fresh:
            refreshed = self.refresh_index()
            if refreshed is not None and not refreshed.ok:
                return refreshed

        target = f"{package}={version}" if version else package
        cmd = ["apt-get", "install", "-y"]
        if reinstall:
            cmd.append("--reinstall")
        cmd.append(target)

        logger.info("apt-get install %s%s", target, " (reinstall)" if reinstall else "")
        return self._runner.run(cmd, privileged=True, env=_APT_ENV)

    def refresh_index(self, force: bool = False) -> CommandResult | None:
        if self._index_fresh and not force:
            return None
        logger.info("Refreshing apt package index")
        result = self._runner.run(["apt-get", "update"], privileged=True, env=_APT_ENV)
        self._index_fresh = result.ok
        return result

    def add_component(self, component: str) -> CommandResult:
        """Enable an archive component (``multiverse``, ``universe``)."""
        result = self._runner.run(
            ["add-apt-repository", "-y", component],
            privileged=True,
            env=_APT_ENV,
        )
        if result.ok:
            # add-apt-repository refreshes the index itself
            self._index_fresh = True
        return result

    def has_component(
        self,
        component: str,
        sources: tuple[Path, ...] = DEFAULT_SOURCES,
    ) -> bool:
        """Whether any configured source enables ``component``.

        Understands one-line ``deb`` entries and deb822 ``Components:``
        fields.
        """
        for path in _source_files(sources):
            try:
                text = path.read_text(encoding="utf-8", errors="replace")
            except OSError:
                continue
            for line in text.splitlines():
                line = line.strip()
                if line.startswith("deb ") and component in line.split()[2:]:
                    return True
                if line.startswith("Components:") and component in line.split()[1:]:
                    return True
        return False


def _source_files(sources: tuple[Path, ...]) -> list[Path]:
    files: list[Path] = []
    for source in sources:
        if source.is_dir():
            files.extend(sorted(source.glob("*.list")))
            files.extend(sorted(source.glob("*.sources")))
        elif source.is_file():
            files.append(source)
    return files
