"""
Driver registry — central lookup for resource drivers.

The planner and executor never instantiate drivers themselves: they
resolve a declaration's kind through the registry.
"""

from __future__ import annotations

import logging
from typing import Any

from converge.adapters.network.fetch import Fetcher, UrlFetcher
from converge.adapters.packages.apt import AptPackageManager, PackageManager
from converge.adapters.shell.command import CommandRunner
from converge.core.config.settings import Settings
from converge.core.errors import UnknownKindError
from converge.drivers.base import Driver

logger = logging.getLogger(__name__)


class DriverRegistry:
    """Registry of drivers keyed by kind."""

    def __init__(self) -> None:
        self._drivers: dict[str, Driver] = {}

    def register(self, driver: Driver) -> None:
        """Register a driver, replacing any previous one for the same kind."""
        kind = driver.kind
        if kind in self._drivers:
            logger.warning("Overwriting existing driver: %s", kind)
        self._drivers[kind] = driver
        logger.debug("Registered driver: %s", kind)

    def unregister(self, kind: str) -> None:
        """Remove a driver from the registry."""
        self._drivers.pop(kind, None)

    def get(self, kind: str) -> Driver | None:
        """Look up a driver by kind."""
        return self._drivers.get(kind)

    def require(self, kind: str) -> Driver:
        """Look up a driver, raising ``UnknownKindError`` when missing."""
        driver = self._drivers.get(kind)
        if driver is None:
            raise UnknownKindError(
                f"No driver registered for kind '{kind}'. "
                f"Known kinds: {', '.join(sorted(self._drivers))}"
            )
        return driver

    def kinds(self) -> list[str]:
        """All registered kinds."""
        return list(self._drivers)

    def describe(self) -> list[dict[str, Any]]:
        """Kind, network and lock flags of every registered driver."""
        return [d.describe() for d in self._drivers.values()]

    def __contains__(self, kind: str) -> bool:
        return kind in self._drivers


def default_registry(
    settings: Settings | None = None,
    *,
    runner: CommandRunner | None = None,
    packages: PackageManager | None = None,
    fetcher: Fetcher | None = None,
) -> DriverRegistry:
    """Build a registry with every built-in driver wired to real collaborators.

    Any collaborator can be overridden (tests pass the mocks).
    """
    from converge.drivers.apt_repository import AptRepositoryDriver
    from converge.drivers.command import CommandDriver
    from converge.drivers.downloaded_file import DownloadedFileDriver
    from converge.drivers.firewall import FirewallDriver
    from converge.drivers.flatpak import FlatpakDriver
    from converge.drivers.package import PackageDriver
    from converge.drivers.service_enable import ServiceEnableDriver
    from converge.drivers.shell_rc_line import ShellRcLineDriver
    from converge.drivers.snap import SnapDriver
    from converge.drivers.symlink import SymlinkDriver
    from converge.drivers.user_group import UserGroupMembershipDriver

    settings = settings or Settings()
    runner = runner or CommandRunner(use_sudo=settings.use_sudo, timeout=settings.command_timeout)
    packages = packages or AptPackageManager(runner)
    fetcher = fetcher or UrlFetcher(timeout=settings.fetch_timeout)

    registry = DriverRegistry()
    registry.register(PackageDriver(packages))
    registry.register(AptRepositoryDriver(runner, packages, fetcher))
    registry.register(DownloadedFileDriver(fetcher, runner))
    registry.register(SymlinkDriver(runner))
    registry.register(ShellRcLineDriver())
    registry.register(UserGroupMembershipDriver(runner))
    registry.register(ServiceEnableDriver(runner))
    registry.register(CommandDriver(runner))
    registry.register(FlatpakDriver(runner))
    registry.register(SnapDriver(runner))
    registry.register(FirewallDriver(runner))
    return registry
