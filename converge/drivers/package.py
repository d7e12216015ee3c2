"""
Package driver — system packages through the package manager.

Parameters:
    version: Desired version, or ``any`` (default). A prefix on a
        version boundary matches: ``1.2`` is satisfied by ``1.2.3-1``.
    reinstall: ``true`` to reinstall on every run, even when the
        desired version is present. Opt-in per resource.
"""

from __future__ import annotations

from converge.adapters.packages.apt import PackageManager
from converge.core.errors import ExecutionError
from converge.core.models.action import Verb
from converge.core.models.record import ProbeResult
from converge.core.models.resource import ResourceDeclaration
from converge.drivers.base import Driver

ANY_VERSION = "any"

_VERSION_BOUNDARIES = ".-+~:"


def version_matches(observed: str, desired: str) -> bool:
    """Whether an installed version satisfies a desired one."""
    if desired == ANY_VERSION or observed == desired:
        return True
    if ":" in observed and ":" not in desired:
        observed = observed.split(":", 1)[1]  # drop the epoch
    if observed == desired:
        return True
    return (
        observed.startswith(desired)
        and len(observed) > len(desired)
        and observed[len(desired)] in _VERSION_BOUNDARIES
    )


class PackageDriver(Driver):
    """Install packages; skip when the desired version is already there."""

    lock = "apt"

    def __init__(self, packages: PackageManager):
        self._packages = packages
        self.lock = packages.name

    @property
    def kind(self) -> str:
        return "package"

    def inspect(self, decl: ResourceDeclaration) -> ProbeResult:
        version = self._packages.query(decl.name)
        if version is None:
            return self.absent(decl, "not installed")
        return self.present(decl, observed=version)

    def plan_action(self, decl: ResourceDeclaration, current: ProbeResult) -> tuple[Verb, str]:
        desired = decl.param("version", ANY_VERSION)

        if decl.flag("reinstall"):
            if current.present:
                return Verb.REINSTALL, f"reinstall requested (installed {current.observed})"
            return Verb.INSTALL, "not installed"

        if not current.present:
            return Verb.INSTALL, current.detail or "not installed"

        observed = current.observed or ""
        if version_matches(observed, desired):
            return Verb.SKIP, f"installed {observed}"
        return Verb.INSTALL, f"installed {observed}, want {desired}"

    def converge(self, decl: ResourceDeclaration, verb: Verb, current: ProbeResult) -> str:
        desired = decl.param("version", ANY_VERSION)
        pin = None if desired == ANY_VERSION else desired

        result = self._packages.install(decl.name, pin, reinstall=verb == Verb.REINSTALL)
        if not result.ok:
            raise ExecutionError(result.summary())

        installed = self._packages.query(decl.name)
        return f"{decl.name} {installed or pin or ''}".strip()
