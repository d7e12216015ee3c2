"""
Symlink driver.

Parameters:
    target: What the link points to (required).
    path: The link itself; defaults to the resource name.

An existing regular file or directory at the link path is never
replaced.
"""

from __future__ import annotations

import os
from pathlib import Path

from converge.adapters.shell.command import CommandRunner
from converge.adapters.shell.filesystem import expand_path, symlink_atomic
from converge.core.errors import ExecutionError
from converge.core.models.action import Verb
from converge.core.models.record import ProbeResult
from converge.core.models.resource import ResourceDeclaration
from converge.drivers.base import Driver


class SymlinkDriver(Driver):
    required = ("target",)

    def __init__(self, runner: CommandRunner | None = None):
        self._runner = runner

    @property
    def kind(self) -> str:
        return "symlink"

    def inspect(self, decl: ResourceDeclaration) -> ProbeResult:
        link = self._link(decl)
        if link.is_symlink():
            return self.present(decl, observed=os.readlink(link))
        if link.exists():
            return self.present(decl, detail="not a symlink")
        return self.absent(decl, f"{link} missing")

    def plan_action(self, decl: ResourceDeclaration, current: ProbeResult) -> tuple[Verb, str]:
        target = self._target(decl)
        if not current.present:
            return Verb.CREATE, f"link to {target}"
        if current.observed is None:
            return Verb.UPDATE, f"{self._link(decl)} exists and is not a symlink"
        if current.observed == target:
            return Verb.SKIP, f"points to {target}"
        return Verb.UPDATE, f"points to {current.observed}, want {target}"

    def converge(self, decl: ResourceDeclaration, verb: Verb, current: ProbeResult) -> str:
        link = self._link(decl)
        if link.exists() and not link.is_symlink():
            raise ExecutionError(f"Refusing to replace {link}: not a symlink")
        target = self._target(decl)
        symlink_atomic(link, target, self._runner)
        return f"{link} -> {target}"

    @staticmethod
    def _link(decl: ResourceDeclaration) -> Path:
        return expand_path(decl.param("path") or decl.name)

    @staticmethod
    def _target(decl: ResourceDeclaration) -> str:
        return str(expand_path(decl.param("target")))
