"""
Command driver — a guarded installer command.

Covers the steps that are only expressible as "run this installer
unless it already ran": ``curl | sh`` installers, ``dpkg
--add-architecture``, ``fc-cache``.

Parameters:
    command: Shell snippet to run (required).
    creates: Path whose existence means the command already ran.
    unless: Shell check; exit 0 means the command already ran.
    privileged: ``true`` to run the command as root.
    cwd: Working directory.

With neither ``creates`` nor ``unless`` the command runs every time.
"""

from __future__ import annotations

import logging

from converge.adapters.shell.command import CommandRunner
from converge.adapters.shell.filesystem import expand_path
from converge.core.errors import ExecutionError
from converge.core.models.action import Verb
from converge.core.models.record import ProbeResult
from converge.core.models.resource import ResourceDeclaration
from converge.drivers.base import Driver

logger = logging.getLogger(__name__)


class CommandDriver(Driver):
    required = ("command",)

    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def kind(self) -> str:
        return "command"

    def inspect(self, decl: ResourceDeclaration) -> ProbeResult:
        creates = decl.param("creates")
        if creates and expand_path(creates).exists():
            return self.present(decl, observed=creates)

        unless = decl.param("unless")
        if unless:
            result = self._runner.shell(unless)
            if result.ok:
                return self.present(decl, observed=f"unless: {unless}")
            return self.absent(decl, f"check failed: {unless}")

        if creates:
            return self.absent(decl, f"{creates} missing")
        return self.absent(decl, "unguarded")

    def plan_action(self, decl: ResourceDeclaration, current: ProbeResult) -> tuple[Verb, str]:
        if current.present:
            return Verb.SKIP, f"satisfied ({current.observed})"
        return Verb.INSTALL, current.detail or "not yet run"

    def converge(self, decl: ResourceDeclaration, verb: Verb, current: ProbeResult) -> str:
        cwd = decl.param("cwd")
        result = self._runner.shell(
            decl.param("command"),
            privileged=decl.flag("privileged"),
            cwd=str(expand_path(cwd)) if cwd else None,
        )
        if not result.ok:
            raise ExecutionError(result.summary())

        creates = decl.param("creates")
        if creates and not expand_path(creates).exists():
            logger.warning("%s succeeded but %s still missing", decl.id, creates)
        return result.stdout.strip().splitlines()[-1] if result.stdout.strip() else "ran"
