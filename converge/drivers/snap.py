"""
Snap driver.

The resource name is the snap. Parameters:
    classic: ``true`` for classic confinement.
    channel: Channel to install from (e.g. ``latest/stable``).
"""

from __future__ import annotations

from converge.adapters.shell.command import CommandRunner
from converge.core.models.action import Verb
from converge.core.models.record import ProbeResult
from converge.core.models.resource import ResourceDeclaration
from converge.drivers.base import Driver
from converge.drivers.flatpak import raise_for_result


class SnapDriver(Driver):
    network = True
    lock = "snap"

    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def kind(self) -> str:
        return "snap"

    def inspect(self, decl: ResourceDeclaration) -> ProbeResult:
        result = self._runner.run(["snap", "list", decl.name])
        if not result.ok:
            return self.absent(decl, "not installed")
        # Name  Version  Rev  Tracking  Publisher  Notes
        lines = result.stdout.strip().splitlines()
        version = lines[1].split()[1] if len(lines) > 1 and len(lines[1].split()) > 1 else None
        return self.present(decl, observed=version)

    def plan_action(self, decl: ResourceDeclaration, current: ProbeResult) -> tuple[Verb, str]:
        if current.present:
            return Verb.SKIP, f"installed {current.observed or ''}".strip()
        return Verb.INSTALL, "not installed"

    def converge(self, decl: ResourceDeclaration, verb: Verb, current: ProbeResult) -> str:
        cmd = ["snap", "install", decl.name]
        if decl.flag("classic"):
            cmd.append("--classic")
        if decl.param("channel"):
            cmd.append(f"--channel={decl.param('channel')}")
        raise_for_result(self._runner.run(cmd, privileged=True))
        return f"installed snap {decl.name}"
