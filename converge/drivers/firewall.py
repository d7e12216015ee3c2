"""
Firewall driver — ufw on or off.

Parameters:
    state: ``enabled`` (default) or ``disabled``.
"""

from __future__ import annotations

from converge.adapters.shell.command import CommandRunner
from converge.core.errors import ExecutionError, ProbeError
from converge.core.models.action import Verb
from converge.core.models.record import ProbeResult
from converge.core.models.resource import ResourceDeclaration
from converge.drivers.base import Driver

STATES = ("enabled", "disabled")


class FirewallDriver(Driver):
    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def kind(self) -> str:
        return "firewall"

    def validate(self, decl: ResourceDeclaration) -> list[str]:
        errors = super().validate(decl)
        if decl.param("state", "enabled") not in STATES:
            errors.append(f"{decl.id}: 'state' must be one of {', '.join(STATES)}")
        return errors

    def inspect(self, decl: ResourceDeclaration) -> ProbeResult:
        result = self._runner.run(["ufw", "status"], privileged=True)
        if not result.ok:
            raise ProbeError(result.summary())
        active = "Status: active" in result.stdout
        observed = "enabled" if active else "disabled"
        if observed == decl.param("state", "enabled"):
            return self.present(decl, observed=observed)
        return self.absent(decl, f"ufw is {observed}")

    def plan_action(self, decl: ResourceDeclaration, current: ProbeResult) -> tuple[Verb, str]:
        if current.present:
            return Verb.SKIP, f"ufw {current.observed}"
        return Verb.UPDATE, current.detail or "ufw state differs"

    def converge(self, decl: ResourceDeclaration, verb: Verb, current: ProbeResult) -> str:
        state = decl.param("state", "enabled")
        cmd = ["ufw", "--force", "enable"] if state == "enabled" else ["ufw", "disable"]
        result = self._runner.run(cmd, privileged=True)
        if not result.ok:
            raise ExecutionError(result.summary())
        return f"ufw {state}"
