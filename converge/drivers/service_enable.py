"""
Service enable driver — systemd units enabled at boot.

The resource name is the unit. Parameters:
    now: ``true`` to also start the unit when enabling it.
    user: ``true`` for a user unit (``systemctl --user``).
"""

from __future__ import annotations

from converge.adapters.shell.command import CommandRunner
from converge.core.errors import ExecutionError
from converge.core.models.action import Verb
from converge.core.models.record import ProbeResult
from converge.core.models.resource import ResourceDeclaration
from converge.drivers.base import Driver

# `systemctl is-enabled` states that need no action
_ENABLED_STATES = {"enabled", "enabled-runtime", "static", "alias", "indirect", "generated"}


class ServiceEnableDriver(Driver):
    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def kind(self) -> str:
        return "service-enable"

    def inspect(self, decl: ResourceDeclaration) -> ProbeResult:
        result = self._runner.run(self._systemctl(decl, "is-enabled", decl.name))
        state = result.stdout.strip() or "unknown"
        if state in _ENABLED_STATES:
            return self.present(decl, observed=state)
        return self.absent(decl, state)

    def plan_action(self, decl: ResourceDeclaration, current: ProbeResult) -> tuple[Verb, str]:
        if current.present:
            return Verb.SKIP, current.observed or "enabled"
        return Verb.CREATE, f"unit is {current.detail or 'disabled'}"

    def converge(self, decl: ResourceDeclaration, verb: Verb, current: ProbeResult) -> str:
        args = ["enable", decl.name]
        if decl.flag("now"):
            args.insert(1, "--now")
        result = self._runner.run(
            self._systemctl(decl, *args),
            privileged=not decl.flag("user"),
        )
        if not result.ok:
            raise ExecutionError(result.summary())
        return f"enabled {decl.name}"

    @staticmethod
    def _systemctl(decl: ResourceDeclaration, *args: str) -> list[str]:
        if decl.flag("user"):
            return ["systemctl", "--user", *args]
        return ["systemctl", *args]
