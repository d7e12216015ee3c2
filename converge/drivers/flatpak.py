"""
Flatpak driver — applications from a Flatpak remote.

The resource name is the application id. Parameters:
    remote: Remote name (default ``flathub``).
    remote_url: Repo file for the remote, added with ``--if-not-exists``
        (default the Flathub repo file when the remote is ``flathub``).
"""

from __future__ import annotations

from converge.adapters.shell.command import CommandResult, CommandRunner
from converge.core.errors import ExecutionError, TransientExecutionError
from converge.core.models.action import Verb
from converge.core.models.record import ProbeResult
from converge.core.models.resource import ResourceDeclaration
from converge.drivers.base import Driver

FLATHUB_URL = "https://flathub.org/repo/flathub.flatpakrepo"

_TRANSIENT_MARKERS = ("Could not resolve", "Timeout", "timed out", "Connection reset")


def raise_for_result(result: CommandResult) -> None:
    """Raise the right taxonomy error for a failed network command."""
    if result.ok:
        return
    text = result.stderr + result.stdout
    if result.timed_out or any(m in text for m in _TRANSIENT_MARKERS):
        raise TransientExecutionError(result.summary())
    raise ExecutionError(result.summary())


class FlatpakDriver(Driver):
    network = True
    lock = "flatpak"

    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def kind(self) -> str:
        return "flatpak"

    def inspect(self, decl: ResourceDeclaration) -> ProbeResult:
        result = self._runner.run(["flatpak", "info", "--show-ref", decl.name])
        if result.ok:
            return self.present(decl, observed=result.stdout.strip() or decl.name)
        return self.absent(decl, "not installed")

    def plan_action(self, decl: ResourceDeclaration, current: ProbeResult) -> tuple[Verb, str]:
        if current.present:
            return Verb.SKIP, f"installed {current.observed}"
        return Verb.INSTALL, "not installed"

    def converge(self, decl: ResourceDeclaration, verb: Verb, current: ProbeResult) -> str:
        remote = decl.param("remote", "flathub")
        remote_url = decl.param("remote_url") or (FLATHUB_URL if remote == "flathub" else "")
        if remote_url:
            raise_for_result(self._runner.run(
                ["flatpak", "remote-add", "--if-not-exists", remote, remote_url],
                privileged=True,
            ))

        raise_for_result(self._runner.run(
            ["flatpak", "install", "-y", "--noninteractive", remote, decl.name],
            privileged=True,
        ))
        return f"installed {decl.name} from {remote}"
