"""
User group membership driver.

The resource name is the group. Parameters:
    user: Account to add; defaults to the invoking user (``$SUDO_USER``
        or ``$USER``).

Membership only takes effect at the next login; the driver reports the
change, it does not re-login.
"""

from __future__ import annotations

import grp
import os
import pwd

from converge.adapters.shell.command import CommandRunner
from converge.core.errors import ExecutionError, ProbeError
from converge.core.models.action import Verb
from converge.core.models.record import ProbeResult
from converge.core.models.resource import ResourceDeclaration
from converge.drivers.base import Driver


def default_user() -> str:
    return os.environ.get("SUDO_USER") or os.environ.get("USER") or pwd.getpwuid(os.getuid()).pw_name


class UserGroupMembershipDriver(Driver):
    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def kind(self) -> str:
        return "user-group"

    def inspect(self, decl: ResourceDeclaration) -> ProbeResult:
        user = decl.param("user") or default_user()
        try:
            group = grp.getgrnam(decl.name)
        except KeyError:
            return self.absent(decl, f"group '{decl.name}' does not exist")
        try:
            primary_gid = pwd.getpwnam(user).pw_gid
        except KeyError as e:
            raise ProbeError(f"user '{user}' does not exist") from e

        if user in group.gr_mem or primary_gid == group.gr_gid:
            return self.present(decl, observed=user)
        return self.absent(decl, f"{user} not in {decl.name}")

    def plan_action(self, decl: ResourceDeclaration, current: ProbeResult) -> tuple[Verb, str]:
        if current.present:
            return Verb.SKIP, f"{current.observed} is a member"
        return Verb.CREATE, current.detail or "not a member"

    def converge(self, decl: ResourceDeclaration, verb: Verb, current: ProbeResult) -> str:
        user = decl.param("user") or default_user()
        result = self._runner.run(["usermod", "-aG", decl.name, user], privileged=True)
        if not result.ok:
            raise ExecutionError(result.summary())
        return f"added {user} to {decl.name} (effective at next login)"
