"""
Shell rc line driver — make sure a line is present in a startup file.

Parameters:
    line: The line to append (required).
    file: The rc file; defaults to ``~/.zshrc``.
    match: Substring that marks the line as already present (defaults
        to the line itself). Lets a hand-edited variant count.
"""

from __future__ import annotations

from pathlib import Path

from converge.adapters.shell.filesystem import expand_path, write_atomic
from converge.core.models.action import Verb
from converge.core.models.record import ProbeResult
from converge.core.models.resource import ResourceDeclaration
from converge.drivers.base import Driver

DEFAULT_RC_FILE = "~/.zshrc"


class ShellRcLineDriver(Driver):
    required = ("line",)

    @property
    def kind(self) -> str:
        return "shell-rc-line"

    def inspect(self, decl: ResourceDeclaration) -> ProbeResult:
        rc = self._file(decl)
        if not rc.is_file():
            return self.absent(decl, f"{rc} missing")
        if self._needle(decl) in rc.read_text(errors="replace"):
            return self.present(decl, observed=str(rc))
        return self.absent(decl, f"line not in {rc}")

    def plan_action(self, decl: ResourceDeclaration, current: ProbeResult) -> tuple[Verb, str]:
        if current.present:
            return Verb.SKIP, f"line present in {current.observed}"
        return Verb.CREATE, current.detail or "line missing"

    def converge(self, decl: ResourceDeclaration, verb: Verb, current: ProbeResult) -> str:
        rc = self._file(decl)
        existing = rc.read_bytes() if rc.is_file() else b""
        if existing and not existing.endswith(b"\n"):
            existing += b"\n"
        mode = rc.stat().st_mode & 0o777 if rc.is_file() else 0o644
        write_atomic(rc, existing + decl.param("line").encode("utf-8") + b"\n", mode)
        return f"appended to {rc}"

    @staticmethod
    def _file(decl: ResourceDeclaration) -> Path:
        return expand_path(decl.param("file", DEFAULT_RC_FILE))

    @staticmethod
    def _needle(decl: ResourceDeclaration) -> str:
        return decl.param("match") or decl.param("line")
