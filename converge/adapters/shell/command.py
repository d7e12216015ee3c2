"""
Command runner — the single place where ``subprocess.run`` is called.

Every driver that shells out (apt, systemctl, usermod, flatpak, ...)
goes through ``CommandRunner.run``. It never raises: timeouts and
missing binaries come back as results with a non-zero return code.

Privilege handling: when ``privileged=True`` and the process is not
root, the command is prefixed with ``sudo`` (which prompts on the
terminal, as the provisioning scripts always did). Passwords are never
handled here.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Return codes for failures that never reached the command
RC_TIMEOUT = 124
RC_NOT_FOUND = 127


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command invocation."""

    command: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def summary(self, limit: int = 400) -> str:
        """Short error description for receipts and logs."""
        if self.timed_out:
            return f"{self.command[0]} timed out after {self.elapsed_ms // 1000}s"
        text = (self.stderr or self.stdout).strip()
        if len(text) > limit:
            text = "…" + text[-limit:]
        prefix = f"{' '.join(self.command)} exited with code {self.returncode}"
        return f"{prefix}: {text}" if text else prefix


class CommandRunner:
    """Run commands with optional sudo, timeout and stdin.

    Args:
        use_sudo: Prefix privileged commands with ``sudo`` when not root.
        timeout: Default timeout in seconds.
    """

    def __init__(self, use_sudo: bool = True, timeout: int = 900):
        self._use_sudo = use_sudo
        self._timeout = timeout

    @property
    def is_root(self) -> bool:
        return os.geteuid() == 0

    def which(self, binary: str) -> str | None:
        """Locate a binary on PATH."""
        return shutil.which(binary)

    def run(
        self,
        cmd: list[str],
        *,
        privileged: bool = False,
        timeout: int | None = None,
        input: str | None = None,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
    ) -> CommandResult:
        """Run ``cmd`` and capture its output.

        Args:
            cmd: Command list.
            privileged: Whether the command needs root.
            timeout: Seconds before the command is killed.
            input: Text piped to stdin.
            env: Extra environment variables.
            cwd: Working directory.
        """
        if privileged and self._use_sudo and not self.is_root:
            cmd = ["sudo", *cmd]

        full_env = os.environ.copy()
        if env:
            full_env.update(env)

        timeout = timeout or self._timeout
        logger.debug("Executing: %s", " ".join(cmd))
        start = time.monotonic()
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                input=input,
                timeout=timeout,
                env=full_env,
                cwd=cwd,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                command=tuple(cmd),
                returncode=RC_TIMEOUT,
                elapsed_ms=int((time.monotonic() - start) * 1000),
                timed_out=True,
            )
        except FileNotFoundError:
            return CommandResult(
                command=tuple(cmd),
                returncode=RC_NOT_FOUND,
                stderr=f"command not found: {cmd[0]}",
            )
        except OSError as e:
            logger.exception("Subprocess error: %s", cmd)
            return CommandResult(command=tuple(cmd), returncode=1, stderr=str(e))

        elapsed_ms = int((time.monotonic() - start) * 1000)
        return CommandResult(
            command=tuple(cmd),
            returncode=result.returncode,
            stdout=result.stdout[-4000:],
            stderr=result.stderr[-4000:],
            elapsed_ms=elapsed_ms,
        )

    def shell(self, script: str, **kwargs) -> CommandResult:
        """Run a shell snippet through ``sh -c``."""
        return self.run(["sh", "-c", script], **kwargs)
