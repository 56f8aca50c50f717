"""
Local shell transport — run commands on the operator's machine.

This is the most fundamental transport: it runs a command line through
`sh -c` and captures its output. It serves `target: local` steps
(ssh-keygen, "can I log in with the new key?") and, when the runbook
has no remote address, provisions the machine hostforge runs on.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import time

from hostforge.adapters.base import Transport, wrap_sudo
from hostforge.core.models.command import CommandResult

logger = logging.getLogger(__name__)


class LocalShellTransport(Transport):
    """Execute shell commands locally and capture output.

    Children run in their own session, so a terminal Ctrl-C reaches
    hostforge (which decides what to do with it) and not the command.
    """

    def __init__(self, transport_name: str = "local", cwd: str | None = None):
        self._name = transport_name
        self._cwd = cwd

    @property
    def name(self) -> str:
        return self._name

    def is_available(self) -> bool:
        return shutil.which("sh") is not None

    def run(self, command: str, *, timeout: float, sudo: bool = False) -> CommandResult:
        line = wrap_sudo(command) if sudo else command
        logger.debug("Executing locally: %s (timeout=%ss)", line, timeout)
        start = time.monotonic()

        try:
            result = subprocess.run(
                line,
                shell=True,
                cwd=self._cwd,
                capture_output=True,
                text=True,
                timeout=timeout,
                start_new_session=True,
            )
        except subprocess.TimeoutExpired:
            return CommandResult.timeout(
                transport=self.name,
                command=command,
                seconds=timeout,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        except OSError as e:
            return CommandResult.unreachable(
                transport=self.name,
                command=command,
                error=f"Command execution error: {e}",
            )

        return CommandResult.completed(
            transport=self.name,
            command=command,
            exit_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            duration_ms=int((time.monotonic() - start) * 1000),
            metadata={"sudo": sudo},
        )
