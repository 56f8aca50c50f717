"""
CommandResult — the I/O contract between the engine and transports.

The engine asks a transport to run a command line; the transport hands
back a CommandResult. Never exceptions: "could not run it at all"
(unreachable host, missing binary, timeout) is captured in `error`,
separately from "ran and exited non-zero".
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

# Shell convention for "command not found"
EXIT_NOT_FOUND = 127


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class CommandResult(BaseModel):
    """Outcome of one command invocation."""

    transport: str
    command: str

    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    error: str | None = None        # transport-level failure; exit_code may be None
    timed_out: bool = False

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ran(self) -> bool:
        """Whether the command ran to completion and produced an exit code."""
        return self.error is None and self.exit_code is not None

    @property
    def transport_failed(self) -> bool:
        """Whether the command never produced an exit code (connection lost, timeout)."""
        return self.error is not None and self.exit_code is None

    def exited_with(self, codes: list[int]) -> bool:
        return self.ran and self.exit_code in codes

    @classmethod
    def completed(
        cls,
        transport: str,
        command: str,
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
        **kwargs: Any,
    ) -> CommandResult:
        """Create a result for a command that ran and exited.

        Exit 127 is reported as a transport error: the binary is missing,
        so nothing about machine state can be read from it.
        """
        error = None
        if exit_code == EXIT_NOT_FOUND:
            error = stderr.strip() or "command not found"
        return cls(
            transport=transport,
            command=command,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            error=error,
            **kwargs,
        )

    @classmethod
    def unreachable(
        cls,
        transport: str,
        command: str,
        error: str,
        **kwargs: Any,
    ) -> CommandResult:
        """Create a result for a command that could not be run."""
        return cls(
            transport=transport,
            command=command,
            error=error,
            **kwargs,
        )

    @classmethod
    def timeout(
        cls,
        transport: str,
        command: str,
        seconds: float,
        **kwargs: Any,
    ) -> CommandResult:
        """Create a result for a command that exceeded its time budget."""
        return cls(
            transport=transport,
            command=command,
            error=f"Command timed out after {seconds:g}s",
            timed_out=True,
            **kwargs,
        )
