"""
Mock transport — universal test double for command execution.

Used in tests to simulate a machine without touching one. Returns
exit 0 for everything by default; can be scripted per command line
with fixed results or handler functions.
"""

from __future__ import annotations

from collections.abc import Callable

from hostforge.adapters.base import Transport
from hostforge.core.models.command import CommandResult

Handler = Callable[[str], CommandResult]


class MockTransport(Transport):
    """Universal mock transport for testing.

    By default, every command exits 0 with empty output. Responses are
    matched on the exact command line first, then on the longest
    registered prefix.
    """

    def __init__(
        self,
        transport_name: str = "mock",
        available: bool = True,
        default_exit: int = 0,
    ):
        self._name = transport_name
        self._available = available
        self._default_exit = default_exit
        self._responses: dict[str, CommandResult | Handler] = {}
        self._prefixes: dict[str, CommandResult | Handler] = {}
        self._call_log: list[str] = []
        self.closed = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[str]:
        """Every command line this mock has received, in order."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def is_available(self) -> bool:
        return self._available

    def set_response(self, command: str, response: CommandResult | Handler) -> None:
        """Script the result (or a handler) for an exact command line."""
        self._responses[command] = response

    def set_prefix_response(self, prefix: str, response: CommandResult | Handler) -> None:
        """Script the result for every command starting with `prefix`."""
        self._prefixes[prefix] = response

    def set_exit(self, command: str, exit_code: int, stdout: str = "", stderr: str = "") -> None:
        self._responses[command] = CommandResult.completed(
            transport=self._name,
            command=command,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
        )

    def set_unreachable(self, command: str, error: str = "Mock connection refused") -> None:
        self._responses[command] = CommandResult.unreachable(
            transport=self._name,
            command=command,
            error=error,
        )

    def _lookup(self, command: str) -> CommandResult | Handler | None:
        if command in self._responses:
            return self._responses[command]
        for prefix in sorted(self._prefixes, key=len, reverse=True):
            if command.startswith(prefix):
                return self._prefixes[prefix]
        return None

    def run(self, command: str, *, timeout: float, sudo: bool = False) -> CommandResult:
        self._call_log.append(command)

        response = self._lookup(command)
        if callable(response):
            return response(command)
        if response is not None:
            return response.model_copy()

        return CommandResult.completed(
            transport=self._name,
            command=command,
            exit_code=self._default_exit,
            metadata={"mock": True},
        )

    def close(self) -> None:
        self.closed = True

    def reset(self) -> None:
        """Clear call log and scripted responses."""
        self._call_log.clear()
        self._responses.clear()
        self._prefixes.clear()
