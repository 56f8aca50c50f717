"""
Transport base — the protocol contract between engine and machines.

A transport runs one command line somewhere (this machine, or the
target host over SSH) and returns a CommandResult. The engine only
talks to machines through this protocol, never directly through
subprocess or paramiko.
"""

from __future__ import annotations

import shlex
from abc import ABC, abstractmethod

from hostforge.core.models.command import CommandResult


def wrap_sudo(command: str) -> str:
    """Run a command line through non-interactive sudo.

    `-n` makes sudo fail instead of prompting; a prompt would hang the
    step until its timeout.
    """
    return f"sudo -n sh -c {shlex.quote(command)}"


class Transport(ABC):
    """Abstract base class for all transports.

    Transports perform external side effects and return results.
    They NEVER raise for command failures — those are captured in the
    CommandResult.

    To create a new transport:
        1. Subclass Transport
        2. Implement name, is_available, run
        3. Register it in the TransportRegistry
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The transport identifier (e.g., 'local', 'ssh')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check whether commands can be run right now.

        Should be reasonably fast and never raise.
        """

    @abstractmethod
    def run(self, command: str, *, timeout: float, sudo: bool = False) -> CommandResult:
        """Run a command line and return its result.

        MUST never raise for command or connection failures.
        """

    def close(self) -> None:
        """Release any held connection. Safe to call more than once."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
