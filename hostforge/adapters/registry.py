"""
Transport registry — central dispatch for command execution.

The registry maps a step's `target` ("local" or "remote") to a
transport, guards each transport with a circuit breaker, and is the
only thing the engine calls to touch a machine.
"""

from __future__ import annotations

import logging
from typing import Any

from hostforge.adapters.base import Transport
from hostforge.core.models.command import CommandResult
from hostforge.core.models.runbook import HostSpec, RunSettings
from hostforge.core.reliability.circuit_breaker import CircuitBreakerRegistry

logger = logging.getLogger(__name__)

TARGETS = ("local", "remote")


class TransportRegistry:
    """Registry and dispatcher for transports, keyed by step target."""

    def __init__(self, circuit_breakers: CircuitBreakerRegistry | None = None):
        self._transports: dict[str, Transport] = {}
        self._circuit_breakers = circuit_breakers

    @classmethod
    def for_host(cls, host: HostSpec, settings: RunSettings | None = None) -> TransportRegistry:
        """Build the standard registry for a runbook's host.

        `local` always runs on this machine. `remote` is SSH, unless the
        host is this machine, in which case both targets share a shell.
        """
        from hostforge.adapters.shell.command import LocalShellTransport
        from hostforge.adapters.shell.ssh import SSHTransport

        settings = settings or RunSettings()
        registry = cls(CircuitBreakerRegistry.from_settings(settings.circuit_breaker))
        local = LocalShellTransport()
        registry.register("local", local)
        if host.is_local:
            registry.register("remote", local)
        else:
            registry.register("remote", SSHTransport(host))
        return registry

    def register(self, target: str, transport: Transport) -> None:
        if target in self._transports:
            logger.warning("Overwriting transport for target '%s'", target)
        self._transports[target] = transport
        logger.debug("Registered %r for target '%s'", transport, target)

    def get(self, target: str) -> Transport | None:
        return self._transports.get(target)

    def list_targets(self) -> list[str]:
        return list(self._transports.keys())

    @property
    def circuit_breakers(self) -> CircuitBreakerRegistry | None:
        return self._circuit_breakers

    def transport_status(self) -> dict[str, dict[str, Any]]:
        """Availability of every registered transport."""
        status = {}
        for target, transport in self._transports.items():
            try:
                available = transport.is_available()
            except Exception:
                available = False
            status[target] = {
                "target": target,
                "transport": transport.name,
                "available": available,
                "type": transport.__class__.__name__,
            }
        return status

    def run(self, target: str, command: str, *, timeout: float, sudo: bool = False) -> CommandResult:
        """Run a command line on the given target. Never raises.

        1. Resolve the transport for the target
        2. Check its circuit breaker
        3. Run the command
        4. Feed the breaker (transport errors only)
        """
        transport = self._transports.get(target)
        if transport is None:
            return CommandResult.unreachable(
                transport=target,
                command=command,
                error=f"No transport registered for target '{target}'",
            )

        cb = self._circuit_breakers.get_or_create(transport.name) if self._circuit_breakers else None
        if cb is not None and not cb.allow_request():
            return CommandResult.unreachable(
                transport=transport.name,
                command=command,
                error=(
                    f"Circuit breaker OPEN for transport '{transport.name}' "
                    f"(retry in {cb.retry_in():.0f}s)"
                ),
                metadata={"circuit_state": cb.state.value},
            )

        try:
            result = transport.run(command, timeout=timeout, sudo=sudo)
        except Exception as e:
            # Transports should never raise, but a bug there must not kill the run
            logger.error("Transport %s raised during execution: %s", transport.name, e)
            result = CommandResult.unreachable(
                transport=transport.name,
                command=command,
                error=f"Unexpected transport error: {e}",
            )

        if cb is not None:
            # Exit 127 is a missing binary, not a sick connection
            if result.transport_failed:
                cb.record_failure()
            else:
                cb.record_success()

        return result

    def close(self) -> None:
        for transport in set(self._transports.values()):
            transport.close()
