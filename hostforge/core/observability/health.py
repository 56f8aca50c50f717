"""
Host health — can this run reach its machines, and is it allowed to
touch the risky steps yet?

Three components:

    transports        every step target has a transport that answers
    circuit_breakers  no transport has been cut off after repeated failures
    fallback_access   the ledger proves key login works (gate for risky steps)

Used by the CLI `health` command before a long run, to fail early on a
wrong address or a dead key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from hostforge.adapters.registry import TransportRegistry
from hostforge.core.models.ledger import StepStatus
from hostforge.core.persistence.ledger import RunLedger
from hostforge.core.reliability.circuit_breaker import CircuitBreakerRegistry, CircuitState

logger = logging.getLogger(__name__)

# Worst wins when components are combined
_SEVERITY = {"healthy": 0, "unknown": 1, "degraded": 2, "unhealthy": 3}


@dataclass
class ComponentHealth:
    """Health of one component."""

    name: str
    status: str = "unknown"  # healthy, degraded, unhealthy, unknown
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class SystemHealth:
    """Aggregate of the component checks."""

    timestamp: str = ""
    components: list[ComponentHealth] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(UTC).isoformat()

    @property
    def status(self) -> str:
        if not self.components:
            return "healthy"
        return max((c.status for c in self.components), key=lambda s: _SEVERITY.get(s, 1))

    def add(self, component: ComponentHealth) -> None:
        if component.status != "healthy":
            logger.info("Health: %s is %s (%s)", component.name, component.status, component.message)
        self.components.append(component)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "components": [c.to_dict() for c in self.components],
        }


def check_transports(registry: TransportRegistry) -> ComponentHealth:
    """Every step target has a transport that answers."""
    targets = registry.transport_status()
    down = sorted(t for t, info in targets.items() if not info["available"])

    if not targets:
        status, message = "unknown", "No transports registered"
    elif len(down) == len(targets):
        status, message = "unhealthy", f"No target reachable ({', '.join(down)})"
    elif down:
        status, message = "degraded", f"Unreachable: {', '.join(down)}"
    else:
        status, message = "healthy", f"All {len(targets)} targets reachable"

    return ComponentHealth(name="transports", status=status, message=message, details=targets)


def check_circuit_breakers(registry: CircuitBreakerRegistry) -> ComponentHealth:
    """No transport is being refused by its breaker."""
    breakers = registry.breakers
    tripped = sorted(n for n, cb in breakers.items() if cb.state == CircuitState.OPEN)
    probing = sorted(n for n, cb in breakers.items() if cb.state == CircuitState.HALF_OPEN)

    if tripped:
        retry = max(breakers[n].retry_in() for n in tripped)
        status = "unhealthy"
        message = f"Open: {', '.join(tripped)} (next attempt in {retry:.0f}s)"
    elif probing:
        status, message = "degraded", f"Recovering: {', '.join(probing)}"
    elif breakers:
        status, message = "healthy", f"All {len(breakers)} circuits closed"
    else:
        status, message = "healthy", "No transport has been used yet"

    return ComponentHealth(
        name="circuit_breakers",
        status=status,
        message=message,
        details=registry.get_status(),
    )


def check_fallback_access(ledger: RunLedger, fallback_step: str) -> ComponentHealth:
    """The ledger holds the evidence connectivity-risk steps are gated on."""
    if ledger.has_succeeded(fallback_step):
        evidence = next(
            e
            for e in reversed(ledger.entries())
            if e.step_id == fallback_step and e.status == StepStatus.SUCCEEDED
        )
        return ComponentHealth(
            name="fallback_access",
            status="healthy",
            message=f"'{fallback_step}' succeeded in {evidence.run_id}",
            details={"step": fallback_step, "run_id": evidence.run_id},
        )
    return ComponentHealth(
        name="fallback_access",
        status="degraded",
        message=f"No succeeded '{fallback_step}' yet; connectivity-risk steps stay gated",
        details={"step": fallback_step, "run_id": None},
    )


def check_system_health(
    registry: TransportRegistry | None = None,
    ledger: RunLedger | None = None,
    fallback_step: str | None = None,
) -> SystemHealth:
    """Run every check whose inputs were given."""
    health = SystemHealth()

    if registry is not None:
        health.add(check_transports(registry))
        if registry.circuit_breakers is not None:
            health.add(check_circuit_breakers(registry.circuit_breakers))

    if ledger is not None and fallback_step:
        health.add(check_fallback_access(ledger, fallback_step))

    return health
