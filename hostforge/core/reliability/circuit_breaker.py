"""
Circuit breaker — stop hammering a host that has gone away.

When the target stops answering (network reconfigured, sshd down), every
remaining probe and action would otherwise wait out its own connect
timeout. The breaker trips after a few consecutive transport-level
failures and rejects calls until a recovery window has passed.

States:
    CLOSED    → Normal operation. Transport failures counted.
    OPEN      → Calls rejected without touching the host.
    HALF_OPEN → One probe call allowed through to test recovery.

Only transport-level failures count. A command that ran and exited
non-zero is a healthy connection.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from hostforge.core.models.runbook import CircuitSettings

logger = logging.getLogger(__name__)


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """Per-transport circuit breaker."""

    name: str
    failure_threshold: int = 3
    recovery_timeout: float = 30.0

    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    opened_at: float = 0.0
    total_rejections: int = 0

    def allow_request(self) -> bool:
        """Whether a call may go through right now."""
        if self.state == CircuitState.OPEN:
            if self.retry_in() > 0:
                self.total_rejections += 1
                return False
            self._transition(CircuitState.HALF_OPEN)
        return True

    def retry_in(self) -> float:
        """Seconds until an open circuit lets a probe call through."""
        if self.state != CircuitState.OPEN:
            return 0.0
        return max(0.0, self.opened_at + self.recovery_timeout - time.monotonic())

    def record_success(self) -> None:
        if self.state != CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)
        self.failure_count = 0

    def record_failure(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
            return
        self.failure_count += 1
        if self.state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    def reset(self) -> None:
        """Force the breaker closed, e.g. after the operator fixed the network."""
        self._transition(CircuitState.CLOSED)
        self.failure_count = 0
        self.total_rejections = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "total_rejections": self.total_rejections,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
        }

    def _transition(self, new_state: CircuitState) -> None:
        old = self.state
        if old == new_state:
            return
        self.state = new_state
        if new_state == CircuitState.OPEN:
            self.opened_at = time.monotonic()
        elif new_state == CircuitState.CLOSED:
            self.failure_count = 0
        logger.info("Circuit breaker '%s': %s → %s", self.name, old.value, new_state.value)


@dataclass
class CircuitBreakerRegistry:
    """One breaker per transport name."""

    breakers: dict[str, CircuitBreaker] = field(default_factory=dict)
    failure_threshold: int = 3
    recovery_timeout: float = 30.0

    @classmethod
    def from_settings(cls, settings: CircuitSettings) -> CircuitBreakerRegistry:
        return cls(
            failure_threshold=settings.failure_threshold,
            recovery_timeout=settings.recovery_timeout,
        )

    def get_or_create(self, name: str) -> CircuitBreaker:
        if name not in self.breakers:
            self.breakers[name] = CircuitBreaker(
                name=name,
                failure_threshold=self.failure_threshold,
                recovery_timeout=self.recovery_timeout,
            )
        return self.breakers[name]

    def get_status(self) -> dict[str, dict[str, Any]]:
        return {name: cb.to_dict() for name, cb in self.breakers.items()}

    def reset_all(self) -> None:
        for cb in self.breakers.values():
            cb.reset()
