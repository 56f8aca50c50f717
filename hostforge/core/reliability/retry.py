"""
Retry policy — exponential backoff with jitter for interrupted actions.

Only actions that never finished at the transport level are retried
(dropped connection, timeout). An action that ran and left the host in
the wrong state is not retried: doing the same thing again rarely
fixes it, and it may not be safe.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass

from hostforge.core.models.runbook import RetrySettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times, and how patiently, to re-attempt an action."""

    max_attempts: int = 1
    base_delay: float = 5.0
    max_delay: float = 60.0
    jitter: float = 0.3     # fraction of the delay added at random

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
        )

    @property
    def enabled(self) -> bool:
        return self.max_attempts > 1

    def can_retry(self, attempt: int) -> bool:
        """Whether another attempt is allowed after `attempt` attempts."""
        return attempt < self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before attempt number `attempt + 1`.

        attempt=1 waits base_delay, attempt=2 waits 2×base_delay, ...
        capped at max_delay, plus up to `jitter` of that at random.
        """
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        jitter = random.uniform(0, delay * self.jitter) if self.jitter else 0.0
        logger.debug(
            "Retry %d/%d scheduled in %.1fs",
            attempt + 1,
            self.max_attempts,
            delay + jitter,
        )
        return delay + jitter
