"""
State prober — read machine state to decide whether a step is done.

A probe has three verdicts, not two. `unknown` means the probe itself
broke (host unreachable, timeout, missing binary, an exit code the
probe does not recognise). Unknown is never read as "not done": doing
a destructive action because a check failed to run is exactly the
mistake this engine exists to prevent.

Probes only observe. They go through the same transports as actions,
but a probe command must never change the machine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from hostforge.adapters.registry import TransportRegistry
from hostforge.core.models.command import CommandResult
from hostforge.core.models.step import Probe, Step

logger = logging.getLogger(__name__)


class ProbeState(StrEnum):
    SATISFIED = "satisfied"
    UNSATISFIED = "unsatisfied"
    UNKNOWN = "unknown"


@dataclass
class ProbeResult:
    """Verdict of one probe, with the evidence it was based on."""

    state: ProbeState
    result: CommandResult | None = None
    message: str = ""

    @property
    def satisfied(self) -> bool:
        return self.state == ProbeState.SATISFIED

    @property
    def unknown(self) -> bool:
        return self.state == ProbeState.UNKNOWN


def evaluate(probe: Probe, result: CommandResult) -> ProbeResult:
    """Classify a probe command's result."""
    if result.error is not None:
        return ProbeResult(ProbeState.UNKNOWN, result, result.error)

    code = result.exit_code
    if code in probe.unsatisfied_exit:
        return ProbeResult(ProbeState.UNSATISFIED, result, f"exit {code}")

    if code in probe.satisfied_exit:
        if probe.output_ok(result.stdout):
            return ProbeResult(ProbeState.SATISFIED, result, f"exit {code}")
        return ProbeResult(
            ProbeState.UNSATISFIED,
            result,
            f"exit {code} but output does not match the expected state",
        )

    return ProbeResult(
        ProbeState.UNKNOWN,
        result,
        f"unexpected exit {code} (satisfied={probe.satisfied_exit}, "
        f"unsatisfied={probe.unsatisfied_exit})",
    )


class StateProber:
    """Runs step probes through the transport registry."""

    def __init__(self, registry: TransportRegistry, probe_timeout: int = 60):
        self._registry = registry
        self._probe_timeout = probe_timeout

    def check(self, step: Step, probe: Probe) -> ProbeResult:
        timeout = probe.timeout or self._probe_timeout
        result = self._registry.run(step.target, probe.command, timeout=timeout, sudo=step.sudo)
        verdict = evaluate(probe, result)
        logger.debug("Probe %s [%s]: %s (%s)", step.id, probe.command, verdict.state, verdict.message)
        return verdict

    def precondition(self, step: Step) -> ProbeResult | None:
        """Probe whether the step is already done (`Step.done_check`).

        None for verification steps, which are never already done.
        """
        probe = step.done_check
        if probe is None:
            return None
        return self.check(step, probe)

    def postcondition(self, step: Step) -> ProbeResult:
        return self.check(step, step.effective_postcondition)
