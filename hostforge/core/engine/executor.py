"""
Step executor — run one step's action and judge it by its postcondition.

The executor is only handed steps whose precondition is unsatisfied
(or that have none). It:

    gate → action → postcondition → outcome

The outcome is never taken from the action's exit code alone. The
exit code only decides *how* a failure is classified once the
postcondition has spoken.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Collection
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from hostforge.adapters.registry import TransportRegistry
from hostforge.core.engine.errors import (
    ActionExecutionError,
    ConfirmationRequired,
    PostconditionVerificationFailed,
    PreconditionProbeError,
    StepError,
)
from hostforge.core.engine.prober import ProbeResult, ProbeState, StateProber
from hostforge.core.models.command import CommandResult
from hostforge.core.models.runbook import RunSettings
from hostforge.core.models.step import Step
from hostforge.core.persistence.ledger import RunLedger
from hostforge.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)


class OutcomeKind(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED_VERIFIED = "failed-verified"     # action completed, effect absent
    FAILED_UNKNOWN = "failed-unknown"       # action errored, state unclear


def clip(text: str, limit: int) -> str:
    """Keep the tail of captured output. Errors are usually at the end."""
    if limit <= 0 or len(text) <= limit:
        return text
    dropped = len(text) - limit
    return f"[... {dropped} characters clipped ...]\n{text[-limit:]}"


@dataclass
class StepOutcome:
    """What executing one step produced."""

    step_id: str
    kind: OutcomeKind
    error: StepError | None = None
    action_result: CommandResult | None = None
    verification: ProbeResult | None = None
    attempts: int = 0
    duration_ms: int = 0
    simulated: bool = False
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.SUCCEEDED

    @property
    def error_kind(self) -> str | None:
        return type(self.error).__name__ if self.error else None

    def ledger_details(self, output_limit: int) -> dict[str, Any]:
        """Fields for the ledger entry recording this outcome."""
        evidence = self.action_result
        if evidence is None and self.verification is not None:
            evidence = self.verification.result

        if self.simulated:
            source = "dry-run"
        elif self.action_result is not None:
            source = "action"
        else:
            source = "probe"

        details: dict[str, Any] = {
            "outcome": self.kind.value,
            "error_kind": self.error_kind,
            "message": str(self.error) if self.error else self.message,
            "source": source,
            "duration_ms": self.duration_ms,
            "attempts": self.attempts,
            "simulated": self.simulated,
        }
        if evidence is not None:
            details["exit_code"] = evidence.exit_code
            details["stdout"] = clip(evidence.stdout, output_limit)
            details["stderr"] = clip(evidence.stderr or (evidence.error or ""), output_limit)
        return details


class Executor:
    """Runs steps against the transport registry."""

    def __init__(
        self,
        registry: TransportRegistry,
        settings: RunSettings | None = None,
        prober: StateProber | None = None,
        retry: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._registry = registry
        self._settings = settings or RunSettings()
        self._prober = prober or StateProber(registry, self._settings.probe_timeout)
        self._retry = retry or RetryPolicy.from_settings(self._settings.retry)
        self._sleep = sleep

    @property
    def prober(self) -> StateProber:
        return self._prober

    # ── Confirmation gate ───────────────────────────────────────

    def check_gate(self, step: Step, ledger: RunLedger, confirmed: Collection[str]) -> None:
        """Refuse a connectivity-risk step unless it is explicitly
        confirmed and fallback access has been proven.

        Raises:
            ConfirmationRequired: Either condition is missing.
        """
        if not step.is_connectivity_risk:
            return

        if step.id not in confirmed:
            raise ConfirmationRequired(
                step.id,
                f"'{step.id}' can cut off access to the host; rerun with --confirm {step.id}",
            )

        fallback = self._settings.fallback_step
        if not ledger.has_succeeded(fallback):
            raise ConfirmationRequired(
                step.id,
                f"'{step.id}' needs a succeeded '{fallback}' step in this or an earlier run",
            )

    # ── Execution ───────────────────────────────────────────────

    def execute(
        self,
        step: Step,
        ledger: RunLedger,
        confirmed: Collection[str] = (),
        dry_run: bool = False,
    ) -> StepOutcome:
        """Execute a step whose precondition is not satisfied.

        Raises:
            ConfirmationRequired: The connectivity gate refused the step.
                Nothing has been run.
        """
        self.check_gate(step, ledger, confirmed)

        if dry_run:
            what = "verify" if step.is_verification else "run"
            return StepOutcome(
                step_id=step.id,
                kind=OutcomeKind.SUCCEEDED,
                simulated=True,
                message=f"would {what} {step.id}",
            )

        start = time.monotonic()
        if step.is_verification:
            outcome = self._verify_only(step)
        else:
            outcome = self._run_action(step)
        outcome.duration_ms = int((time.monotonic() - start) * 1000)
        return outcome

    def _verify_only(self, step: Step) -> StepOutcome:
        """A step without an action: the check is the work."""
        verdict = self._prober.postcondition(step)
        outcome = StepOutcome(step_id=step.id, kind=OutcomeKind.SUCCEEDED, verification=verdict)

        if verdict.state == ProbeState.UNKNOWN:
            outcome.kind = OutcomeKind.FAILED_UNKNOWN
            outcome.error = PreconditionProbeError(
                step.id, f"verification of '{step.id}' could not run: {verdict.message}"
            )
        elif verdict.state == ProbeState.UNSATISFIED:
            outcome.kind = OutcomeKind.FAILED_VERIFIED
            outcome.error = PostconditionVerificationFailed(
                step.id, f"verification of '{step.id}' failed: {verdict.message}"
            )
        else:
            outcome.message = "verified"
        return outcome

    def _run_action(self, step: Step) -> StepOutcome:
        assert step.action is not None
        action = step.action
        timeout = action.timeout or self._settings.action_timeout
        retriable = not step.is_connectivity_risk

        attempt = 0
        while True:
            attempt += 1
            logger.debug("Running %s (attempt %d): %s", step.id, attempt, action.command)
            result = self._registry.run(step.target, action.command, timeout=timeout, sudo=step.sudo)

            if not (result.transport_failed and retriable and self._retry.can_retry(attempt)):
                break

            delay = self._retry.delay_for(attempt)
            logger.warning(
                "Action of %s did not complete (%s); retrying in %.1fs", step.id, result.error, delay
            )
            self._sleep(delay)

            # The lost attempt may have done the work
            if step.done_check is not None:
                pre = self._prober.precondition(step)
                if pre is not None and pre.satisfied:
                    logger.info("%s reached its desired state during an interrupted attempt", step.id)
                    return StepOutcome(
                        step_id=step.id,
                        kind=OutcomeKind.SUCCEEDED,
                        action_result=result,
                        verification=pre,
                        attempts=attempt,
                        message="satisfied after an interrupted attempt",
                    )

        outcome = StepOutcome(
            step_id=step.id,
            kind=OutcomeKind.SUCCEEDED,
            action_result=result,
            attempts=attempt,
        )

        if not result.ran:
            outcome.kind = OutcomeKind.FAILED_UNKNOWN
            outcome.error = ActionExecutionError(
                step.id, f"action of '{step.id}' could not run: {result.error}"
            )
            return outcome

        verdict = self._prober.postcondition(step)
        outcome.verification = verdict
        exit_ok = result.exit_code in action.ok_exit

        if verdict.state == ProbeState.UNKNOWN:
            outcome.kind = OutcomeKind.FAILED_UNKNOWN
            outcome.error = PreconditionProbeError(
                step.id, f"postcondition of '{step.id}' could not be checked: {verdict.message}"
            )
        elif verdict.state == ProbeState.SATISFIED:
            if not exit_ok:
                logger.warning(
                    "%s: action exited %s but the postcondition holds", step.id, result.exit_code
                )
            outcome.message = f"action exited {result.exit_code}, postcondition holds"
        elif exit_ok:
            outcome.kind = OutcomeKind.FAILED_VERIFIED
            outcome.error = PostconditionVerificationFailed(
                step.id,
                f"action of '{step.id}' exited {result.exit_code} "
                f"but the postcondition does not hold ({verdict.message})",
            )
        else:
            outcome.kind = OutcomeKind.FAILED_UNKNOWN
            outcome.error = ActionExecutionError(
                step.id, f"action of '{step.id}' failed with exit {result.exit_code}"
            )
        return outcome
