"""
Run orchestration — the loop that takes a sequenced step list to a report.

Flow per step:
    dependencies → ledger trust → precondition probe → gate → execute → record

One Run owns one RunLedger. Nothing here keeps global state: everything
a decision needs is read from the ledger passed in.
"""

from __future__ import annotations

import logging
import signal
import threading
import uuid
from collections.abc import Collection
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from hostforge.core.engine.errors import ActionExecutionError, ConfirmationRequired, PreconditionProbeError
from hostforge.core.engine.executor import Executor, OutcomeKind, clip
from hostforge.core.engine.prober import ProbeState, StateProber
from hostforge.core.engine.sequencer import dependency_graph, select, sequence
from hostforge.core.models.ledger import COMPLETED, LedgerEntry, RunRecord, RunStatus, StepStatus
from hostforge.core.models.runbook import LedgerPolicy, Runbook
from hostforge.core.models.step import Step
from hostforge.core.persistence.ledger import RunLedger

logger = logging.getLogger(__name__)

_MARKERS = {
    StepStatus.SATISFIED: "✓",
    StepStatus.SUCCEEDED: "✓",
    StepStatus.FAILED: "✗",
    StepStatus.SKIPPED: "⊘",
    StepStatus.PENDING: "⊘",
}


def generate_run_id() -> str:
    """Generate a unique, sortable run id."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"


def plan_run(runbook: Runbook, steps: list[str] | None = None) -> list[Step]:
    """Sequence the runbook, optionally narrowed to some steps and
    their dependencies.

    Raises:
        UnknownStepError, UnknownDependencyError, CycleError
    """
    fallback = runbook.settings.fallback_step
    chosen = select(runbook.steps, steps, fallback) if steps else runbook.steps
    return sequence(chosen, fallback)


def _trusted(step: Step, ledger: RunLedger, policy: LedgerPolicy) -> LedgerEntry | None:
    """The earlier entry that vouches for a step, when the policy allows it."""
    if policy != LedgerPolicy.TRUST_LEDGER or step.reverify:
        return None
    prior = ledger.prior_entry(step.id)
    if prior is not None and prior.status in COMPLETED:
        return prior
    return None


def _missing_evidence(step: Step, planned: Collection[str], ledger: RunLedger) -> str | None:
    """A dependency outside this run that the ledger has no success for.

    Only the fallback step may be depended on without being planned;
    such a dependency is met by a succeeded entry from an earlier run.
    Connectivity-risk steps are left to the executor's gate.
    """
    if step.is_connectivity_risk:
        return None
    for dep in step.depends_on:
        if dep not in planned and not ledger.has_succeeded(dep):
            return dep
    return None


# ── Plan preview ────────────────────────────────────────────────


@dataclass
class PlanRow:
    """One step of a plan, with what a run would do with it."""

    position: int
    step_id: str
    description: str = ""
    target: str = "remote"
    risk: str = "safe"
    depends_on: list[str] = field(default_factory=list)
    state: str = "unprobed"     # satisfied, unsatisfied, unknown, trusted, blocked-*, blocked, unprobed
    reason: str = ""
    blocked_by: str | None = None

    @property
    def blocked(self) -> bool:
        return self.state.startswith("blocked")

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "id": self.step_id,
            "description": self.description,
            "target": self.target,
            "risk": self.risk,
            "depends_on": self.depends_on,
            "state": self.state,
            "reason": self.reason,
            "blocked_by": self.blocked_by,
        }


@dataclass
class RunPlan:
    """The computed order and per-step status, without executing."""

    runbook: str
    host: str
    rows: list[PlanRow] = field(default_factory=list)
    probed: bool = True

    @property
    def order(self) -> list[str]:
        return [r.step_id for r in self.rows]

    @property
    def runnable(self) -> list[str]:
        return [r.step_id for r in self.rows if not r.blocked]

    @property
    def blocked(self) -> list[str]:
        return [r.step_id for r in self.rows if r.blocked]

    def to_dict(self) -> dict[str, Any]:
        return {
            "runbook": self.runbook,
            "host": self.host,
            "probed": self.probed,
            "order": self.order,
            "steps": [r.to_dict() for r in self.rows],
        }


def preview_run(
    runbook: Runbook,
    order: list[Step],
    ledger: RunLedger,
    prober: StateProber | None = None,
    confirmed: Collection[str] = (),
    policy: LedgerPolicy | None = None,
) -> RunPlan:
    """Describe what `apply` would do with each step.

    Probes preconditions (read-only) when a prober is given. A
    connectivity-risk step whose gate would refuse it is shown blocked,
    and so are its dependents.
    """
    policy = policy or runbook.settings.ledger_policy
    fallback = runbook.settings.fallback_step
    planned = {s.id for s in order}
    graph = dependency_graph(order, fallback)
    plan = RunPlan(runbook=runbook.name, host=runbook.host.display, probed=prober is not None)
    roots: dict[str, str] = {}

    for position, step in enumerate(order, start=1):
        row = PlanRow(
            position=position,
            step_id=step.id,
            description=step.description,
            target=step.target,
            risk=step.risk.value,
            depends_on=list(step.depends_on),
        )
        plan.rows.append(row)

        blocker = next((d for d in graph[step.id] if d in roots), None)
        if blocker is not None:
            row.state = "blocked"
            row.blocked_by = roots[blocker]
            row.reason = f"depends on {blocker}"
            roots[step.id] = roots[blocker]
            continue

        missing = _missing_evidence(step, planned, ledger)
        if missing is not None:
            row.state = "blocked-fallback"
            row.blocked_by = missing
            row.reason = f"no succeeded '{missing}' in the ledger"
            roots[step.id] = missing
            continue

        trusted = _trusted(step, ledger, policy)
        if trusted is not None:
            row.state = "trusted"
            row.reason = f"{trusted.status} in {trusted.run_id}"
            continue

        if prober is not None and step.done_check is not None:
            verdict = prober.precondition(step)
            assert verdict is not None
            row.state = verdict.state.value
            row.reason = verdict.message
            if verdict.state == ProbeState.SATISFIED:
                continue
            if verdict.state == ProbeState.UNKNOWN:
                roots[step.id] = step.id
                continue
        elif step.is_verification:
            row.state = "unsatisfied"
            row.reason = "verification"

        if step.is_connectivity_risk:
            if step.id not in confirmed:
                row.state = "blocked-confirmation"
                row.reason = f"needs --confirm {step.id}"
                roots[step.id] = step.id
            elif fallback not in planned and not ledger.has_succeeded(fallback):
                row.state = "blocked-fallback"
                row.reason = f"no succeeded '{fallback}' in the ledger"
                roots[step.id] = step.id

    return plan


# ── Execution ───────────────────────────────────────────────────


@dataclass
class StepReport:
    """Final ledger state of one step, shaped for display."""

    step_id: str
    status: StepStatus
    outcome: str | None = None
    error_kind: str | None = None
    message: str = ""
    blocked_by: str | None = None
    source: str | None = None
    simulated: bool = False
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    attempts: int = 0
    duration_ms: int = 0
    rollback: str = ""

    @classmethod
    def from_entry(cls, entry: LedgerEntry, step: Step) -> StepReport:
        return cls(
            step_id=entry.step_id,
            status=entry.status,
            outcome=entry.outcome,
            error_kind=entry.error_kind,
            message=entry.message,
            blocked_by=entry.blocked_by,
            source=entry.source,
            simulated=entry.simulated,
            exit_code=entry.exit_code,
            stdout=entry.stdout,
            stderr=entry.stderr,
            attempts=entry.attempts,
            duration_ms=entry.duration_ms,
            rollback=step.rollback if entry.status == StepStatus.FAILED else "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.step_id,
            "status": self.status.value,
            "outcome": self.outcome,
            "error_kind": self.error_kind,
            "message": self.message,
            "blocked_by": self.blocked_by,
            "source": self.source,
            "simulated": self.simulated,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "attempts": self.attempts,
            "duration_ms": self.duration_ms,
            "rollback": self.rollback,
        }


@dataclass
class RunReport:
    """Result of one run."""

    run_id: str
    runbook: str = ""
    host: str = ""
    host_key: str = ""
    dry_run: bool = False
    status: RunStatus = RunStatus.PARTIAL
    steps: list[StepReport] = field(default_factory=list)
    started_at: str = ""
    ended_at: str = ""
    interrupted: bool = False

    @property
    def ok(self) -> bool:
        return self.status == RunStatus.COMPLETE

    @property
    def order(self) -> list[str]:
        return [s.step_id for s in self.steps]

    @property
    def counts(self) -> dict[str, int]:
        counts = {s.value: 0 for s in StepStatus}
        for step in self.steps:
            counts[step.status.value] += 1
        return counts

    @property
    def failed_steps(self) -> list[str]:
        return [s.step_id for s in self.steps if s.status == StepStatus.FAILED]

    def get(self, step_id: str) -> StepReport | None:
        for step in self.steps:
            if step.step_id == step_id:
                return step
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "runbook": self.runbook,
            "host": self.host,
            "dry_run": self.dry_run,
            "status": self.status.value,
            "interrupted": self.interrupted,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "counts": self.counts,
            "steps": [s.to_dict() for s in self.steps],
        }

    def to_record(self) -> RunRecord:
        return RunRecord(
            run_id=self.run_id,
            host=self.host_key,
            runbook=self.runbook,
            started_at=self.started_at,
            ended_at=self.ended_at,
            status=self.status,
            steps_total=len(self.steps),
            counts=self.counts,
            failed_steps=self.failed_steps,
            context={"interrupted": self.interrupted} if self.interrupted else {},
        )


class _InterruptGuard:
    """SIGINT handling for the run loop.

    An interrupt always sets `requested`; the loop stops before the next
    step. It only raises KeyboardInterrupt while a safe step is in
    flight (between `arm()` and `disarm()`), so the loop can record that
    step as interrupted. During a connectivity-risk step, or between
    steps, it is only noted.
    Signal handlers can only be installed from the main thread; elsewhere
    the guard is inert.
    """

    def __init__(self) -> None:
        self.requested = False
        self.deferring = False
        self.armed = False
        self._previous: Any = None
        self._installed = False

    def arm(self, deferring: bool) -> None:
        self.deferring = deferring
        self.armed = True

    def disarm(self) -> None:
        self.armed = False
        self.deferring = False

    def __enter__(self) -> _InterruptGuard:
        if threading.current_thread() is threading.main_thread():
            self._previous = signal.getsignal(signal.SIGINT)
            signal.signal(signal.SIGINT, self._handle)
            self._installed = True
        return self

    def __exit__(self, *exc: object) -> None:
        if self._installed:
            signal.signal(signal.SIGINT, self._previous)
            self._installed = False

    def _handle(self, signum: int, frame: Any) -> None:
        self.requested = True
        if not self.armed:
            logger.warning("Interrupt received; stopping before the next step")
            return
        if self.deferring:
            logger.warning("Interrupt received; finishing the current step before stopping")
            return
        raise KeyboardInterrupt


def _log_step(step_id: str, entry: LedgerEntry) -> None:
    detail = entry.error_kind or entry.source or ""
    logger.info("%s %s → %s%s", _MARKERS[entry.status], step_id, entry.status, f" ({detail})" if detail else "")


def _run_step(
    step: Step,
    dependencies: list[str],
    planned: Collection[str],
    roots: dict[str, str],
    executor: Executor,
    ledger: RunLedger,
    confirmed: Collection[str],
    policy: LedgerPolicy,
    dry_run: bool,
    output_limit: int,
) -> LedgerEntry:
    """Decide and record the fate of one step."""
    blocker = next((d for d in dependencies if ledger.status_of(d) not in COMPLETED), None)
    if blocker is not None:
        root = roots.get(blocker, blocker)
        roots[step.id] = root
        return ledger.record(
            step.id,
            StepStatus.SKIPPED,
            blocked_by=root,
            message=f"blocked by {root}",
        )

    missing = _missing_evidence(step, planned, ledger)
    if missing is not None:
        roots[step.id] = missing
        return ledger.record(
            step.id,
            StepStatus.SKIPPED,
            blocked_by=missing,
            message=f"blocked by {missing}: no succeeded entry in this or an earlier run",
        )

    trusted = _trusted(step, ledger, policy)
    if trusted is not None:
        return ledger.record(
            step.id,
            StepStatus.SATISFIED,
            source="ledger",
            message=f"{trusted.status} in {trusted.run_id}",
        )

    pre = executor.prober.precondition(step)
    if pre is not None and pre.state == ProbeState.UNKNOWN:
        roots[step.id] = step.id
        evidence = pre.result
        return ledger.record(
            step.id,
            StepStatus.FAILED,
            outcome="probe-unknown",
            error_kind=PreconditionProbeError.__name__,
            message=f"precondition of '{step.id}' could not be checked: {pre.message}",
            source="probe",
            exit_code=evidence.exit_code if evidence else None,
            stdout=clip(evidence.stdout, output_limit) if evidence else "",
            stderr=clip(evidence.stderr or (evidence.error or ""), output_limit) if evidence else "",
        )
    if pre is not None and pre.satisfied:
        return ledger.record(step.id, StepStatus.SATISFIED, source="probe", message=pre.message)

    try:
        outcome = executor.execute(step, ledger, confirmed=confirmed, dry_run=dry_run)
    except ConfirmationRequired as e:
        roots[step.id] = step.id
        return ledger.record(
            step.id,
            StepStatus.SKIPPED,
            error_kind=type(e).__name__,
            message=str(e),
        )

    if not outcome.ok:
        roots[step.id] = step.id
    status = StepStatus.SUCCEEDED if outcome.ok else StepStatus.FAILED
    return ledger.record(step.id, status, **outcome.ledger_details(output_limit))


def execute_run(
    runbook: Runbook,
    order: list[Step],
    executor: Executor,
    ledger: RunLedger,
    confirmed: Collection[str] = (),
    policy: LedgerPolicy | None = None,
    dry_run: bool = False,
) -> RunReport:
    """Run the sequenced steps and record every decision in the ledger.

    Per-step failures never abort the run: dependents of a failed or
    skipped step are skipped with the root cause attached, everything
    else proceeds.
    """
    policy = policy or runbook.settings.ledger_policy
    output_limit = runbook.settings.output_limit
    graph = dependency_graph(order, runbook.settings.fallback_step)
    planned = {s.id for s in order}
    roots: dict[str, str] = {}

    report = RunReport(
        run_id=ledger.run_id,
        runbook=runbook.name,
        host=runbook.host.display,
        host_key=runbook.host.key,
        dry_run=dry_run,
        started_at=datetime.now(UTC).isoformat(),
    )
    mode = "dry-run" if dry_run else "run"
    logger.info("Starting %s %s: %d steps on %s", mode, ledger.run_id, len(order), report.host)

    for step in order:
        ledger.record(step.id, StepStatus.PENDING)

    with _InterruptGuard() as guard:
        for step in order:
            if guard.requested:
                report.interrupted = True
                break

            try:
                guard.arm(deferring=step.is_connectivity_risk)
                entry = _run_step(
                    step,
                    graph[step.id],
                    planned,
                    roots,
                    executor,
                    ledger,
                    confirmed,
                    policy,
                    dry_run,
                    output_limit,
                )
            except KeyboardInterrupt:
                report.interrupted = True
                entry = ledger.entry_of(step.id)
                # Already decided before the interrupt landed: keep it
                if entry is None or entry.status == StepStatus.PENDING:
                    entry = ledger.record(
                        step.id,
                        StepStatus.FAILED,
                        outcome=OutcomeKind.FAILED_UNKNOWN.value,
                        error_kind=ActionExecutionError.__name__,
                        message="interrupted",
                    )
                _log_step(step.id, entry)
                break
            finally:
                guard.disarm()

            _log_step(step.id, entry)

        if guard.requested:
            report.interrupted = True

    by_id = {s.id: s for s in order}
    for step in order:
        entry = ledger.entry_of(step.id)
        assert entry is not None
        report.steps.append(StepReport.from_entry(entry, by_id[step.id]))

    if report.interrupted:
        report.status = RunStatus.ABORTED
    elif all(s.status in COMPLETED for s in report.steps):
        report.status = RunStatus.COMPLETE
    else:
        report.status = RunStatus.PARTIAL

    report.ended_at = datetime.now(UTC).isoformat()
    logger.info("Run %s finished: %s %s", ledger.run_id, report.status, report.counts)
    return report
