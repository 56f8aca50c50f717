"""
Engine error taxonomy.

Graph errors (CycleError, UnknownDependencyError) are fatal and raised
before anything touches a machine. Per-step errors are raised inside
the executor, caught by the run loop, and recorded in the ledger by
class name; they never abort the whole run.
"""

from __future__ import annotations


class HostforgeError(Exception):
    """Base class for all hostforge errors."""


# ── Graph errors (fatal, before any mutation) ───────────────────


class CycleError(HostforgeError):
    """The dependency graph contains a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Dependency cycle: {' -> '.join(cycle)}")


class UnknownDependencyError(HostforgeError):
    """A step depends on a step id that is not in the runbook."""

    def __init__(self, step_id: str, missing: str):
        self.step_id = step_id
        self.missing = missing
        super().__init__(f"Step '{step_id}' depends on unknown step '{missing}'")


# ── Per-step errors ─────────────────────────────────────────────


class StepError(HostforgeError):
    """An error confined to one step (and its dependents)."""

    def __init__(self, step_id: str, message: str):
        self.step_id = step_id
        super().__init__(message)


class PreconditionProbeError(StepError):
    """A probe could not tell what state the machine is in.

    Raised for both pre- and postcondition probes: the machine state is
    ambiguous, so nothing destructive may be assumed safe.
    """


class ActionExecutionError(StepError):
    """The action failed to run (missing binary, no connectivity, timeout)
    or errored without reaching the desired state."""


class PostconditionVerificationFailed(StepError):
    """The action claimed success but the intended effect is not there."""


class ConfirmationRequired(StepError):
    """A connectivity-risk step lacks explicit confirmation or verified
    fallback access."""
