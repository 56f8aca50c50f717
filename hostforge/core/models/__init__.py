"""
Domain models — Pydantic types for hostforge.

All models are re-exported here for convenient access:

    from hostforge.core.models import Runbook, Step, Probe, LedgerEntry
"""

from hostforge.core.models.command import CommandResult
from hostforge.core.models.ledger import (
    COMPLETED,
    LedgerEntry,
    RunRecord,
    RunStatus,
    StepStatus,
)
from hostforge.core.models.runbook import (
    CircuitSettings,
    HostSpec,
    LedgerPolicy,
    RetrySettings,
    Runbook,
    RunSettings,
)
from hostforge.core.models.step import Probe, RiskClass, Step, StepAction

__all__ = [
    "COMPLETED",
    "CircuitSettings",
    # command.py
    "CommandResult",
    # runbook.py
    "HostSpec",
    # ledger.py
    "LedgerEntry",
    "LedgerPolicy",
    # step.py
    "Probe",
    "RetrySettings",
    "RiskClass",
    "RunRecord",
    "RunSettings",
    "RunStatus",
    "Runbook",
    "Step",
    "StepAction",
    "StepStatus",
]
