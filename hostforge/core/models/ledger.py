"""
Ledger models — what happened to each step, and to each run.

A LedgerEntry is one row per (run id, step id, timestamp). Entries are
only ever appended; the latest entry for a step is its current status.
A RunRecord is the one-line summary written when a real run finishes.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StepStatus(StrEnum):
    PENDING = "pending"
    SATISFIED = "satisfied"     # already in the desired state, nothing run
    SUCCEEDED = "succeeded"     # action ran and the postcondition holds
    FAILED = "failed"
    SKIPPED = "skipped"         # blocked by a dependency or a confirmation gate


COMPLETED = frozenset({StepStatus.SATISFIED, StepStatus.SUCCEEDED})


class RunStatus(StrEnum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    ABORTED = "aborted"


class LedgerEntry(BaseModel):
    """A single ledger line."""

    run_id: str
    step_id: str
    status: StepStatus
    timestamp: str = Field(default_factory=_now_iso)

    # Why
    outcome: str | None = None          # succeeded, failed-verified, failed-unknown, probe-unknown
    error_kind: str | None = None       # exception class name from the engine taxonomy
    message: str = ""
    blocked_by: str | None = None       # root step id that kept this one from running
    source: str | None = None           # probe, ledger, action, dry-run

    # Captured evidence
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    attempts: int = 0
    simulated: bool = False

    @property
    def completed(self) -> bool:
        return self.status in COMPLETED


class RunRecord(BaseModel):
    """Summary of one finished run."""

    run_id: str
    host: str = ""
    runbook: str = ""
    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    status: RunStatus = RunStatus.PARTIAL

    steps_total: int = 0
    counts: dict[str, int] = Field(default_factory=dict)   # status → count
    failed_steps: list[str] = Field(default_factory=list)

    context: dict[str, Any] = Field(default_factory=dict)
