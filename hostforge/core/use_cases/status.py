"""
Status use case — last run summary and where every step stands.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hostforge.core.config.loader import ConfigError, load_runbook, resolve_runbook_path, runbook_root
from hostforge.core.models.ledger import LedgerEntry, RunRecord
from hostforge.core.models.runbook import Runbook
from hostforge.core.persistence.ledger import default_ledger_path, read_ledger
from hostforge.core.persistence.run_history import RunHistory


@dataclass
class StatusResult:
    """Aggregated runbook status."""

    runbook: Runbook | None = None
    config_path: Path | None = None
    ledger_path: Path | None = None
    last_run: RunRecord | None = None
    latest: dict[str, LedgerEntry] = field(default_factory=dict)
    run_count: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.error:
            result["error"] = self.error
            return result

        assert self.runbook is not None
        result["runbook"] = {
            "name": self.runbook.name,
            "description": self.runbook.description,
            "host": self.runbook.host.display,
            "config_path": str(self.config_path),
        }
        result["ledger_path"] = str(self.ledger_path)
        result["run_count"] = self.run_count
        result["last_run"] = self.last_run.model_dump(mode="json") if self.last_run else None

        steps = []
        for step in self.runbook.steps:
            entry = self.latest.get(step.id)
            steps.append({
                "id": step.id,
                "risk": step.risk.value,
                "status": entry.status.value if entry else None,
                "run_id": entry.run_id if entry else None,
                "timestamp": entry.timestamp if entry else None,
                "message": entry.message if entry else "",
            })
        result["steps"] = steps
        return result


def get_status(
    config_path: Path | None = None,
    host_overrides: dict[str, Any] | None = None,
) -> StatusResult:
    """Read the runbook, its host ledger and the run history.

    Touches no machine.
    """
    result = StatusResult()

    try:
        config_path = resolve_runbook_path(config_path)
        result.config_path = config_path
        runbook = load_runbook(config_path, host_overrides)
        result.runbook = runbook
    except ConfigError as e:
        result.error = str(e)
        return result

    root = runbook_root(config_path)
    result.ledger_path = default_ledger_path(root, runbook.host.key)

    for entry in read_ledger(result.ledger_path):
        result.latest[entry.step_id] = entry

    history = RunHistory(root=root)
    host_runs = history.read_all(host=runbook.host.key)
    result.run_count = len(host_runs)
    result.last_run = host_runs[-1] if host_runs else None

    return result
