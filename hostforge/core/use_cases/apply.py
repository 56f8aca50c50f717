"""
Apply use case — execute the runbook against its host.

The full vertical slice: load the runbook, sequence it, open the host
ledger, run every step through the executor, and write the run summary.
A dry-run reads the ledger but writes nothing and runs no action.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from hostforge.adapters.registry import TransportRegistry
from hostforge.core.config.loader import ConfigError, load_runbook, resolve_runbook_path, runbook_root
from hostforge.core.engine.errors import CycleError, HostforgeError
from hostforge.core.engine.executor import Executor
from hostforge.core.engine.runner import RunReport, execute_run, generate_run_id, plan_run
from hostforge.core.models.runbook import LedgerPolicy, Runbook
from hostforge.core.persistence.ledger import RunLedger, default_ledger_path
from hostforge.core.persistence.run_history import RunHistory

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Result of applying a runbook."""

    report: RunReport | None = None
    runbook: Runbook | None = None
    config_path: Path | None = None
    ledger_path: Path | None = None
    cycle: list[str] | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.report is not None and self.report.ok

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.error:
            result["error"] = self.error
            if self.cycle:
                result["cycle"] = self.cycle
            return result

        result["config_path"] = str(self.config_path)
        result["ledger_path"] = str(self.ledger_path)
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def apply_runbook(
    config_path: Path | None = None,
    host_overrides: dict[str, Any] | None = None,
    steps: list[str] | None = None,
    confirmed: Collection[str] = (),
    policy: LedgerPolicy | None = None,
    dry_run: bool = False,
    registry: TransportRegistry | None = None,
) -> ApplyResult:
    """Run the runbook.

    Args:
        config_path: Optional explicit path to runbook.yml.
        host_overrides: Host fields from the command line.
        steps: Narrow the run to these steps and their dependencies.
        confirmed: Connectivity-risk steps confirmed for this run.
        policy: Override the runbook's ledger policy.
        dry_run: Probe and report, but run no action and write nothing.
        registry: Optional pre-configured transport registry.

    Returns:
        ApplyResult with the run report, or an error.
    """
    result = ApplyResult()

    # ── Load runbook ────────────────────────────────────────────
    try:
        config_path = resolve_runbook_path(config_path)
        result.config_path = config_path
        runbook = load_runbook(config_path, host_overrides)
        result.runbook = runbook
    except ConfigError as e:
        result.error = str(e)
        return result

    # ── Sequence (fatal errors stop before any probe) ───────────
    try:
        order = plan_run(runbook, steps)
    except CycleError as e:
        result.error = str(e)
        result.cycle = e.cycle
        return result
    except HostforgeError as e:
        result.error = str(e)
        return result

    # ── Open ledger ─────────────────────────────────────────────
    root = runbook_root(config_path)
    ledger_path = default_ledger_path(root, runbook.host.key)
    result.ledger_path = ledger_path
    ledger = RunLedger.open(ledger_path, generate_run_id(), persist=not dry_run)

    # ── Execute ─────────────────────────────────────────────────
    owns_registry = registry is None
    if registry is None:
        registry = TransportRegistry.for_host(runbook.host, runbook.settings)

    try:
        executor = Executor(registry, runbook.settings)
        report = execute_run(
            runbook,
            order,
            executor,
            ledger,
            confirmed=confirmed,
            policy=policy,
            dry_run=dry_run,
        )
    finally:
        if owns_registry:
            registry.close()

    result.report = report

    # ── Write run summary ───────────────────────────────────────
    if not dry_run:
        RunHistory(root=root).write(report.to_record())

    return result
