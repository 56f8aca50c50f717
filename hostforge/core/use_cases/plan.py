"""
Plan use case — compute the order and show what apply would do.

Sequences the runbook (a cycle stops everything here, before any
probe) and, unless told otherwise, probes every precondition. Probes
are read-only; nothing is changed and nothing is written to the ledger.
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
from hostforge.core.engine.prober import StateProber
from hostforge.core.engine.runner import RunPlan, plan_run, preview_run
from hostforge.core.models.runbook import LedgerPolicy, Runbook
from hostforge.core.persistence.ledger import RunLedger, default_ledger_path

logger = logging.getLogger(__name__)


@dataclass
class PlanResult:
    """Result of planning a run."""

    plan: RunPlan | None = None
    runbook: Runbook | None = None
    config_path: Path | None = None
    cycle: list[str] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.error:
            result["error"] = self.error
            if self.cycle:
                result["cycle"] = self.cycle
            return result

        result["config_path"] = str(self.config_path)
        if self.plan:
            result.update(self.plan.to_dict())
        return result


def plan_runbook(
    config_path: Path | None = None,
    host_overrides: dict[str, Any] | None = None,
    steps: list[str] | None = None,
    confirmed: Collection[str] = (),
    probe: bool = True,
    policy: LedgerPolicy | None = None,
    registry: TransportRegistry | None = None,
) -> PlanResult:
    """Compute the run plan.

    Args:
        config_path: Optional explicit path to runbook.yml.
        host_overrides: Host fields from the command line.
        steps: Narrow the plan to these steps and their dependencies.
        confirmed: Connectivity-risk steps confirmed for this run.
        probe: Probe preconditions (read-only). False = order only.
        policy: Override the runbook's ledger policy.
        registry: Optional pre-configured transport registry.

    Returns:
        PlanResult with the plan, or an error.
    """
    result = PlanResult()

    try:
        config_path = resolve_runbook_path(config_path)
        result.config_path = config_path
        runbook = load_runbook(config_path, host_overrides)
        result.runbook = runbook
    except ConfigError as e:
        result.error = str(e)
        return result

    try:
        order = plan_run(runbook, steps)
    except CycleError as e:
        result.error = str(e)
        result.cycle = e.cycle
        return result
    except HostforgeError as e:
        result.error = str(e)
        return result

    ledger = RunLedger.open(
        default_ledger_path(runbook_root(config_path), runbook.host.key),
        run_id="plan",
        persist=False,
    )

    owns_registry = registry is None and probe
    if owns_registry:
        registry = TransportRegistry.for_host(runbook.host, runbook.settings)

    try:
        prober = (
            StateProber(registry, runbook.settings.probe_timeout)
            if probe and registry is not None
            else None
        )
        result.plan = preview_run(runbook, order, ledger, prober, confirmed, policy)
    finally:
        if owns_registry and registry is not None:
            registry.close()

    return result
