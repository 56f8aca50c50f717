"""
Config check use case — validate runbook.yml and report issues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hostforge.core.config.loader import ConfigError, load_runbook, resolve_runbook_path
from hostforge.core.engine.errors import CycleError, UnknownDependencyError
from hostforge.core.engine.sequencer import sequence
from hostforge.core.models.runbook import Runbook


@dataclass
class ConfigCheckResult:
    """Result of runbook validation."""

    valid: bool = False
    runbook: Runbook | None = None
    config_path: Path | None = None
    order: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "runbook_name": self.runbook.name if self.runbook else None,
            "host": self.runbook.host.display if self.runbook else None,
            "step_count": len(self.runbook.steps) if self.runbook else 0,
            "order": self.order,
        }


def check_config(
    config_path: Path | None = None,
    host_overrides: dict[str, Any] | None = None,
) -> ConfigCheckResult:
    """Validate the runbook: schema, dependencies, cycles, safety hints.

    Args:
        config_path: Optional explicit path to runbook.yml.
        host_overrides: Host fields from the command line.

    Returns:
        ConfigCheckResult with validation status and any issues.
    """
    result = ConfigCheckResult()

    try:
        config_path = resolve_runbook_path(config_path)
        result.config_path = config_path
        runbook = load_runbook(config_path, host_overrides)
        result.runbook = runbook
    except ConfigError as e:
        result.errors.append(str(e))
        return result

    if not runbook.steps:
        result.warnings.append("No steps defined. The runbook has nothing to do.")

    fallback = runbook.settings.fallback_step
    try:
        result.order = [s.id for s in sequence(runbook.steps, fallback)]
    except (CycleError, UnknownDependencyError) as e:
        result.errors.append(str(e))

    # Semantic checks
    risky = [s for s in runbook.steps if s.is_connectivity_risk]
    fallback_step = runbook.get_step(fallback)

    if risky and fallback_step is None:
        result.warnings.append(
            f"Connectivity-risk steps ({', '.join(s.id for s in risky)}) but no "
            f"'{fallback}' step; they will only run once the ledger holds a "
            f"succeeded '{fallback}' from an earlier run."
        )

    if fallback_step is not None and fallback_step.is_connectivity_risk:
        result.errors.append(f"Fallback step '{fallback}' must not be connectivity-risk itself.")

    for step in risky:
        if not step.rollback:
            result.warnings.append(f"Connectivity-risk step '{step.id}' has no rollback hint.")

    for step in runbook.steps:
        if step.action is not None and step.precondition is None:
            result.warnings.append(
                f"Step '{step.id}' has no precondition; its postcondition decides "
                f"whether the action runs."
            )
        if step.is_verification and step.precondition is not None:
            result.warnings.append(
                f"Verification step '{step.id}' has a precondition; it is run as the "
                f"check itself and never skips the step."
            )

    result.valid = len(result.errors) == 0
    return result
