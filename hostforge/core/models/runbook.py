"""
Runbook model — the whole provisioning plan as data.

A runbook is loaded from runbook.yml: the target host, engine settings,
substitution variables, and the ordered list of steps. Keeping it as
data means the plan is reviewable and versionable without touching
engine code.
"""

from __future__ import annotations

import re
from enum import StrEnum

from pydantic import BaseModel, Field, model_validator

from hostforge.core.models.step import Step

LOCAL_ADDRESSES = ("", "local", "localhost", "127.0.0.1", "::1")


class LedgerPolicy(StrEnum):
    """How much a rerun trusts earlier ledger entries."""

    TRUST_LEDGER = "trust-ledger"
    ALWAYS_REVERIFY = "always-reverify"


class HostSpec(BaseModel):
    """Where remote steps run and how to log in."""

    address: str | None = None      # None/localhost = provision this machine
    user: str | None = None
    port: int = 22
    identity_file: str | None = None
    password_env: str = "HOSTFORGE_SSH_PASSWORD"
    connect_timeout: float = 20.0
    strict_host_keys: bool = False

    @property
    def is_local(self) -> bool:
        return (self.address or "").strip().lower() in LOCAL_ADDRESSES

    @property
    def key(self) -> str:
        """Filesystem-safe identity of the target, used to name its ledger."""
        if self.is_local:
            return "local"
        user = f"{self.user}@" if self.user else ""
        raw = f"{user}{self.address}_{self.port}"
        return re.sub(r"[^A-Za-z0-9._@-]", "_", raw)

    @property
    def display(self) -> str:
        if self.is_local:
            return "localhost"
        user = f"{self.user}@" if self.user else ""
        port = f":{self.port}" if self.port != 22 else ""
        return f"{user}{self.address}{port}"


class RetrySettings(BaseModel):
    """Retry policy for actions whose transport failed mid-flight."""

    max_attempts: int = Field(default=1, ge=1)
    base_delay: float = Field(default=5.0, ge=0)
    max_delay: float = Field(default=60.0, ge=0)


class CircuitSettings(BaseModel):
    failure_threshold: int = Field(default=3, ge=1)
    recovery_timeout: float = Field(default=30.0, ge=0)


class RunSettings(BaseModel):
    """Engine knobs — timeouts, ledger policy, retry."""

    action_timeout: int = Field(default=1800, gt=0)   # package managers are slow
    probe_timeout: int = Field(default=60, gt=0)
    ledger_policy: LedgerPolicy = LedgerPolicy.TRUST_LEDGER
    fallback_step: str = "verify-fallback-access"
    output_limit: int = Field(default=8000, ge=0)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    circuit_breaker: CircuitSettings = Field(default_factory=CircuitSettings)


class Runbook(BaseModel):
    """Root model — serialized as runbook.yml."""

    name: str
    description: str = ""
    host: HostSpec = Field(default_factory=HostSpec)
    settings: RunSettings = Field(default_factory=RunSettings)
    vars: dict[str, str] = Field(default_factory=dict)
    steps: list[Step] = Field(default_factory=list)

    @model_validator(mode="after")
    def unique_step_ids(self) -> Runbook:
        seen: set[str] = set()
        dupes: list[str] = []
        for step in self.steps:
            if step.id in seen:
                dupes.append(step.id)
            seen.add(step.id)
        if dupes:
            raise ValueError(f"duplicate step ids: {', '.join(dupes)}")
        return self

    def by_id(self) -> dict[str, Step]:
        return {s.id: s for s in self.steps}

    def get_step(self, step_id: str) -> Step | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    @property
    def step_ids(self) -> list[str]:
        return [s.id for s in self.steps]
