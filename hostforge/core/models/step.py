"""
Step model — the declarative unit of provisioning.

A step says three things about the machine:

    precondition   → "is this already done?"      (a read-only probe)
    action         → "do it"                      (a mutating command)
    postcondition  → "did it actually happen?"    (a read-only probe)

Success is always judged by the postcondition, never by the action's
exit code. `apt install` on an installed package exits 0 without
changing anything; `ufw enable` can exit 0 and leave the firewall off.
"""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

STEP_ID_PATTERN = r"^[a-z0-9][a-z0-9._-]*$"


class RiskClass(StrEnum):
    """How dangerous a step is to the operator's own access path."""

    SAFE = "safe"
    CONNECTIVITY_RISK = "connectivity-risk"


def _command_shorthand(data: Any) -> Any:
    """Allow `precondition: "test -f /x"` as shorthand for {command: ...}."""
    if isinstance(data, str):
        return {"command": data}
    return data


class Probe(BaseModel):
    """A read-only check of machine state.

    Exit codes decide the verdict; optional output checks can demote a
    "satisfied" exit to "unsatisfied" (e.g. `ufw status` always exits 0,
    so `contains: "Status: active"` carries the actual signal).
    """

    command: str
    satisfied_exit: list[int] = Field(default_factory=lambda: [0])
    unsatisfied_exit: list[int] = Field(default_factory=lambda: [1])
    contains: str | None = None     # stdout must contain this substring
    matches: str | None = None      # stdout must match this regex (search)
    timeout: int | None = None      # seconds; None = settings.probe_timeout

    @model_validator(mode="before")
    @classmethod
    def accept_shorthand(cls, data: Any) -> Any:
        return _command_shorthand(data)

    @field_validator("command")
    @classmethod
    def command_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("probe command must not be empty")
        return value

    @field_validator("matches")
    @classmethod
    def matches_is_regex(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"invalid regex {value!r}: {e}") from e
        return value

    @model_validator(mode="after")
    def exit_codes_disjoint(self) -> Probe:
        overlap = set(self.satisfied_exit) & set(self.unsatisfied_exit)
        if overlap:
            raise ValueError(
                f"exit codes {sorted(overlap)} are both satisfied and unsatisfied"
            )
        return self

    def output_ok(self, stdout: str) -> bool:
        """Whether stdout passes the optional content checks."""
        if self.contains is not None and self.contains not in stdout:
            return False
        if self.matches is not None and re.search(self.matches, stdout, re.MULTILINE) is None:
            return False
        return True


class StepAction(BaseModel):
    """The mutating command of a step."""

    command: str
    ok_exit: list[int] = Field(default_factory=lambda: [0])
    timeout: int | None = None      # seconds; None = settings.action_timeout

    @model_validator(mode="before")
    @classmethod
    def accept_shorthand(cls, data: Any) -> Any:
        return _command_shorthand(data)

    @field_validator("command")
    @classmethod
    def command_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("action command must not be empty")
        return value


class Step(BaseModel):
    """A named provisioning unit."""

    id: str = Field(pattern=STEP_ID_PATTERN)
    description: str = ""
    depends_on: list[str] = Field(default_factory=list)
    target: Literal["remote", "local"] = "remote"
    risk: RiskClass = RiskClass.SAFE

    precondition: Probe | None = None
    action: StepAction | None = None
    postcondition: Probe | None = None

    rollback: str = ""              # hint shown to the operator on failure
    reverify: bool = False          # cheap postcondition: re-probe even when the ledger vouches
    sudo: bool = False

    @field_validator("depends_on")
    @classmethod
    def dedupe_dependencies(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))

    @model_validator(mode="after")
    def has_observable_state(self) -> Step:
        if self.precondition is None and self.postcondition is None:
            kind = "action" if self.action else "verification"
            raise ValueError(
                f"step '{self.id}': {kind} step needs a precondition or a postcondition"
            )
        return self

    @property
    def is_verification(self) -> bool:
        """A step with no action: its postcondition check *is* the work."""
        return self.action is None

    @property
    def is_connectivity_risk(self) -> bool:
        return self.risk == RiskClass.CONNECTIVITY_RISK

    @property
    def done_check(self) -> Probe | None:
        """The check that says the step's work is already done.

        The precondition, or the postcondition for an action step that
        declares none. A verification step has no such check: running
        its check is the step, so it is never short-circuited.
        """
        if self.is_verification:
            return None
        return self.precondition or self.postcondition

    @property
    def effective_postcondition(self) -> Probe:
        """Postcondition, falling back to the precondition.

        The precondition describes the desired end state, so it is the
        natural thing to re-check after the action.
        """
        probe = self.postcondition or self.precondition
        assert probe is not None  # guaranteed by has_observable_state
        return probe
