"""
Shared test fixtures and configuration.

The simulated machine is a set of facts behind a MockTransport:

    check <fact>   exits 0 when the fact holds, 1 otherwise (a probe)
    make <fact>    makes the fact hold (a mutating action)
    noop <fact>    exits 0 and changes nothing (an action that lies)
    break <fact>   exits 2 and changes nothing
"""

import textwrap
from pathlib import Path

import pytest

from hostforge.adapters.mock import MockTransport
from hostforge.adapters.registry import TransportRegistry
from hostforge.core.models.command import CommandResult
from hostforge.core.models.runbook import Runbook


class SimulatedMachine:
    """A fake host whose state is a set of facts."""

    def __init__(self, name: str = "sim"):
        self.facts: set[str] = set()
        self.actions: list[str] = []
        self.transport = MockTransport(transport_name=name)
        self.transport.set_prefix_response("check ", self.check)
        self.transport.set_prefix_response("make ", self.make)
        self.transport.set_prefix_response("noop ", self._act(0))
        self.transport.set_prefix_response("break ", self._act(2))

    def _result(self, command: str, exit_code: int) -> CommandResult:
        return CommandResult.completed(
            transport=self.transport.name,
            command=command,
            exit_code=exit_code,
        )

    def check(self, command: str) -> CommandResult:
        fact = command.split(" ", 1)[1]
        return self._result(command, 0 if fact in self.facts else 1)

    def make(self, command: str) -> CommandResult:
        self.actions.append(command)
        self.facts.add(command.split(" ", 1)[1])
        return self._result(command, 0)

    def _act(self, exit_code: int):
        def handler(command: str) -> CommandResult:
            self.actions.append(command)
            return self._result(command, exit_code)

        return handler

    def registry(self) -> TransportRegistry:
        registry = TransportRegistry()
        registry.register("local", self.transport)
        registry.register("remote", self.transport)
        return registry


def step(step_id: str, **fields) -> dict:
    """A simulated-machine step: check/make on a fact named after the id."""
    data = {
        "id": step_id,
        "precondition": f"check {step_id}",
        "action": f"make {step_id}",
    }
    data.update(fields)
    return data


def make_runbook(*steps: dict, **fields) -> Runbook:
    return Runbook.model_validate({"name": "test", "steps": list(steps), **fields})


SCENARIO_RUNBOOK = textwrap.dedent("""\
    name: scenario
    steps:
      - id: allow-ssh-rule
        precondition: check allow-ssh-rule
        action: make allow-ssh-rule
      - id: enable-firewall
        depends_on: [allow-ssh-rule]
        precondition: check enable-firewall
        action: make enable-firewall
      - id: disable-password-auth
        depends_on: [verify-fallback-access]
        risk: connectivity-risk
        precondition: check disable-password-auth
        action: make disable-password-auth
        rollback: set PasswordAuthentication yes and restart ssh
""")


@pytest.fixture
def machine() -> SimulatedMachine:
    """A fresh simulated host with no facts."""
    return SimulatedMachine()


@pytest.fixture
def scenario_config(tmp_path: Path) -> Path:
    """The allow-ssh / enable-firewall / disable-password-auth runbook."""
    config = tmp_path / "runbook.yml"
    config.write_text(SCENARIO_RUNBOOK)
    return config
