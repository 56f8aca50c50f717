"""
Tests for the runbook loader — YAML, overrides, variable substitution.
"""

import textwrap
from pathlib import Path

import pytest

from hostforge.core.config.loader import (
    RUNBOOK_FILE,
    ConfigError,
    find_runbook_file,
    load_runbook,
    resolve_runbook_path,
    substitute,
)
from hostforge.core.engine.sequencer import sequence
from hostforge.core.models.runbook import LedgerPolicy


def write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / RUNBOOK_FILE
    path.write_text(textwrap.dedent(content))
    return path


class TestLoadRunbook:
    def test_full_runbook(self, tmp_path: Path):
        path = write(tmp_path, """\
            name: web-1
            description: Fresh Ubuntu box
            host:
              address: 10.0.0.5
              user: admin
            settings:
              action_timeout: 600
              ledger_policy: always-reverify
              retry:
                max_attempts: 3
            steps:
              - id: install-ufw
                precondition: command -v ufw
                action: apt-get install -y ufw
                sudo: true
        """)
        runbook = load_runbook(path)
        assert runbook.name == "web-1"
        assert runbook.host.address == "10.0.0.5"
        assert runbook.settings.action_timeout == 600
        assert runbook.settings.ledger_policy == LedgerPolicy.ALWAYS_REVERIFY
        assert runbook.settings.retry.max_attempts == 3
        assert runbook.steps[0].sudo

    def test_name_defaults_to_directory(self, tmp_path: Path):
        path = write(tmp_path, "steps: []\n")
        assert load_runbook(path).name == tmp_path.name

    def test_host_overrides(self, tmp_path: Path):
        path = write(tmp_path, """\
            name: rb
            host: {address: 10.0.0.5, user: admin}
        """)
        runbook = load_runbook(path, {"address": "10.0.0.9", "user": None, "port": 2222})
        assert runbook.host.address == "10.0.0.9"
        assert runbook.host.user == "admin"
        assert runbook.host.port == 2222

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_runbook(tmp_path / "nope.yml")

    def test_invalid_yaml(self, tmp_path: Path):
        path = write(tmp_path, "name: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_runbook(path)

    def test_not_a_mapping(self, tmp_path: Path):
        path = write(tmp_path, "- a\n- b\n")
        with pytest.raises(ConfigError, match="Expected a YAML mapping"):
            load_runbook(path)

    def test_schema_error_names_the_file(self, tmp_path: Path):
        path = write(tmp_path, """\
            name: rb
            steps:
              - id: blind
                action: rm -rf /tmp/x
        """)
        with pytest.raises(ConfigError) as exc:
            load_runbook(path)
        assert str(path) in str(exc.value)


class TestVariables:
    def test_runbook_vars_and_builtins(self, tmp_path: Path):
        path = write(tmp_path, """\
            name: rb
            host: {address: 10.0.0.5, user: admin, port: 2222}
            vars:
              key: ~/.ssh/id_ed25519
            steps:
              - id: install-key
                target: local
                precondition: ssh -i ${key} -p ${host_port} ${host_user}@${host_address} true
                action: ssh-copy-id -i ${key}.pub ${host_user}@${host_address}
        """)
        step = load_runbook(path).steps[0]
        assert step.precondition.command == "ssh -i ~/.ssh/id_ed25519 -p 2222 admin@10.0.0.5 true"
        assert step.action.command == "ssh-copy-id -i ~/.ssh/id_ed25519.pub admin@10.0.0.5"

    def test_overrides_reach_builtins(self, tmp_path: Path):
        path = write(tmp_path, """\
            name: rb
            steps:
              - id: ping
                target: local
                precondition: ping -c1 ${host_address}
        """)
        step = load_runbook(path, {"address": "192.168.1.20"}).steps[0]
        assert step.precondition.command == "ping -c1 192.168.1.20"

    def test_environment_and_precedence(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("hf_mirror", "from-env")
        monkeypatch.setenv("hf_shadowed", "from-env")
        path = write(tmp_path, """\
            name: rb
            vars:
              hf_shadowed: from-runbook
            steps:
              - id: mirror
                precondition: grep -q ${hf_mirror} /etc/apt/sources.list
                action: set-mirror ${hf_mirror} ${hf_shadowed}
        """)
        step = load_runbook(path).steps[0]
        assert step.action.command == "set-mirror from-env from-runbook"

    def test_upper_case_names_never_read_from_environment(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("UBUNTU_PRO_TOKEN", "s3cret")
        path = write(tmp_path, """\
            name: rb
            steps:
              - id: pro
                precondition: pro status
                action: pro attach "${UBUNTU_PRO_TOKEN}"
        """)
        step = load_runbook(path).steps[0]
        assert step.action.command == 'pro attach "${UBUNTU_PRO_TOKEN}"'
        assert "s3cret" not in step.action.command

    def test_unknown_and_shell_variables_untouched(self):
        variables = {"HOME": "/home/operator", "known": "yes"}
        assert substitute("echo $HOME ${missing} ${known} $$", variables) == (
            "echo $HOME ${missing} yes $$"
        )

    def test_substitute_nested(self):
        data = {"a": ["${x}", {"b": "${x}-${x}"}], "n": 3}
        assert substitute(data, {"x": "1"}) == {"a": ["1", {"b": "1-1"}], "n": 3}


class TestFindRunbook:
    def test_walks_up(self, tmp_path: Path):
        write(tmp_path, "name: rb\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_runbook_file(nested) == (tmp_path / RUNBOOK_FILE).resolve()

    def test_none_found(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        if find_runbook_file() is None:
            with pytest.raises(ConfigError, match="No runbook.yml found"):
                resolve_runbook_path()


class TestShippedRunbook:
    """runbooks/ubuntu-server.yml must stay loadable and well-ordered."""

    PATH = Path(__file__).resolve().parent.parent / "runbooks" / "ubuntu-server.yml"

    def test_loads_and_sequences(self):
        runbook = load_runbook(self.PATH)
        order = [s.id for s in sequence(runbook.steps, runbook.settings.fallback_step)]

        assert order.index("verify-fallback-access") < order.index("disable-password-auth")
        assert order.index("disable-password-auth") < order.index("restart-ssh")
        assert order.index("allow-ssh-rule") < order.index("enable-firewall")

    def test_risky_steps_have_rollback(self):
        runbook = load_runbook(self.PATH)
        risky = [s for s in runbook.steps if s.is_connectivity_risk]
        assert {s.id for s in risky} == {"disable-password-auth", "restart-ssh", "configure-static-ip"}
        assert all(s.rollback for s in risky)

    def test_pro_token_stays_out_of_commands(self, monkeypatch):
        monkeypatch.setenv("UBUNTU_PRO_TOKEN", "s3cret")
        runbook = load_runbook(self.PATH)
        assert "install-pro-token" in runbook.get_step("ubuntu-pro-attach").depends_on
        commands = [s.action.command for s in runbook.steps if s.action]
        assert not any("s3cret" in c for c in commands)

    def test_host_variables_substituted(self):
        runbook = load_runbook(self.PATH, {"address": "198.51.100.7"})
        step = runbook.get_step("install-authorized-key")
        assert "admin@198.51.100.7" in step.precondition.command
        assert "-p 22 " in step.precondition.command
