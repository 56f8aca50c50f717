"""
Tests for CLI commands — plan, apply, status, config check, ledger, health.

The runbooks here drive real `sh` commands against a scratch directory,
so "the host" is this machine and its state is a handful of marker files.
"""

import json
import textwrap
from pathlib import Path

from click.testing import CliRunner

from hostforge.main import cli


def _write_runbook(tmp_path: Path) -> Path:
    """allow-ssh-rule → enable-firewall, plus a gated disable-password-auth."""
    state = tmp_path / "host"
    state.mkdir()
    content = textwrap.dedent(f"""\
        name: cli-test
        description: "Scratch host"
        steps:
          - id: allow-ssh-rule
            precondition: test -f {state}/allow-ssh
            action: touch {state}/allow-ssh
          - id: enable-firewall
            depends_on: [allow-ssh-rule]
            precondition: test -f {state}/firewall
            action: touch {state}/firewall
          - id: disable-password-auth
            depends_on: [verify-fallback-access]
            risk: connectivity-risk
            precondition: test -f {state}/no-password
            action: touch {state}/no-password
            rollback: restore PasswordAuthentication yes
    """)
    config = tmp_path / "runbook.yml"
    config.write_text(content)
    return config


def _invoke(config: Path, *args: str):
    return CliRunner().invoke(cli, ["--quiet", "--config", str(config), *args])


class TestCLIGlobal:
    """Tests for global CLI behavior."""

    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "idempotent" in result.output
        for command in ("plan", "apply", "status", "config", "ledger", "health"):
            assert command in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_missing_config(self, tmp_path: Path):
        result = _invoke(tmp_path / "nope.yml", "plan")
        assert result.exit_code == 1
        assert "Runbook not found" in result.output


class TestPlanCommand:
    def test_plan_json(self, tmp_path: Path):
        config = _write_runbook(tmp_path)
        result = _invoke(config, "plan", "--json")
        assert result.exit_code == 0

        data = json.loads(result.stdout)
        assert data["order"] == ["allow-ssh-rule", "enable-firewall", "disable-password-auth"]
        states = {s["id"]: s["state"] for s in data["steps"]}
        assert states["allow-ssh-rule"] == "unsatisfied"
        assert states["disable-password-auth"] == "blocked-confirmation"

    def test_plan_changes_nothing(self, tmp_path: Path):
        config = _write_runbook(tmp_path)
        _invoke(config, "plan")
        assert not (tmp_path / "host" / "allow-ssh").exists()
        assert not (tmp_path / ".state").exists()

    def test_plan_no_probe(self, tmp_path: Path):
        config = _write_runbook(tmp_path)
        result = _invoke(config, "plan", "--no-probe", "--json")
        data = json.loads(result.stdout)
        assert data["probed"] is False
        assert data["steps"][0]["state"] == "unprobed"

    def test_plan_unknown_step(self, tmp_path: Path):
        config = _write_runbook(tmp_path)
        result = _invoke(config, "plan", "--step", "nope")
        assert result.exit_code == 1
        assert "nope" in result.output

    def test_plan_human(self, tmp_path: Path):
        config = _write_runbook(tmp_path)
        result = _invoke(config, "plan")
        assert result.exit_code == 0
        assert "cli-test" in result.output
        assert "needs --confirm disable-password-auth" in result.output


class TestApplyCommand:
    def test_apply_without_confirmation_is_partial(self, tmp_path: Path):
        config = _write_runbook(tmp_path)
        result = _invoke(config, "apply", "--json")
        assert result.exit_code == 1

        report = json.loads(result.stdout)["report"]
        assert report["status"] == "partial"
        statuses = {s["id"]: s["status"] for s in report["steps"]}
        assert statuses == {
            "allow-ssh-rule": "succeeded",
            "enable-firewall": "succeeded",
            "disable-password-auth": "skipped",
        }
        skipped = report["steps"][2]
        assert skipped["error_kind"] == "ConfirmationRequired"
        assert (tmp_path / "host" / "firewall").exists()
        assert not (tmp_path / "host" / "no-password").exists()

    def test_second_apply_changes_nothing(self, tmp_path: Path):
        config = _write_runbook(tmp_path)
        _invoke(config, "apply")
        (tmp_path / "host" / "allow-ssh").unlink()

        result = _invoke(config, "apply", "--json")
        report = json.loads(result.stdout)["report"]
        statuses = {s["id"]: s["status"] for s in report["steps"]}
        # trust-ledger: the earlier success stands without a probe
        assert statuses["allow-ssh-rule"] == "satisfied"
        assert not (tmp_path / "host" / "allow-ssh").exists()

    def test_always_reverify_probes_again(self, tmp_path: Path):
        config = _write_runbook(tmp_path)
        _invoke(config, "apply")
        (tmp_path / "host" / "allow-ssh").unlink()

        result = _invoke(config, "apply", "--policy", "always-reverify", "--json")
        report = json.loads(result.stdout)["report"]
        assert report["steps"][0]["status"] == "succeeded"
        assert (tmp_path / "host" / "allow-ssh").exists()

    def test_dry_run_writes_nothing(self, tmp_path: Path):
        config = _write_runbook(tmp_path)
        result = _invoke(config, "apply", "--dry-run", "--json")
        report = json.loads(result.stdout)["report"]
        assert report["dry_run"] is True
        assert report["steps"][0]["simulated"] is True
        assert not (tmp_path / "host" / "allow-ssh").exists()
        assert not (tmp_path / ".state").exists()

    def test_apply_human_summary(self, tmp_path: Path):
        config = _write_runbook(tmp_path)
        result = _invoke(config, "apply")
        assert result.exit_code == 1
        assert "Result: partial" in result.output
        assert "ConfirmationRequired" in result.output

    def test_apply_cycle(self, tmp_path: Path):
        config = tmp_path / "runbook.yml"
        config.write_text(textwrap.dedent("""\
            name: loop
            steps:
              - id: a
                depends_on: [b]
                precondition: "true"
              - id: b
                depends_on: [a]
                precondition: "true"
        """))
        result = _invoke(config, "apply", "--json")
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["cycle"] == ["a", "b", "a"]


class TestStatusCommand:
    def test_status_before_any_run(self, tmp_path: Path):
        config = _write_runbook(tmp_path)
        result = CliRunner().invoke(cli, ["--config", str(config), "status"])
        assert result.exit_code == 0
        assert "cli-test" in result.output
        assert "No runs recorded yet." in result.output

    def test_status_after_run(self, tmp_path: Path):
        config = _write_runbook(tmp_path)
        _invoke(config, "apply")
        result = _invoke(config, "status", "--json")
        assert result.exit_code == 0

        data = json.loads(result.stdout)
        assert data["run_count"] == 1
        assert data["last_run"]["status"] == "partial"
        statuses = {s["id"]: s["status"] for s in data["steps"]}
        assert statuses["enable-firewall"] == "succeeded"
        assert statuses["disable-password-auth"] == "skipped"


class TestConfigCheck:
    def test_valid(self, tmp_path: Path):
        config = _write_runbook(tmp_path)
        result = _invoke(config, "config", "check", "--json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["valid"] is True
        assert data["step_count"] == 3
        assert any("verify-fallback-access" in w for w in data["warnings"])

    def test_invalid_schema(self, tmp_path: Path):
        config = tmp_path / "runbook.yml"
        config.write_text("name: bad\nsteps:\n  - id: x\n    action: touch /tmp/x\n")
        result = _invoke(config, "config", "check")
        assert result.exit_code == 1
        assert "Runbook errors" in result.output

    def test_verification_step_with_precondition_warns(self, tmp_path: Path):
        config = tmp_path / "runbook.yml"
        config.write_text(textwrap.dedent("""\
            name: fallback-pre
            steps:
              - id: verify-fallback-access
                target: local
                precondition: check key-login
        """))
        result = _invoke(config, "config", "check", "--json")
        assert result.exit_code == 0
        warnings = json.loads(result.stdout)["warnings"]
        assert any("Verification step 'verify-fallback-access'" in w for w in warnings)

    def test_unknown_dependency(self, tmp_path: Path):
        config = tmp_path / "runbook.yml"
        config.write_text(textwrap.dedent("""\
            name: dangling
            steps:
              - id: a
                depends_on: [ghost]
                precondition: "true"
        """))
        result = _invoke(config, "config", "check", "--json")
        assert result.exit_code == 1
        assert any("ghost" in e for e in json.loads(result.stdout)["errors"])


class TestLedgerCommands:
    def test_runs_empty(self, tmp_path: Path):
        config = _write_runbook(tmp_path)
        result = _invoke(config, "ledger", "runs")
        assert result.exit_code == 0
        assert "No runs recorded yet." in result.output

    def test_runs_and_show(self, tmp_path: Path):
        config = _write_runbook(tmp_path)
        _invoke(config, "apply")

        runs = json.loads(_invoke(config, "ledger", "runs", "--json").stdout)
        assert len(runs) == 1
        run_id = runs[0]["run_id"]
        assert runs[0]["counts"]["skipped"] == 1

        entries = json.loads(_invoke(config, "ledger", "show", run_id, "--json").stdout)
        assert [e["step_id"] for e in entries] == [
            "allow-ssh-rule",
            "enable-firewall",
            "disable-password-auth",
        ]

        with_pending = json.loads(_invoke(config, "ledger", "show", "--all", "--json").stdout)
        assert any(e["status"] == "pending" for e in with_pending)

    def test_show_unknown_run(self, tmp_path: Path):
        config = _write_runbook(tmp_path)
        _invoke(config, "apply")
        result = _invoke(config, "ledger", "show", "run-nope")
        assert result.exit_code == 1


class TestHealthCommand:
    def test_local_host_without_fallback_evidence(self, tmp_path: Path):
        config = _write_runbook(tmp_path)
        result = _invoke(config, "health", "--json")
        assert result.exit_code == 1

        data = json.loads(result.stdout)
        components = {c["name"]: c["status"] for c in data["components"]}
        assert components == {
            "transports": "healthy",
            "circuit_breakers": "healthy",
            "fallback_access": "degraded",
        }
        assert data["status"] == "degraded"

    def test_no_risky_steps_is_healthy(self, tmp_path: Path):
        config = tmp_path / "runbook.yml"
        config.write_text("name: plain\nsteps:\n  - id: a\n    precondition: \"true\"\n")
        result = _invoke(config, "health", "--json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["status"] == "healthy"
        assert "fallback_access" not in [c["name"] for c in data["components"]]
