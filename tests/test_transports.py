"""
Tests for transports — local shell, mock, sudo wrapping, registry.
"""

from pathlib import Path

from hostforge.adapters.base import wrap_sudo
from hostforge.adapters.mock import MockTransport
from hostforge.adapters.registry import TransportRegistry
from hostforge.adapters.shell.command import LocalShellTransport
from hostforge.adapters.shell.ssh import SSHTransport
from hostforge.core.models.command import CommandResult
from hostforge.core.models.runbook import HostSpec


class TestLocalShellTransport:
    def test_available(self):
        assert LocalShellTransport().is_available()

    def test_captures_output_and_exit(self):
        result = LocalShellTransport().run("echo hello; echo oops >&2; exit 3", timeout=10)
        assert result.ran
        assert result.exit_code == 3
        assert result.stdout.strip() == "hello"
        assert result.stderr.strip() == "oops"
        assert result.transport == "local"

    def test_missing_binary(self):
        result = LocalShellTransport().run("definitely-not-a-command-hf", timeout=10)
        assert result.exit_code == 127
        assert not result.ran
        assert result.error

    def test_timeout(self):
        result = LocalShellTransport().run("sleep 5", timeout=0.2)
        assert result.timed_out
        assert result.transport_failed

    def test_cwd(self, tmp_path: Path):
        (tmp_path / "marker").write_text("x")
        result = LocalShellTransport(cwd=str(tmp_path)).run("test -f marker", timeout=10)
        assert result.exit_code == 0

    def test_real_probe_and_action(self, tmp_path: Path):
        transport = LocalShellTransport()
        target = tmp_path / "flag"
        assert transport.run(f"test -f {target}", timeout=10).exit_code == 1
        assert transport.run(f"touch {target}", timeout=10).exit_code == 0
        assert transport.run(f"test -f {target}", timeout=10).exit_code == 0


class TestWrapSudo:
    def test_quotes_command(self):
        assert wrap_sudo("echo 'a b' > /etc/x") == "sudo -n sh -c 'echo '\"'\"'a b'\"'\"' > /etc/x'"

    def test_non_interactive(self):
        assert wrap_sudo("true").startswith("sudo -n ")


class TestMockTransport:
    def test_default_success(self):
        mock = MockTransport()
        result = mock.run("anything", timeout=1)
        assert result.exit_code == 0
        assert mock.call_log == ["anything"]

    def test_longest_prefix_wins(self):
        mock = MockTransport()
        mock.set_prefix_response("apt", CommandResult.completed(transport="mock", command="apt", exit_code=1))
        mock.set_prefix_response("apt-get install", CommandResult.completed(
            transport="mock", command="apt-get install", exit_code=2,
        ))
        assert mock.run("apt-get install -y ufw", timeout=1).exit_code == 2
        assert mock.run("apt update", timeout=1).exit_code == 1

    def test_exact_beats_prefix(self):
        mock = MockTransport()
        mock.set_prefix_response("ufw", CommandResult.completed(transport="mock", command="ufw", exit_code=1))
        mock.set_exit("ufw status", 0, stdout="Status: active")
        assert mock.run("ufw status", timeout=1).stdout == "Status: active"

    def test_reset(self):
        mock = MockTransport()
        mock.set_exit("x", 1)
        mock.run("x", timeout=1)
        mock.reset()
        assert mock.call_count == 0
        assert mock.run("x", timeout=1).exit_code == 0


class TestTransportRegistry:
    def test_local_host_shares_one_transport(self):
        registry = TransportRegistry.for_host(HostSpec())
        assert registry.get("local") is registry.get("remote")
        assert isinstance(registry.get("local"), LocalShellTransport)

    def test_remote_host_uses_ssh(self):
        registry = TransportRegistry.for_host(HostSpec(address="10.0.0.5", user="admin"))
        assert isinstance(registry.get("remote"), SSHTransport)
        assert isinstance(registry.get("local"), LocalShellTransport)
        assert sorted(registry.list_targets()) == ["local", "remote"]

    def test_transport_status(self):
        registry = TransportRegistry()
        registry.register("remote", MockTransport(available=False))
        status = registry.transport_status()
        assert status["remote"]["available"] is False
        assert status["remote"]["type"] == "MockTransport"

    def test_close(self):
        mock = MockTransport()
        registry = TransportRegistry()
        registry.register("local", mock)
        registry.register("remote", mock)
        registry.close()
        assert mock.closed
