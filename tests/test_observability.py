"""
Tests for observability — health checks and logging setup.
"""

import logging

from hostforge.adapters.mock import MockTransport
from hostforge.adapters.registry import TransportRegistry
from hostforge.core.models.ledger import LedgerEntry, StepStatus
from hostforge.core.observability.health import (
    ComponentHealth,
    SystemHealth,
    check_circuit_breakers,
    check_fallback_access,
    check_system_health,
    check_transports,
)
from hostforge.core.observability.logging_config import (
    ENV_LOG_LEVEL,
    resolve_level,
    setup_logging,
)
from hostforge.core.persistence.ledger import RunLedger
from hostforge.core.reliability.circuit_breaker import CircuitBreakerRegistry


class TestSystemHealth:
    def test_worst_component_wins(self):
        health = SystemHealth()
        health.add(ComponentHealth(name="a", status="healthy"))
        assert health.status == "healthy"
        health.add(ComponentHealth(name="b", status="degraded"))
        assert health.status == "degraded"
        health.add(ComponentHealth(name="c", status="unhealthy"))
        assert health.status == "unhealthy"

    def test_to_dict(self):
        data = SystemHealth().to_dict()
        assert data["status"] == "healthy"
        assert data["timestamp"]
        assert data["components"] == []


class TestTransportHealth:
    def test_all_reachable(self):
        registry = TransportRegistry()
        registry.register("local", MockTransport())
        registry.register("remote", MockTransport(transport_name="ssh"))
        assert check_transports(registry).status == "healthy"

    def test_remote_down_is_degraded(self):
        registry = TransportRegistry()
        registry.register("local", MockTransport())
        registry.register("remote", MockTransport(transport_name="ssh", available=False))
        component = check_transports(registry)
        assert component.status == "degraded"
        assert "remote" in component.message

    def test_nothing_registered(self):
        assert check_transports(TransportRegistry()).status == "unknown"


class TestBreakerHealth:
    def test_open_breaker_is_unhealthy(self):
        breakers = CircuitBreakerRegistry(failure_threshold=1)
        breakers.get_or_create("ssh").record_failure()
        component = check_circuit_breakers(breakers)
        assert component.status == "unhealthy"
        assert "ssh" in component.details

    def test_system_health_includes_breakers(self):
        registry = TransportRegistry(CircuitBreakerRegistry())
        registry.register("remote", MockTransport(transport_name="ssh"))
        names = [c.name for c in check_system_health(registry).components]
        assert names == ["transports", "circuit_breakers"]


class TestFallbackHealth:
    def test_missing_evidence_is_degraded(self):
        ledger = RunLedger("run-2")
        component = check_fallback_access(ledger, "verify-fallback-access")
        assert component.status == "degraded"
        assert "stay gated" in component.message

    def test_earlier_success_is_healthy(self):
        history = [
            LedgerEntry(run_id="run-1", step_id="verify-fallback-access", status=StepStatus.SUCCEEDED),
        ]
        ledger = RunLedger("run-2", history=history)
        component = check_fallback_access(ledger, "verify-fallback-access")
        assert component.status == "healthy"
        assert component.details["run_id"] == "run-1"

    def test_failure_this_run_withdraws_evidence(self):
        history = [
            LedgerEntry(run_id="run-1", step_id="verify-fallback-access", status=StepStatus.SUCCEEDED),
        ]
        ledger = RunLedger("run-2", history=history)
        ledger.record("verify-fallback-access", StepStatus.FAILED)
        assert check_fallback_access(ledger, "verify-fallback-access").status == "degraded"

    def test_only_checked_when_asked(self):
        health = check_system_health(ledger=RunLedger("run-1"))
        assert health.components == []


class TestLogging:
    def test_flag_precedence(self, monkeypatch):
        monkeypatch.setenv(ENV_LOG_LEVEL, "ERROR")
        assert resolve_level(debug=True, verbose=True) == "DEBUG"
        assert resolve_level(verbose=True) == "INFO"
        assert resolve_level(quiet=True) == "ERROR"
        assert resolve_level() == "ERROR"

    def test_default_is_warning(self, monkeypatch):
        monkeypatch.delenv(ENV_LOG_LEVEL, raising=False)
        assert resolve_level() == "WARNING"

    def test_file_handler_keeps_debug(self, tmp_path):
        log_file = tmp_path / "run.log"
        setup_logging(level="WARNING", log_file=str(log_file), log_file_level="DEBUG")
        try:
            logging.getLogger("hostforge.test").debug("probe transcript")
            for handler in logging.getLogger().handlers:
                handler.flush()
            assert "probe transcript" in log_file.read_text()
            assert logging.getLogger("paramiko").level == logging.WARNING
        finally:
            root = logging.getLogger()
            for handler in list(root.handlers):
                handler.close()
                root.removeHandler(handler)
