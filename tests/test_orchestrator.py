"""Tests for parallel probe orchestration (ProbeOrchestrator).

Covers:
- Isolation of failing probes
- Diagnosis outcomes (Healthy, Network, Connection, Error)
- Deadline abandonment and caller cancellation with partial results
- Probe set validation
- Retry integration and run correlation ids
"""

import asyncio
import time

import pytest

from endpoint_diagnostics.collector import FatalFailure
from endpoint_diagnostics.config.models import RetryPolicy
from endpoint_diagnostics.events import EventPipeline, EventType
from endpoint_diagnostics.triage import (
    DiagnosisCategory,
    Probe,
    ProbeOrchestrator,
    ProbeRole,
    TestResult,
)
from endpoint_diagnostics.utils.cancellation import CancellationToken


@pytest.fixture
def orchestrator(fast_config):
    return ProbeOrchestrator(fast_config.triage)


class TestDiagnosis:
    """Diagnosis derived from a complete pass."""

    @pytest.mark.asyncio
    async def test_all_probes_healthy(self, orchestrator, endpoint, healthy_probes, make_probe):
        probes = healthy_probes + [
            make_probe("saturation", ProbeRole.SATURATION, metrics={"utilization_percent": 35.0}),
            make_probe("contention", ProbeRole.CONTENTION, metrics={"blocked_sessions": 0.0}),
        ]
        result = await orchestrator.run_triage(endpoint, probes)
        assert result.diagnosis.category is DiagnosisCategory.HEALTHY
        assert result.diagnosis.confidence == pytest.approx(0.7)
        assert [r.name for r in result.results] == [
            "network",
            "connection",
            "operation",
            "saturation",
            "contention",
        ]
        assert all(r.success for r in result.results)
        assert not result.degraded

    @pytest.mark.asyncio
    async def test_network_failure(self, orchestrator, endpoint, make_probe):
        probes = [
            make_probe("network", ProbeRole.NETWORK, success=False),
            make_probe("connection", ProbeRole.CONNECTION),
        ]
        result = await orchestrator.run_triage(endpoint, probes)
        assert result.diagnosis.category is DiagnosisCategory.NETWORK
        assert result.diagnosis.confidence == pytest.approx(0.9)
        assert "connectivity" in result.diagnosis.summary.lower()

    @pytest.mark.asyncio
    async def test_connection_failure_with_healthy_network(self, orchestrator, endpoint, make_probe):
        probes = [
            make_probe("network", ProbeRole.NETWORK),
            make_probe("connection", ProbeRole.CONNECTION, success=False),
        ]
        result = await orchestrator.run_triage(endpoint, probes)
        assert result.diagnosis.category is DiagnosisCategory.CONNECTION
        assert result.diagnosis.confidence == pytest.approx(0.95)

    @pytest.mark.asyncio
    async def test_auxiliary_failure_is_residual_healthy(self, orchestrator, endpoint, make_probe):
        probes = [
            make_probe("network", ProbeRole.NETWORK),
            make_probe("disk", ProbeRole.CUSTOM, success=False),
        ]
        result = await orchestrator.run_triage(endpoint, probes)
        assert result.diagnosis.category is DiagnosisCategory.HEALTHY
        assert result.diagnosis.confidence == pytest.approx(0.4)
        assert "disk" in result.diagnosis.details

    @pytest.mark.asyncio
    async def test_orchestration_error_yields_error_diagnosis(
        self, orchestrator, endpoint, healthy_probes, monkeypatch
    ):
        def broken(*args, **kwargs):
            raise RuntimeError("rule table corrupted")

        monkeypatch.setattr("endpoint_diagnostics.triage.orchestrator.diagnose", broken)
        result = await orchestrator.run_triage(endpoint, healthy_probes)
        assert result.diagnosis.category is DiagnosisCategory.ERROR
        assert result.diagnosis.confidence == 1.0
        assert "rule table corrupted" in result.diagnosis.summary
        assert result.degraded
        assert len(result.results) == 3


class TestIsolation:
    """One probe's failure never affects the others."""

    @pytest.mark.asyncio
    async def test_raising_probe_becomes_failed_result(self, orchestrator, endpoint, make_probe):
        async def boom(ep, token):
            raise PermissionError("access denied")

        probes = [
            make_probe("network", ProbeRole.NETWORK),
            Probe("auth", boom),
            make_probe("operation", ProbeRole.OPERATION),
        ]
        result = await orchestrator.run_triage(endpoint, probes)
        auth = result.result("auth")
        assert auth is not None and not auth.success
        assert "access denied" in auth.details
        assert result.result("network").success
        assert result.result("operation").success

    @pytest.mark.asyncio
    async def test_fatal_outcome_is_reported(self, orchestrator, endpoint):
        async def rejected(ep, token):
            return FatalFailure(ValueError("bad credentials"))

        result = await orchestrator.run_triage(endpoint, [Probe("login", rejected)])
        assert not result.results[0].success
        assert "bad credentials" in result.results[0].details

    @pytest.mark.asyncio
    async def test_unexpected_return_value_is_a_failure(self, orchestrator, endpoint):
        async def wrong(ep, token):
            return {"ok": True}

        result = await orchestrator.run_triage(endpoint, [Probe("odd", wrong)])
        assert not result.results[0].success
        assert "expected TestResult" in result.results[0].details

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, fast_config, endpoint):
        calls = 0

        async def flaky(ep, token):
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ConnectionResetError("reset by peer")
            return TestResult.passed("flaky", "recovered")

        probe = Probe(
            "flaky",
            flaky,
            ProbeRole.CONNECTION,
            retry=RetryPolicy(max_attempts=3, base_delay_seconds=0.0),
        )
        result = await ProbeOrchestrator(fast_config.triage).run_triage(endpoint, [probe])
        assert calls == 3
        assert result.results[0].success

    @pytest.mark.asyncio
    async def test_results_are_stamped(self, orchestrator, endpoint, make_probe):
        result = await orchestrator.run_triage(endpoint, [make_probe("p", delay=0.01)])
        res = result.results[0]
        assert res.started_at is not None and res.ended_at is not None
        assert res.started_at <= res.ended_at
        assert res.duration_ms is not None and res.duration_ms >= 0
        assert result.started_at <= result.completed_at


class TestDeadlineAndCancellation:
    @pytest.mark.asyncio
    async def test_slow_probe_is_abandoned_at_deadline(self, fast_config, endpoint, make_probe):
        fast_config.triage.total_timeout_seconds = 0.2
        probes = [
            make_probe("network", ProbeRole.NETWORK),
            make_probe("operation", ProbeRole.OPERATION, delay=5.0),
        ]
        t0 = time.perf_counter()
        result = await ProbeOrchestrator(fast_config.triage).run_triage(endpoint, probes)
        assert time.perf_counter() - t0 < 2.0

        assert result.result("network").success
        slow = result.result("operation")
        assert not slow.success
        assert "timed out" in slow.details
        assert slow.issues == ("Probe timed out.",)
        assert result.diagnosis.category is DiagnosisCategory.OPERATION_LATENCY

    @pytest.mark.asyncio
    async def test_cancellation_returns_partial_results(self, orchestrator, endpoint, make_probe):
        token = CancellationToken()
        probes = [
            make_probe("network", ProbeRole.NETWORK),
            make_probe("connection", ProbeRole.CONNECTION, delay=5.0),
        ]
        asyncio.get_running_loop().call_later(0.1, token.cancel, "operator abort")
        result = await orchestrator.run_triage(endpoint, probes, token)

        assert result.result("network").success
        pending = result.result("connection")
        assert not pending.success
        assert "cancelled" in pending.details

    @pytest.mark.asyncio
    async def test_abandonment_does_not_cancel_caller_token(self, fast_config, endpoint, make_probe):
        fast_config.triage.total_timeout_seconds = 0.1
        token = CancellationToken()
        await ProbeOrchestrator(fast_config.triage).run_triage(
            endpoint, [make_probe("slow", delay=5.0)], token
        )
        assert not token.is_cancelled


class TestValidation:
    @pytest.mark.asyncio
    async def test_empty_probe_set(self, orchestrator, endpoint):
        with pytest.raises(ValueError):
            await orchestrator.run_triage(endpoint, [])

    @pytest.mark.asyncio
    async def test_duplicate_names(self, orchestrator, endpoint, make_probe):
        with pytest.raises(ValueError, match="duplicate"):
            await orchestrator.run_triage(endpoint, [make_probe("a"), make_probe("a")])


class TestEvents:
    @pytest.mark.asyncio
    async def test_events_share_the_pass_run_id(self, fast_config, endpoint, healthy_probes):
        pipeline = EventPipeline()
        result = await ProbeOrchestrator(fast_config.triage, pipeline).run_triage(
            endpoint, healthy_probes
        )
        events = pipeline.pending()
        assert result.run_id
        assert {e.run_id for e in events} == {result.run_id}
        assert events[-1].event_type is EventType.TRIAGE
        assert sum(1 for e in events if e.event_type is EventType.PROBE) == 3

    @pytest.mark.asyncio
    async def test_slow_connection_emits_warning(self, fast_config, endpoint, make_probe):
        pipeline = EventPipeline()
        fast_config.triage.slow_connection_threshold_ms = 100.0
        probe = make_probe("connection", ProbeRole.CONNECTION, duration_ms=250.0)
        await ProbeOrchestrator(fast_config.triage, pipeline).run_triage(endpoint, [probe])
        assert any("was slow" in e.message for e in pipeline.pending())
