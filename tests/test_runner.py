"""Tests for full diagnostic runs (DiagnosticsRunner)."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from endpoint_diagnostics.collector import TransientFailure
from endpoint_diagnostics.events import EventPipeline, EventSeverity, EventType
from endpoint_diagnostics.reports.models import Recommendation, RecommendationSeverity
from endpoint_diagnostics.reports.runner import DiagnosticsRunner
from endpoint_diagnostics.triage import DiagnosisCategory, Probe, ProbeRole, TestResult
from endpoint_diagnostics.utils.cancellation import CancellationToken


def test_runner_validates_probe_set(fast_config, make_probe):
    with pytest.raises(ValueError):
        DiagnosticsRunner([], fast_config)
    with pytest.raises(ValueError):
        DiagnosticsRunner([make_probe("x"), make_probe("x")], fast_config)


@pytest.mark.asyncio
async def test_run_quick_returns_triage_only(fast_config, endpoint, healthy_probes):
    result = await DiagnosticsRunner(healthy_probes, fast_config).run_quick(endpoint)
    assert result.diagnosis.category is DiagnosisCategory.HEALTHY
    assert len(result.results) == 3


@pytest.mark.asyncio
async def test_full_run_on_healthy_endpoint(fast_config, endpoint, healthy_probes):
    report = await DiagnosticsRunner(healthy_probes, fast_config).run_full(endpoint)

    assert report.target == "db.example.internal:5432"
    assert report.run_id and report.triage.run_id == report.run_id
    assert report.connection.total_attempts == 3
    assert report.connection.success_rate == 1.0
    assert report.connection.average_ms == pytest.approx(20.0)
    assert report.network.samples == [10.0, 10.0, 10.0]
    assert report.network.jitter_ms == 0.0
    assert report.server is None
    assert report.recommendations == []
    # 100 - 20/1000*15 - 10/200*20
    assert report.health_score == 99


@pytest.mark.asyncio
async def test_connection_attempts_count_failures_without_retry(fast_config, endpoint):
    outcomes = [
        TestResult.passed("connection", "ok", duration_ms=30.0),
        TestResult.failed("connection", "refused"),
        TransientFailure(ConnectionRefusedError("refused")),
    ]
    connection = AsyncMock(side_effect=[TestResult.passed("connection", "ok")] + outcomes)
    probes = [Probe("connection", connection, ProbeRole.CONNECTION)]

    report = await DiagnosticsRunner(probes, fast_config).run_full(endpoint)
    assert connection.await_count == 4  # one triage pass + three measured attempts
    conn = report.connection
    assert (conn.total_attempts, conn.successful_attempts, conn.failed_attempts) == (3, 1, 2)
    assert conn.success_rate == pytest.approx(1 / 3)
    assert conn.failures == ["refused", "refused"]
    assert any(r.issue == "Low success rate" for r in report.recommendations)


@pytest.mark.asyncio
async def test_network_samples_tolerate_failures(fast_config, endpoint):
    samples = iter([10.0, None, 30.0, 20.0])

    async def network(ep, token):
        value = next(samples)
        if value is None:
            raise TimeoutError("no route")
        return TestResult.passed("network", "ok", metrics={"latency_avg_ms": value})

    report = await DiagnosticsRunner(
        [Probe("network", network, ProbeRole.NETWORK)], fast_config
    ).run_full(endpoint)
    assert report.network.samples == [30.0, 20.0]
    assert report.network.failed_samples == 1
    assert report.network.average_ms == pytest.approx(25.0)
    assert report.network.jitter_ms == pytest.approx(5.0)


@pytest.mark.asyncio
async def test_server_metrics_from_saturation_and_contention(fast_config, endpoint, make_probe):
    probes = [
        make_probe("saturation", ProbeRole.SATURATION, metrics={"utilization_percent": 91.0}),
        make_probe("contention", ProbeRole.CONTENTION, metrics={"blocked_sessions": 0}),
    ]
    report = await DiagnosticsRunner(probes, fast_config).run_full(endpoint)
    assert report.server.cpu_percent == 91.0
    assert report.server.blocked_sessions == 0.0
    assert report.triage.diagnosis.category is DiagnosisCategory.RESOURCE_SATURATION
    triage_recs = [r for r in report.recommendations if r.category.startswith("Triage")]
    assert triage_recs and triage_recs[0].severity is RecommendationSeverity.WARNING


@pytest.mark.asyncio
async def test_comparison_with_previous_report(fast_config, endpoint, make_probe):
    good = [make_probe("network", ProbeRole.NETWORK, metrics={"latency_avg_ms": 10.0})]
    slow = [make_probe("network", ProbeRole.NETWORK, metrics={"latency_avg_ms": 120.0})]
    previous = await DiagnosticsRunner(good, fast_config).run_full(endpoint)
    report = await DiagnosticsRunner(slow, fast_config).run_full(endpoint, baseline_report=previous)

    comparison = report.baseline_comparison
    assert comparison is not None and comparison.has_regressions
    assert report.metadata["baseline_regressions"] == comparison.notes
    assert "baseline_health_score_delta" in report.metadata
    regression_recs = [r for r in report.recommendations if r.category == "Baseline Comparison"]
    assert len(regression_recs) == len(comparison.notes)
    assert all(r.severity is RecommendationSeverity.WARNING for r in regression_recs)


@pytest.mark.asyncio
async def test_recommendations_can_be_disabled(fast_config, endpoint, make_probe):
    fast_config.full_run.generate_recommendations = False
    probes = [make_probe("connection", ProbeRole.CONNECTION, success=False)]
    report = await DiagnosticsRunner(probes, fast_config).run_full(endpoint)
    assert report.recommendations == []
    assert report.health_score == 60


@pytest.mark.asyncio
async def test_custom_rule_registration(fast_config, endpoint, healthy_probes):
    class TlsRule:
        def applies(self, report):
            return True

        def generate(self, report):
            return Recommendation(category="TLS", issue="Old cipher", text="Rotate certificates.")

    runner = DiagnosticsRunner(healthy_probes, fast_config)
    runner.register_rule(TlsRule())
    report = await runner.run_full(endpoint)
    assert [r.category for r in report.recommendations] == ["TLS"]
    with pytest.raises(ValueError):
        runner.register_rule(None)


@pytest.mark.asyncio
async def test_cancellation_during_measurement_is_recorded(fast_config, endpoint, make_probe):
    fast_config.full_run.attempt_delay_seconds = 5.0
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.1, token.cancel, "stop requested")
    probes = [make_probe("connection", ProbeRole.CONNECTION, duration_ms=10.0)]
    report = await DiagnosticsRunner(probes, fast_config).run_full(endpoint, token)
    assert report.metadata["cancelled"] == "stop requested"
    assert report.connection is None
    assert report.health_score is not None


@pytest.mark.asyncio
async def test_report_events_are_emitted(fast_config, endpoint, healthy_probes):
    pipeline = EventPipeline()
    report = await DiagnosticsRunner(healthy_probes, fast_config, pipeline).run_full(endpoint)
    events = pipeline.pending()
    report_events = [e for e in events if e.event_type is EventType.REPORT]
    assert len(report_events) == 1
    assert f"health score {report.health_score}" in report_events[0].message
    conn_events = [e for e in events if e.event_type is EventType.CONNECTION]
    assert conn_events and conn_events[0].severity is EventSeverity.INFO
    assert any(e.event_type is EventType.NETWORK for e in events)
    assert {e.run_id for e in events} == {report.run_id}
