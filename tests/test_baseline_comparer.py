"""Tests for regression detection against reports and baselines."""

from datetime import datetime, timezone

import pytest

from endpoint_diagnostics.baseline.comparer import (
    compare_reports,
    compare_to_baseline,
    report_values,
)
from endpoint_diagnostics.baseline.models import Baseline, PercentileTriple
from endpoint_diagnostics.reports.models import (
    ConnectionMetrics,
    DiagnosticReport,
    LatencyMetrics,
    ServerMetrics,
)


def make_report(rate=1.0, conn_ms=50.0, net_ms=20.0, cpu=30.0, score=90):
    attempts = 20
    ok = round(rate * attempts)
    return DiagnosticReport(
        target="db:5432",
        connection=ConnectionMetrics(
            total_attempts=attempts,
            successful_attempts=ok,
            failed_attempts=attempts - ok,
            success_rate=rate,
            average_ms=conn_ms,
        ),
        network=LatencyMetrics(average_ms=net_ms, jitter_ms=1.0, samples=[net_ms]),
        server=ServerMetrics(cpu_percent=cpu),
        health_score=score,
    )


def flat(value):
    return PercentileTriple(p50=value, p95=value, p99=value)


def test_success_rate_drop_is_a_regression():
    result = compare_reports(make_report(rate=0.80), make_report(rate=0.95))
    assert result.succeeded
    assert result.has_regressions
    assert result.connection_success_rate_delta == pytest.approx(-0.15)
    assert any("success rate" in note.lower() for note in result.notes)


def test_small_drift_is_not_a_regression():
    result = compare_reports(
        make_report(rate=0.93, conn_ms=120.0, net_ms=60.0, cpu=38.0, score=87),
        make_report(rate=0.95, conn_ms=50.0, net_ms=20.0, cpu=30.0, score=90),
    )
    assert not result.has_regressions
    assert result.notes == []
    assert result.message == "No regressions detected."


def test_each_threshold_adds_its_own_note():
    result = compare_reports(
        make_report(rate=0.5, conn_ms=400.0, net_ms=200.0, cpu=80.0, score=40),
        make_report(),
    )
    assert len(result.notes) == 5
    assert result.connection_latency_delta_ms == pytest.approx(350.0)
    assert result.network_latency_delta_ms == pytest.approx(180.0)
    assert result.server_cpu_delta == pytest.approx(50.0)
    assert result.health_score_delta == pytest.approx(-50.0)
    assert result.message == "5 regression(s) detected."


def test_missing_metrics_yield_no_delta():
    current = DiagnosticReport(health_score=80)
    result = compare_reports(current, make_report())
    assert result.connection_success_rate_delta is None
    assert result.network_latency_delta_ms is None
    assert result.health_score_delta == pytest.approx(-10.0)


def test_report_values_computes_missing_score():
    values = report_values(make_report(score=None))
    assert 0.0 <= values["health_score"] <= 100.0


def test_compare_to_baseline_uses_p50():
    baseline = Baseline(
        name="nightly",
        captured_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        machine_fingerprint="m",
        endpoint_fingerprint="e",
        sample_count=5,
        metrics={
            "success_rate": PercentileTriple(p50=0.95, p95=1.0, p99=1.0),
            "network_latency_ms": PercentileTriple(p50=20.0, p95=90.0, p99=150.0),
            "health_score": flat(90.0),
        },
    )
    result = compare_to_baseline(make_report(rate=0.80, net_ms=100.0), baseline)
    assert result.baseline_name == "nightly"
    assert result.network_latency_delta_ms == pytest.approx(80.0)
    assert result.connection_success_rate_delta == pytest.approx(-0.15)
    assert result.connection_latency_delta_ms is None
    assert result.has_regressions
    assert len(result.notes) == 2
