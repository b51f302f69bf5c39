"""Regression detection.

Two entry points share the same fixed thresholds:

- :func:`compare_to_baseline` measures a report against a stored
  :class:`Baseline`, using each metric's P50 as the reference.
- :func:`compare_reports` measures a report against an earlier report.

Every breached threshold adds a note and sets ``has_regressions``; breaches
accumulate independently.
"""

from __future__ import annotations

from typing import Optional

from ..reports.health import compute_health_score
from ..reports.models import DiagnosticReport
from .models import (
    CONNECTION_LATENCY_MS,
    CPU_PERCENT,
    HEALTH_SCORE,
    NETWORK_LATENCY_MS,
    SUCCESS_RATE,
    Baseline,
    BaselineComparisonResult,
)

SUCCESS_RATE_DROP = 0.05
CONNECTION_LATENCY_INCREASE_MS = 100.0
NETWORK_LATENCY_INCREASE_MS = 50.0
CPU_INCREASE = 10.0
HEALTH_SCORE_DROP = 5.0


def _delta(current: Optional[float], reference: Optional[float]) -> Optional[float]:
    if current is None or reference is None:
        return None
    return current - reference


def report_values(report: DiagnosticReport) -> dict:
    """Metric values of ``report`` keyed like baseline metrics (None if absent)."""
    conn, net, server = report.connection, report.network, report.server
    score = report.health_score
    if score is None:
        score = compute_health_score(report)
    return {
        SUCCESS_RATE: conn.success_rate if conn is not None and conn.total_attempts else None,
        CONNECTION_LATENCY_MS: conn.average_ms if conn is not None else None,
        NETWORK_LATENCY_MS: net.average_ms if net is not None else None,
        CPU_PERCENT: server.cpu_percent if server is not None else None,
        HEALTH_SCORE: float(score),
    }


def evaluate_regressions(result: BaselineComparisonResult) -> BaselineComparisonResult:
    """Apply the thresholds to the deltas in ``result`` (mutates and returns it)."""
    rate = result.connection_success_rate_delta
    if rate is not None and rate < -SUCCESS_RATE_DROP:
        result.has_regressions = True
        result.notes.append(f"Connection success rate dropped by {abs(rate):.1%}.")

    conn = result.connection_latency_delta_ms
    if conn is not None and conn > CONNECTION_LATENCY_INCREASE_MS:
        result.has_regressions = True
        result.notes.append(f"Average connection time increased by {conn:,.0f} ms.")

    net = result.network_latency_delta_ms
    if net is not None and net > NETWORK_LATENCY_INCREASE_MS:
        result.has_regressions = True
        result.notes.append(f"Network latency increased by {net:,.0f} ms.")

    cpu = result.server_cpu_delta
    if cpu is not None and cpu > CPU_INCREASE:
        result.has_regressions = True
        result.notes.append(f"Server CPU utilisation increased by {cpu:.1f}%.")

    score = result.health_score_delta
    if score is not None and score < -HEALTH_SCORE_DROP:
        result.has_regressions = True
        result.notes.append(f"Overall health score dropped by {abs(score):.0f} points.")

    if not result.message:
        result.message = (
            f"{len(result.notes)} regression(s) detected." if result.has_regressions
            else "No regressions detected."
        )
    return result


def compare_reports(
    current: DiagnosticReport, reference: DiagnosticReport
) -> BaselineComparisonResult:
    """Drift of ``current`` relative to an earlier report."""
    cur, ref = report_values(current), report_values(reference)
    result = BaselineComparisonResult(
        baseline_name=reference.target,
        baseline_captured_at=reference.generated_at,
        connection_success_rate_delta=_delta(cur[SUCCESS_RATE], ref[SUCCESS_RATE]),
        connection_latency_delta_ms=_delta(cur[CONNECTION_LATENCY_MS], ref[CONNECTION_LATENCY_MS]),
        network_latency_delta_ms=_delta(cur[NETWORK_LATENCY_MS], ref[NETWORK_LATENCY_MS]),
        server_cpu_delta=_delta(cur[CPU_PERCENT], ref[CPU_PERCENT]),
        health_score_delta=_delta(cur[HEALTH_SCORE], ref[HEALTH_SCORE]),
    )
    return evaluate_regressions(result)


def compare_to_baseline(
    current: DiagnosticReport, baseline: Baseline
) -> BaselineComparisonResult:
    """Drift of ``current`` relative to the P50 of each baseline metric."""
    cur = report_values(current)

    def ref(key: str) -> Optional[float]:
        triple = baseline.metric(key)
        return triple.p50 if triple is not None else None

    result = BaselineComparisonResult(
        baseline_name=baseline.name,
        baseline_captured_at=baseline.captured_at,
        connection_success_rate_delta=_delta(cur[SUCCESS_RATE], ref(SUCCESS_RATE)),
        connection_latency_delta_ms=_delta(cur[CONNECTION_LATENCY_MS], ref(CONNECTION_LATENCY_MS)),
        network_latency_delta_ms=_delta(cur[NETWORK_LATENCY_MS], ref(NETWORK_LATENCY_MS)),
        server_cpu_delta=_delta(cur[CPU_PERCENT], ref(CPU_PERCENT)),
        health_score_delta=_delta(cur[HEALTH_SCORE], ref(HEALTH_SCORE)),
    )
    return evaluate_regressions(result)
