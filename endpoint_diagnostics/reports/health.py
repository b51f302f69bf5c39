"""0-100 health score.

Start at 100 and subtract weighted, capped penalties:

- ``(1 - success_rate) * connection_failure``
- ``min(avg_connection_ms / scale, 1) * connection_latency``
- ``min(network_avg_ms / scale, 1) * network_latency``
- ``min(jitter_ms / scale, 1) * jitter``
- ``critical_recommendation`` / ``warning_recommendation`` per recommendation

The result is rounded and clamped to [0, 100]. Weights come from
:class:`~endpoint_diagnostics.config.models.HealthScoreWeights`.
"""

from __future__ import annotations

from typing import Optional

from ..config.models import HealthScoreWeights
from ..utils.validation import sanitize_float
from .models import DiagnosticReport, RecommendationSeverity


def _ratio(value: Optional[float], scale: float) -> float:
    return min(sanitize_float(value, min_value=0.0, default=0.0) / scale, 1.0)


def compute_health_score(
    report: DiagnosticReport, weights: Optional[HealthScoreWeights] = None
) -> int:
    w = weights or HealthScoreWeights()
    score = 100.0

    if report.connection is not None:
        rate = sanitize_float(report.connection.success_rate, 0.0, 1.0, default=0.0)
        score -= (1.0 - rate) * w.connection_failure
        if report.connection.average_ms is not None:
            score -= (
                _ratio(report.connection.average_ms, w.connection_latency_scale_ms)
                * w.connection_latency
            )

    if report.network is not None and report.network.average_ms is not None:
        score -= _ratio(report.network.average_ms, w.network_latency_scale_ms) * w.network_latency
        if report.network.jitter_ms is not None:
            score -= _ratio(report.network.jitter_ms, w.jitter_scale_ms) * w.jitter

    score -= report.count(RecommendationSeverity.CRITICAL) * w.critical_recommendation
    score -= report.count(RecommendationSeverity.WARNING) * w.warning_recommendation

    return int(max(0, min(100, round(score))))
