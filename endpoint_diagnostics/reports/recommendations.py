"""Recommendation generation for full diagnostic reports."""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence, runtime_checkable

from ..triage.models import DiagnosisCategory
from .models import DiagnosticReport, Recommendation, RecommendationSeverity

logger = logging.getLogger(__name__)

HIGH_CONNECTION_LATENCY_MS = 500.0
LOW_SUCCESS_RATE = 0.8
HIGH_JITTER_MS = 50.0

_CRITICAL_DIAGNOSES = {DiagnosisCategory.CONNECTION, DiagnosisCategory.ERROR}


@runtime_checkable
class RecommendationRule(Protocol):
    """Pluggable rule producing a recommendation for a report."""

    def applies(self, report: DiagnosticReport) -> bool:
        ...

    def generate(self, report: DiagnosticReport) -> Optional[Recommendation]:
        ...


def builtin_recommendations(report: DiagnosticReport) -> List[Recommendation]:
    recs: List[Recommendation] = []
    conn = report.connection
    if conn is not None and conn.average_ms is not None and conn.average_ms > HIGH_CONNECTION_LATENCY_MS:
        recs.append(
            Recommendation(
                severity=RecommendationSeverity.WARNING,
                category="Connection",
                issue="High connection latency",
                text="Consider connection pooling or reviewing network latency to the endpoint.",
            )
        )
    if conn is not None and conn.total_attempts > 0 and conn.success_rate < LOW_SUCCESS_RATE:
        recs.append(
            Recommendation(
                severity=RecommendationSeverity.WARNING,
                category="Connectivity",
                issue="Low success rate",
                text="Inspect the endpoint's error logs and network stability.",
            )
        )
    net = report.network
    if net is not None and net.jitter_ms is not None and net.jitter_ms > HIGH_JITTER_MS:
        recs.append(
            Recommendation(
                severity=RecommendationSeverity.INFO,
                category="Network",
                issue="High jitter detected",
                text="Investigate network congestion or wireless links along the path.",
            )
        )
    return recs


def triage_recommendations(report: DiagnosticReport) -> List[Recommendation]:
    """Turn a non-healthy triage diagnosis into one recommendation."""
    if report.triage is None:
        return []
    diagnosis = report.triage.diagnosis
    if diagnosis.category is DiagnosisCategory.HEALTHY:
        return []
    severity = (
        RecommendationSeverity.CRITICAL
        if diagnosis.category in _CRITICAL_DIAGNOSES
        else RecommendationSeverity.WARNING
    )
    return [
        Recommendation(
            severity=severity,
            category=f"Triage: {diagnosis.category.value}",
            issue=diagnosis.summary,
            text=" ".join(diagnosis.recommendations) or diagnosis.details,
        )
    ]


def generate_recommendations(
    report: DiagnosticReport, rules: Sequence[RecommendationRule] = ()
) -> List[Recommendation]:
    """Built-in, triage-derived and custom recommendations, in that order.

    A custom rule that raises is logged and skipped.
    """
    recs = builtin_recommendations(report) + triage_recommendations(report)
    for rule in rules:
        try:
            if not rule.applies(report):
                continue
            rec = rule.generate(report)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.warning(
                "recommendations.rule_failed",
                extra={"rule": type(rule).__name__, "error": str(exc)},
            )
            continue
        if rec is not None:
            recs.append(rec)
    return recs
