"""Diagnosis rule chain.

Rules are evaluated top-down and the first match wins; the order encodes
severity precedence. Each rule looks at the result of the probe holding the
matching :class:`ProbeRole`; a rule whose probe is absent never fires.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..config.models import TriageConfig
from .models import Diagnosis, DiagnosisCategory, Probe, ProbeRole, TestResult

JITTER_METRIC = "jitter_ms"
UTILIZATION_METRIC = "utilization_percent"
BLOCKED_METRIC = "blocked_sessions"

RESIDUAL_CONFIDENCE = 0.4


@dataclass(frozen=True)
class DiagnosisRule:
    role: ProbeRole
    category: DiagnosisCategory
    confidence: float
    summary: str
    recommendations: Tuple[str, ...]
    matches: Callable[[TestResult, TriageConfig], bool]


def _over(value: Optional[float], threshold: float) -> bool:
    return value is not None and value > threshold


def _network_degraded(result: TestResult, config: TriageConfig) -> bool:
    return (
        not result.success
        or result.has_issues
        or _over(result.metric(JITTER_METRIC), config.network_jitter_threshold_ms)
    )


def _connection_failed(result: TestResult, config: TriageConfig) -> bool:  # noqa: ARG001
    return not result.success


def _contention_active(result: TestResult, config: TriageConfig) -> bool:  # noqa: ARG001
    return not result.success or result.has_issues or _over(result.metric(BLOCKED_METRIC), 0)


def _saturated(result: TestResult, config: TriageConfig) -> bool:
    return (
        not result.success
        or result.has_issues
        or _over(result.metric(UTILIZATION_METRIC), config.saturation_critical_percent)
    )


def _operation_slow(result: TestResult, config: TriageConfig) -> bool:
    return (
        not result.success
        or result.has_issues
        or _over(result.duration_ms, config.slow_operation_threshold_ms)
    )


RULES: Tuple[DiagnosisRule, ...] = (
    DiagnosisRule(
        ProbeRole.NETWORK,
        DiagnosisCategory.NETWORK,
        0.9,
        "Network connectivity issues detected.",
        (
            "Verify that the endpoint host is reachable (firewall, VPN, routing).",
            "Check network latency and packet loss between client and endpoint.",
        ),
        _network_degraded,
    ),
    DiagnosisRule(
        ProbeRole.CONNECTION,
        DiagnosisCategory.CONNECTION,
        0.95,
        "Failed to establish a connection to the endpoint.",
        (
            "Confirm credentials and that the service accepts remote connections.",
            "Check that the service is listening on the expected port.",
        ),
        _connection_failed,
    ),
    DiagnosisRule(
        ProbeRole.CONTENTION,
        DiagnosisCategory.CONTENTION,
        0.85,
        "Active blocking or contention detected on the endpoint.",
        (
            "Identify the blocking sessions and review transaction scope.",
            "Collect execution details for the blocked operations.",
        ),
        _contention_active,
    ),
    DiagnosisRule(
        ProbeRole.SATURATION,
        DiagnosisCategory.RESOURCE_SATURATION,
        0.8,
        "Potential server resource pressure detected.",
        (
            "Inspect CPU and IO utilisation on the server.",
            "Review workload patterns for expensive operations.",
        ),
        _saturated,
    ),
    DiagnosisRule(
        ProbeRole.OPERATION,
        DiagnosisCategory.OPERATION_LATENCY,
        0.75,
        "Diagnostic operation executed slower than expected.",
        (
            "Capture a detailed trace of slow operations.",
            "Validate caching and indexing strategies on the server.",
        ),
        _operation_slow,
    ),
)

HEALTHY_RECOMMENDATIONS = (
    "Monitor the workload for intermittent issues.",
    "Capture a performance baseline for future comparisons.",
)


def index_by_role(
    probes: Sequence[Probe], results: Sequence[TestResult]
) -> Dict[ProbeRole, TestResult]:
    """Map each role to the result of the first probe declaring it."""
    by_name = {r.name: r for r in results}
    indexed: Dict[ProbeRole, TestResult] = {}
    for probe in probes:
        result = by_name.get(probe.name)
        if result is not None and probe.role not in indexed:
            indexed[probe.role] = result
    return indexed


def diagnose(
    by_role: Mapping[ProbeRole, TestResult],
    results: Sequence[TestResult],
    config: TriageConfig,
) -> Diagnosis:
    """Apply the rule chain and return the first matching diagnosis.

    When no rule fires and every probe succeeded without issues the endpoint
    is Healthy (0.7). When no rule fires but some probe outside the ranked
    roles failed or reported issues, the result is still Healthy with a
    reduced confidence and those issues in the details.
    """
    for rule in RULES:
        result = by_role.get(rule.role)
        if result is None or not rule.matches(result, config):
            continue
        detail_parts: List[str] = [result.details] if result.details else []
        detail_parts.extend(result.issues)
        return Diagnosis(
            category=rule.category,
            confidence=rule.confidence,
            summary=rule.summary,
            details=" | ".join(detail_parts),
            recommendations=rule.recommendations,
        )

    problems = [r for r in results if not r.success or r.has_issues]
    if not problems:
        return Diagnosis(
            category=DiagnosisCategory.HEALTHY,
            confidence=0.7,
            summary="No immediate issues detected by triage probes.",
            details="All probes completed successfully.",
            recommendations=HEALTHY_RECOMMENDATIONS,
        )
    names = ", ".join(r.name for r in problems)
    return Diagnosis(
        category=DiagnosisCategory.HEALTHY,
        confidence=RESIDUAL_CONFIDENCE,
        summary="No ranked issue detected; some auxiliary probes reported problems.",
        details=f"Probes with problems: {names}",
        recommendations=(f"Review the results of: {names}.",) + HEALTHY_RECOMMENDATIONS,
    )
