"""Full diagnostic report model.

These models are the read-only contract consumed by renderers and the
baseline engine. A :class:`DiagnosticReport` is assembled step by step by
:class:`~endpoint_diagnostics.reports.runner.DiagnosticsRunner` and handed
to callers once complete.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..baseline.models import BaselineComparisonResult
from ..triage.models import TriageResult


class RecommendationSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class Recommendation(BaseModel):
    """Actionable advice derived from observed metrics."""

    severity: RecommendationSeverity = RecommendationSeverity.INFO
    category: str
    issue: str
    text: str
    reference_link: Optional[str] = None


class ConnectionMetrics(BaseModel):
    """Reliability and timing of repeated connection attempts.

    Attributes
    ----------
    total_attempts / successful_attempts / failed_attempts: int
        Attempt counters.
    success_rate: float
        ``successful_attempts / total_attempts`` in [0, 1].
    average_ms / min_ms / max_ms: Optional[float]
        Timing over successful attempts only.
    failures: List[str]
        Failure message per failed attempt, in order.
    """

    total_attempts: int = Field(0, ge=0)
    successful_attempts: int = Field(0, ge=0)
    failed_attempts: int = Field(0, ge=0)
    success_rate: float = Field(0.0, ge=0.0, le=1.0)
    average_ms: Optional[float] = None
    min_ms: Optional[float] = None
    max_ms: Optional[float] = None
    failures: List[str] = Field(default_factory=list)


class LatencyMetrics(BaseModel):
    """Network round-trip statistics over successful samples."""

    average_ms: Optional[float] = None
    min_ms: Optional[float] = None
    max_ms: Optional[float] = None
    jitter_ms: Optional[float] = None
    samples: List[float] = Field(default_factory=list)
    failed_samples: int = 0


class ServerMetrics(BaseModel):
    cpu_percent: Optional[float] = None
    blocked_sessions: Optional[float] = None


class DiagnosticReport(BaseModel):
    """Everything learned about an endpoint in one full diagnostic run."""

    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    target: Optional[str] = None
    endpoint_fingerprint: Optional[str] = None
    run_id: str = ""
    triage: Optional[TriageResult] = None
    connection: Optional[ConnectionMetrics] = None
    network: Optional[LatencyMetrics] = None
    server: Optional[ServerMetrics] = None
    recommendations: List[Recommendation] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    baseline_comparison: Optional[BaselineComparisonResult] = None
    health_score: Optional[int] = Field(None, ge=0, le=100)

    def count(self, severity: RecommendationSeverity) -> int:
        return sum(1 for r in self.recommendations if r.severity is severity)
