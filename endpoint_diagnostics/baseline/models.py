"""Baseline records and comparison results.

A :class:`Baseline` is the logical record persisted by a
:class:`~endpoint_diagnostics.baseline.store.BaselineStore`: name, capture
time, fingerprints and one :class:`PercentileTriple` per metric. The physical
encoding belongs to the store.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..__version__ import __baseline_format_version__

SUCCESS_RATE = "success_rate"
CONNECTION_LATENCY_MS = "connection_latency_ms"
NETWORK_LATENCY_MS = "network_latency_ms"
CPU_PERCENT = "cpu_percent"
HEALTH_SCORE = "health_score"

METRIC_KEYS = (SUCCESS_RATE, CONNECTION_LATENCY_MS, NETWORK_LATENCY_MS, CPU_PERCENT, HEALTH_SCORE)


class PercentileTriple(BaseModel):
    """P50/P95/P99 of one metric; always ordered p50 <= p95 <= p99."""

    model_config = ConfigDict(frozen=True)

    p50: float
    p95: float
    p99: float

    @model_validator(mode="after")
    def _ordered(self) -> "PercentileTriple":
        if not self.p50 <= self.p95 <= self.p99:
            raise ValueError("percentiles must satisfy p50 <= p95 <= p99")
        return self


class Baseline(BaseModel):
    """Statistical summary of repeated full runs under known-good conditions.

    Attributes
    ----------
    name: str
        Operator-chosen name; later captures under the same name supersede
        earlier ones.
    captured_at: datetime
        UTC capture completion time.
    machine_fingerprint: str
        Hash of the capturing host's environment.
    endpoint_fingerprint: str
        SHA-256 of the endpoint descriptor; never the raw endpoint.
    sample_count: int
        Number of full runs that contributed.
    metrics: Dict[str, PercentileTriple]
        Percentiles keyed by metric name (see ``METRIC_KEYS``).
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    captured_at: datetime
    machine_fingerprint: str
    endpoint_fingerprint: str
    sample_count: int = Field(..., ge=1)
    metrics: Dict[str, PercentileTriple] = Field(default_factory=dict)
    target: Optional[str] = None
    format_version: str = __baseline_format_version__

    def metric(self, key: str) -> Optional[PercentileTriple]:
        return self.metrics.get(key)


class BaselineComparisonResult(BaseModel):
    """Signed drift between a current report and a reference.

    Deltas are ``current - reference``; a field is None when either side
    lacks the metric. ``succeeded`` is False when no reference was found,
    which is an expected outcome rather than an error.
    """

    succeeded: bool = True
    message: str = ""
    baseline_name: Optional[str] = None
    baseline_captured_at: Optional[datetime] = None
    health_score_delta: Optional[float] = None
    connection_success_rate_delta: Optional[float] = None
    connection_latency_delta_ms: Optional[float] = None
    network_latency_delta_ms: Optional[float] = None
    server_cpu_delta: Optional[float] = None
    notes: List[str] = Field(default_factory=list)
    has_regressions: bool = False

    @classmethod
    def not_found(cls, message: str) -> "BaselineComparisonResult":
        return cls(succeeded=False, message=message)
