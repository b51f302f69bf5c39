"""Triage data model: probes, their results and the derived diagnosis."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..config.models import RetryPolicy
from ..utils.cancellation import CancellationToken


class ProbeRole(str, Enum):
    """Health dimension a probe measures; the diagnosis rules key on it."""

    NETWORK = "network"
    CONNECTION = "connection"
    CONTENTION = "contention"
    SATURATION = "saturation"
    OPERATION = "operation"
    CUSTOM = "custom"


class TestResult(BaseModel):
    """Outcome of one probe invocation.

    Attributes
    ----------
    name: str
        Probe name.
    success: bool
        Whether the probe completed and the measured dimension is usable.
    details: str
        Human-readable detail.
    duration_ms: Optional[float]
        Elapsed time in milliseconds. A probe may report its own measure
        (e.g., average round trip); otherwise the orchestrator stamps the
        wall-clock time of the invocation.
    started_at / ended_at: Optional[datetime]
        Invocation window, stamped by the orchestrator.
    issues: Tuple[str, ...]
        Ordered issue strings.
    metrics: Dict[str, float]
        Named numeric observations (``jitter_ms``, ``utilization_percent``,
        ``blocked_sessions``...).
    """

    __test__ = False  # not a pytest test class

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    success: bool
    details: str = ""
    duration_ms: Optional[float] = Field(None, ge=0.0)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    issues: Tuple[str, ...] = ()
    metrics: Dict[str, float] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_window(self) -> "TestResult":
        if self.started_at and self.ended_at and self.ended_at < self.started_at:
            raise ValueError("ended_at must not precede started_at")
        return self

    @classmethod
    def passed(cls, name: str, details: str = "", **kwargs: Any) -> "TestResult":
        return cls(name=name, success=True, details=details, **kwargs)

    @classmethod
    def failed(cls, name: str, details: str, **kwargs: Any) -> "TestResult":
        return cls(name=name, success=False, details=details, **kwargs)

    @property
    def has_issues(self) -> bool:
        return bool(self.issues)

    def metric(self, key: str) -> Optional[float]:
        return self.metrics.get(key)


ProbeFunc = Callable[[Any, CancellationToken], Awaitable[Any]]


@dataclass(frozen=True)
class Probe:
    """A named, idempotent health measurement.

    Attributes
    ----------
    name: str
        Identifier, unique within an orchestration pass.
    func: ProbeFunc
        ``async func(endpoint, cancellation)`` returning a :class:`TestResult`
        (or an outcome variant wrapping one), or raising.
    role: ProbeRole
        Dimension the diagnosis rules associate with this probe.
    is_transient: Optional[Callable[[BaseException], bool]]
        Probe-specific transient classifier.
    retry: Optional[RetryPolicy]
        Overrides the orchestrator's retry policy for this probe.
    """

    name: str
    func: ProbeFunc
    role: ProbeRole = ProbeRole.CUSTOM
    is_transient: Optional[Callable[[BaseException], bool]] = None
    retry: Optional[RetryPolicy] = None
    description: str = ""


class DiagnosisCategory(str, Enum):
    NETWORK = "Network"
    CONNECTION = "Connection"
    CONTENTION = "Contention"
    RESOURCE_SATURATION = "ResourceSaturation"
    OPERATION_LATENCY = "OperationLatency"
    HEALTHY = "Healthy"
    ERROR = "Error"


class Diagnosis(BaseModel):
    """Ranked classification derived from a triage pass."""

    model_config = ConfigDict(frozen=True)

    category: DiagnosisCategory
    confidence: float = Field(..., ge=0.0, le=1.0)
    summary: str
    details: str = ""
    recommendations: Tuple[str, ...] = ()

    @classmethod
    def error(cls, message: str) -> "Diagnosis":
        """Terminal outcome for an orchestration that could not complete."""
        return cls(
            category=DiagnosisCategory.ERROR,
            confidence=1.0,
            summary=message or "Triage failed with an unexpected error.",
            recommendations=(
                "Inspect the process log for the orchestration error and retry.",
            ),
        )


class TriageResult(BaseModel):
    """Aggregate of one orchestration pass."""

    model_config = ConfigDict(frozen=True)

    results: Tuple[TestResult, ...]
    diagnosis: Diagnosis
    duration_ms: float = Field(..., ge=0.0)
    started_at: datetime
    completed_at: datetime
    run_id: str = ""

    def result(self, name: str) -> Optional[TestResult]:
        """Return the result of probe ``name`` if it was part of the pass."""
        for res in self.results:
            if res.name == name:
                return res
        return None

    @property
    def failed(self) -> Tuple[TestResult, ...]:
        return tuple(r for r in self.results if not r.success)

    @property
    def degraded(self) -> bool:
        """True when the pass itself failed rather than the endpoint."""
        return self.diagnosis.category is DiagnosisCategory.ERROR
