"""Full diagnostic runs.

:class:`DiagnosticsRunner` builds a :class:`DiagnosticReport` on top of a
triage pass: repeated connection attempts for a success rate, repeated
network samples for latency statistics, server utilisation from the
saturation probe, recommendations, the health score and an optional
comparison with a previous report. Every step that fails is recorded in the
report rather than aborting the run.
"""

from __future__ import annotations

import logging
import statistics
import time
from typing import Any, List, Optional, Sequence

from ..baseline.comparer import compare_reports
from ..collector.errors import FatalFailure, Success, TransientFailure
from ..config.models import AppConfig
from ..endpoint import endpoint_fingerprint, endpoint_label
from ..events.models import DiagnosticEvent, EventSeverity, EventType
from ..events.pipeline import EventPipeline
from ..triage.models import Probe, ProbeRole, TestResult, TriageResult
from ..triage.orchestrator import ProbeOrchestrator, validate_probe_set
from ..triage.rules import BLOCKED_METRIC, UTILIZATION_METRIC
from ..utils.cancellation import CancellationToken, OperationCancelledError, ensure_token
from ..utils.correlation import run_scope
from .health import compute_health_score
from .models import (
    ConnectionMetrics,
    DiagnosticReport,
    LatencyMetrics,
    Recommendation,
    RecommendationSeverity,
    ServerMetrics,
)
from .recommendations import RecommendationRule, generate_recommendations

logger = logging.getLogger(__name__)


def _unwrap(value: Any) -> TestResult:
    """Normalise a probe return value into a TestResult or raise."""
    if isinstance(value, Success):
        value = value.value
    if isinstance(value, (TransientFailure, FatalFailure)):
        raise value.error
    if not isinstance(value, TestResult):
        raise TypeError(f"probe returned {type(value).__name__}, expected TestResult")
    return value


class DiagnosticsRunner:
    """Run triage plus full measurements against one probe set.

    Parameters
    ----------
    probes: Sequence[Probe]
        Probe set; the connection- and network-role probes are reused for
        the repeated measurements.
    config: Optional[AppConfig]
        Triage and full-run settings.
    pipeline: Optional[EventPipeline]
        Destination for report events.
    rules: Sequence[RecommendationRule]
        Extra recommendation rules.
    """

    def __init__(
        self,
        probes: Sequence[Probe],
        config: Optional[AppConfig] = None,
        pipeline: Optional[EventPipeline] = None,
        rules: Sequence[RecommendationRule] = (),
    ) -> None:
        validate_probe_set(probes)
        self._probes = list(probes)
        self.config = config or AppConfig()
        self._pipeline = pipeline
        self._rules: List[RecommendationRule] = list(rules)
        self.orchestrator = ProbeOrchestrator(self.config.triage, pipeline)

    @property
    def probes(self) -> Sequence[Probe]:
        return tuple(self._probes)

    def register_rule(self, rule: RecommendationRule) -> None:
        if rule is None:
            raise ValueError("rule must not be None")
        self._rules.append(rule)

    def _probe_for(self, role: ProbeRole) -> Optional[Probe]:
        for probe in self._probes:
            if probe.role is role:
                return probe
        return None

    def _emit(self, event: DiagnosticEvent) -> None:
        if self._pipeline is not None:
            self._pipeline.enqueue(event)

    async def run_quick(
        self, endpoint: Any, cancellation: Optional[CancellationToken] = None
    ) -> TriageResult:
        """Triage only."""
        return await self.orchestrator.run_triage(endpoint, self._probes, cancellation)

    async def run_full(
        self,
        endpoint: Any,
        cancellation: Optional[CancellationToken] = None,
        baseline_report: Optional[DiagnosticReport] = None,
    ) -> DiagnosticReport:
        """Run a full diagnostic pass and return the assembled report."""
        token = ensure_token(cancellation)
        full = self.config.full_run
        fingerprint = endpoint_fingerprint(endpoint)
        with run_scope() as run_id:
            logger.info("diagnostics.full.started", extra={"run_id": run_id})
            triage = await self.orchestrator.run_triage(endpoint, self._probes, token)
            report = DiagnosticReport(
                target=endpoint_label(endpoint),
                endpoint_fingerprint=fingerprint,
                run_id=run_id,
                triage=triage,
            )
            report.metadata["generate_recommendations"] = full.generate_recommendations

            try:
                report.connection = await self.measure_connection(endpoint, token)
                report.network = await self.measure_network(endpoint, token)
            except OperationCancelledError as exc:
                logger.info("diagnostics.full.cancelled", extra={"run_id": run_id})
                report.metadata["cancelled"] = exc.reason
            report.server = self.server_metrics(triage)

            if full.generate_recommendations:
                report.recommendations.extend(generate_recommendations(report, self._rules))
            report.health_score = compute_health_score(report, full.health_weights)

            if baseline_report is not None:
                self._apply_comparison(report, baseline_report)
                report.health_score = compute_health_score(report, full.health_weights)

            self._log_report(report)
            logger.info(
                "diagnostics.full.completed",
                extra={"run_id": run_id, "health_score": report.health_score},
            )
            return report

    async def measure_connection(
        self, endpoint: Any, token: CancellationToken
    ) -> Optional[ConnectionMetrics]:
        """Invoke the connection probe ``connection_attempts`` times, without retry."""
        probe = self._probe_for(ProbeRole.CONNECTION)
        if probe is None:
            return None
        full = self.config.full_run
        timings: List[float] = []
        failures: List[str] = []
        for attempt in range(full.connection_attempts):
            if attempt:
                await token.sleep(full.attempt_delay_seconds)
            token.raise_if_cancelled()
            t0 = time.perf_counter()
            try:
                result = _unwrap(await probe.func(endpoint, token))
            except OperationCancelledError:
                raise
            except Exception as exc:  # pylint: disable=broad-exception-caught
                failures.append(str(exc) or type(exc).__name__)
                continue
            elapsed = (time.perf_counter() - t0) * 1000.0
            if result.success:
                timings.append(result.duration_ms if result.duration_ms is not None else elapsed)
            else:
                failures.append(result.details or "connection attempt failed")

        total = len(timings) + len(failures)
        return ConnectionMetrics(
            total_attempts=total,
            successful_attempts=len(timings),
            failed_attempts=len(failures),
            success_rate=(len(timings) / total) if total else 0.0,
            average_ms=statistics.fmean(timings) if timings else None,
            min_ms=min(timings) if timings else None,
            max_ms=max(timings) if timings else None,
            failures=failures,
        )

    async def measure_network(
        self, endpoint: Any, token: CancellationToken
    ) -> Optional[LatencyMetrics]:
        """Invoke the network probe ``network_samples`` times and summarise latency."""
        probe = self._probe_for(ProbeRole.NETWORK)
        if probe is None:
            return None
        full = self.config.full_run
        samples: List[float] = []
        failed = 0
        for attempt in range(full.network_samples):
            if attempt:
                await token.sleep(full.attempt_delay_seconds)
            token.raise_if_cancelled()
            t0 = time.perf_counter()
            try:
                result = _unwrap(await probe.func(endpoint, token))
            except OperationCancelledError:
                raise
            except Exception as exc:  # pylint: disable=broad-exception-caught
                logger.debug("diagnostics.network_sample_failed", extra={"error": str(exc)})
                failed += 1
                continue
            if not result.success:
                failed += 1
                continue
            latency = result.metric("latency_avg_ms")
            if latency is None:
                latency = (
                    result.duration_ms
                    if result.duration_ms is not None
                    else (time.perf_counter() - t0) * 1000.0
                )
            samples.append(latency)

        if not samples:
            return LatencyMetrics(failed_samples=failed)
        return LatencyMetrics(
            average_ms=statistics.fmean(samples),
            min_ms=min(samples),
            max_ms=max(samples),
            jitter_ms=statistics.pstdev(samples),
            samples=samples,
            failed_samples=failed,
        )

    def server_metrics(self, triage: TriageResult) -> Optional[ServerMetrics]:
        cpu = self._triage_metric(triage, ProbeRole.SATURATION, UTILIZATION_METRIC)
        blocked = self._triage_metric(triage, ProbeRole.CONTENTION, BLOCKED_METRIC)
        if cpu is None and blocked is None:
            return None
        return ServerMetrics(cpu_percent=cpu, blocked_sessions=blocked)

    def _triage_metric(
        self, triage: TriageResult, role: ProbeRole, metric: str
    ) -> Optional[float]:
        probe = self._probe_for(role)
        if probe is None:
            return None
        result = triage.result(probe.name)
        return result.metric(metric) if result is not None else None

    def _apply_comparison(self, report: DiagnosticReport, reference: DiagnosticReport) -> None:
        try:
            comparison = compare_reports(report, reference)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.warning("diagnostics.baseline_comparison_failed", extra={"error": str(exc)})
            report.metadata["baseline_comparison_error"] = str(exc)
            return
        report.baseline_comparison = comparison
        if comparison.health_score_delta is not None:
            report.metadata["baseline_health_score_delta"] = comparison.health_score_delta
        if comparison.has_regressions:
            report.metadata["baseline_regressions"] = list(comparison.notes)
            if self.config.full_run.generate_recommendations:
                for note in comparison.notes:
                    report.recommendations.append(
                        Recommendation(
                            severity=RecommendationSeverity.WARNING,
                            category="Baseline Comparison",
                            issue="Regression detected relative to baseline",
                            text=note,
                        )
                    )

    def _log_report(self, report: DiagnosticReport) -> None:
        delta = (
            report.baseline_comparison.health_score_delta
            if report.baseline_comparison is not None
            else None
        )
        self._emit(
            DiagnosticEvent.info(
                EventType.REPORT,
                f"Diagnostics report generated with health score {report.health_score} "
                f"for {report.target or '<unknown>'}",
                source="runner",
                data={
                    "target": report.target,
                    "health_score": report.health_score,
                    "recommendation_count": len(report.recommendations),
                    "baseline_delta": delta,
                },
            )
        )
        if report.connection is not None:
            conn = report.connection
            self._emit(
                DiagnosticEvent(
                    event_type=EventType.CONNECTION,
                    severity=(
                        EventSeverity.WARNING if conn.success_rate < 0.8 else EventSeverity.INFO
                    ),
                    message=(
                        f"Connection success rate {conn.success_rate:.1%} across "
                        f"{conn.total_attempts} attempts."
                    ),
                    source="runner",
                    data=conn.model_dump(mode="json"),
                )
            )
        if report.network is not None and report.network.average_ms is not None:
            self._emit(
                DiagnosticEvent.info(
                    EventType.NETWORK,
                    f"Network latency avg {report.network.average_ms:,.0f} ms.",
                    source="runner",
                    data=report.network.model_dump(mode="json"),
                )
            )
