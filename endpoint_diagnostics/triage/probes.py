"""Reference probe factories for TCP/HTTP reachable endpoints.

Each factory returns a :class:`Probe` whose function accepts an endpoint
exposing ``host`` and ``port`` (and ``url`` for HTTP), such as
:class:`~endpoint_diagnostics.endpoint.Endpoint`. Knowledge of *which*
server-side metric to read stays with the caller: saturation and contention
probes wrap an injected async reader.
"""

from __future__ import annotations

import asyncio
import logging
import statistics
import time
from typing import Any, Awaitable, Callable, List, Optional

import httpx

from ..collector.errors import ProbeError
from ..config.models import TriageConfig
from ..utils.cancellation import CancellationToken
from .models import Probe, ProbeRole, TestResult
from .rules import BLOCKED_METRIC, JITTER_METRIC, UTILIZATION_METRIC

logger = logging.getLogger(__name__)

MetricReader = Callable[[Any, CancellationToken], Awaitable[Optional[float]]]


def _target(endpoint: Any) -> tuple[str, int]:
    host = getattr(endpoint, "host", None)
    port = getattr(endpoint, "port", None)
    if not host or not port:
        raise ProbeError("endpoint must expose host and port")
    return str(host), int(port)


async def _connect_once(host: str, port: int, timeout: float) -> float:
    """Open and close one TCP connection; return elapsed milliseconds."""
    t0 = time.perf_counter()
    _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    elapsed = (time.perf_counter() - t0) * 1000.0
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return elapsed


def tcp_reachability_probe(
    name: str = "network",
    *,
    samples: int = 4,
    timeout: float = 2.0,
    interval: float = 0.2,
    high_latency_ms: float = 100.0,
) -> Probe:
    """Repeated TCP connects measuring round-trip latency and jitter.

    Succeeds when at least one connect succeeds. Reports ``latency_avg_ms``,
    ``latency_min_ms``, ``latency_max_ms``, ``jitter_ms`` (population standard
    deviation) and ``samples``; flags an average above ``high_latency_ms``.
    """
    if samples < 1:
        raise ValueError("samples must be >= 1")

    async def run(endpoint: Any, token: CancellationToken) -> TestResult:
        host, port = _target(endpoint)
        latencies: List[float] = []
        issues: List[str] = []
        for i in range(samples):
            token.raise_if_cancelled()
            try:
                latencies.append(await _connect_once(host, port, timeout))
            except (OSError, asyncio.TimeoutError) as exc:
                logger.debug(
                    "probe.network.connect_failed",
                    extra={"host": host, "port": port, "attempt": i + 1, "error": str(exc)},
                )
                issues.append(f"Connect {i + 1}: {str(exc) or type(exc).__name__}")
            if i < samples - 1:
                await token.sleep(interval)

        if not latencies:
            issues.append("Endpoint is unreachable over TCP (firewall or network issue).")
            return TestResult.failed(
                name, f"0/{samples} connects succeeded.", issues=tuple(issues)
            )

        average = statistics.fmean(latencies)
        metrics = {
            "latency_avg_ms": average,
            "latency_min_ms": min(latencies),
            "latency_max_ms": max(latencies),
            JITTER_METRIC: statistics.pstdev(latencies),
            "samples": float(len(latencies)),
        }
        if average > high_latency_ms:
            issues.append(f"High latency detected ({average:.0f} ms).")
        return TestResult.passed(
            name,
            f"{len(latencies)}/{samples} connects succeeded.",
            duration_ms=average,
            issues=tuple(issues),
            metrics=metrics,
        )

    return Probe(name, run, ProbeRole.NETWORK, description="TCP reachability and jitter")


def tcp_connection_probe(
    name: str = "connection",
    *,
    timeout: float = 5.0,
    slow_threshold_ms: float = 1000.0,
) -> Probe:
    """Establish one TCP connection; failures raise and are retried if transient."""

    async def run(endpoint: Any, token: CancellationToken) -> TestResult:
        token.raise_if_cancelled()
        host, port = _target(endpoint)
        elapsed = await _connect_once(host, port, timeout)
        issues = ("Slow connection establishment.",) if elapsed > slow_threshold_ms else ()
        return TestResult.passed(
            name,
            f"Connection established in {elapsed:.0f} ms.",
            duration_ms=elapsed,
            issues=issues,
        )

    return Probe(name, run, ProbeRole.CONNECTION, description="TCP connection establishment")


def http_operation_probe(
    name: str = "operation",
    *,
    path: str = "/",
    timeout: float = 10.0,
    slow_threshold_ms: float = 500.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Probe:
    """Time one GET against ``endpoint.url + path``.

    HTTP errors propagate as :class:`httpx.HTTPStatusError`, so 5xx and 429
    answers are retried by the default classifier and 4xx answers are not.
    """

    async def run(endpoint: Any, token: CancellationToken) -> TestResult:
        token.raise_if_cancelled()
        base_url = getattr(endpoint, "url", None)
        if not base_url:
            host, port = _target(endpoint)
            base_url = f"http://{host}:{port}"
        async with httpx.AsyncClient(
            base_url=base_url, timeout=timeout, transport=transport
        ) as client:
            t0 = time.perf_counter()
            resp = await client.get(path)
            elapsed = (time.perf_counter() - t0) * 1000.0
            resp.raise_for_status()
        issues = (
            ("Diagnostic operation executed slower than expected.",)
            if elapsed > slow_threshold_ms
            else ()
        )
        return TestResult.passed(
            name,
            f"GET {path} returned {resp.status_code} in {elapsed:.0f} ms.",
            duration_ms=elapsed,
            issues=issues,
            metrics={"status_code": float(resp.status_code)},
        )

    return Probe(name, run, ProbeRole.OPERATION, description=f"HTTP GET {path}")


def metric_threshold_probe(  # pylint: disable=too-many-arguments
    name: str,
    role: ProbeRole,
    reader: Optional[MetricReader],
    *,
    metric: str,
    threshold: float,
    issue: str,
    unit: str = "",
) -> Probe:
    """Read one numeric metric and flag values above ``threshold``.

    Without a reader, or when the reader returns None, the probe succeeds and
    reports the metric as unavailable.
    """

    async def run(endpoint: Any, token: CancellationToken) -> TestResult:
        token.raise_if_cancelled()
        if reader is None:
            return TestResult.passed(name, f"{metric} unavailable (no reader configured).")
        value = await reader(endpoint, token)
        if value is None:
            return TestResult.passed(name, f"{metric} unavailable.")
        issues = (issue,) if value > threshold else ()
        return TestResult.passed(
            name,
            f"{metric}: {value:g}{unit}.",
            issues=issues,
            metrics={metric: float(value)},
        )

    return Probe(name, run, role, description=f"{metric} threshold check")


def default_probe_set(
    endpoint: Any,
    config: Optional[TriageConfig] = None,
    *,
    utilization_reader: Optional[MetricReader] = None,
    blocked_sessions_reader: Optional[MetricReader] = None,
) -> List[Probe]:
    """The five canonical probes: network, connection, operation, saturation, contention.

    The operation probe uses HTTP when ``endpoint`` has a ``url``; otherwise
    it times a bare TCP round trip.
    """
    cfg = config or TriageConfig()
    if getattr(endpoint, "url", None):
        operation = http_operation_probe(slow_threshold_ms=cfg.slow_operation_threshold_ms)
    else:
        base = tcp_connection_probe("operation", slow_threshold_ms=cfg.slow_operation_threshold_ms)
        operation = Probe("operation", base.func, ProbeRole.OPERATION, description="TCP round trip")
    return [
        tcp_reachability_probe(),
        tcp_connection_probe(slow_threshold_ms=cfg.slow_connection_threshold_ms),
        operation,
        metric_threshold_probe(
            "saturation",
            ProbeRole.SATURATION,
            utilization_reader,
            metric=UTILIZATION_METRIC,
            threshold=cfg.saturation_critical_percent,
            issue="High server utilisation detected.",
            unit="%",
        ),
        metric_threshold_probe(
            "contention",
            ProbeRole.CONTENTION,
            blocked_sessions_reader,
            metric=BLOCKED_METRIC,
            threshold=0.0,
            issue="Blocking detected. Investigate long-running transactions.",
        ),
    ]
