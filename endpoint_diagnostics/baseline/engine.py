"""Baseline capture and comparison.

:meth:`BaselineEngine.capture` runs ``sample_count`` full diagnostic passes
spaced by ``sample_interval``, reduces each metric to P50/P95/P99 and saves
the result keyed by name and endpoint fingerprint. :meth:`BaselineEngine.compare`
resolves a stored baseline (by name, else by fingerprint) and reports signed
deltas and regressions. A missing baseline is a normal result, not an error.
"""

from __future__ import annotations

import hashlib
import logging
import platform
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import orjson
import psutil

from ..config.models import BaselineConfig
from ..endpoint import endpoint_fingerprint, endpoint_label
from ..events.models import DiagnosticEvent, EventType
from ..events.pipeline import EventPipeline
from ..reports.models import DiagnosticReport
from ..reports.runner import DiagnosticsRunner
from ..utils.cancellation import CancellationToken, ensure_token
from .comparer import compare_to_baseline, report_values
from .models import METRIC_KEYS, Baseline, BaselineComparisonResult
from .statistics import summarize_samples
from .store import BaselineStore, InMemoryBaselineStore

logger = logging.getLogger(__name__)


def machine_fingerprint() -> str:
    """Stable hash of the capturing host's environment."""
    info = {
        "node": platform.node(),
        "system": platform.system(),
        "release": platform.release(),
        "machine": platform.machine(),
        "python": sys.version.split()[0],
        "cpus": psutil.cpu_count(logical=True) or 0,
        "memory_mb": psutil.virtual_memory().total // (1024 * 1024),
    }
    return hashlib.sha256(orjson.dumps(info, option=orjson.OPT_SORT_KEYS)).hexdigest()


class BaselineEngine:
    """Capture statistical baselines and detect regressions against them.

    Parameters
    ----------
    runner: DiagnosticsRunner
        Performs the full diagnostic passes sampled during capture.
    store: Optional[BaselineStore]
        Durable storage; an in-memory store is used when omitted.
    config: Optional[BaselineConfig]
        Default sample count and interval.
    pipeline: Optional[EventPipeline]
        Destination for baseline events.
    """

    def __init__(
        self,
        runner: DiagnosticsRunner,
        store: Optional[BaselineStore] = None,
        config: Optional[BaselineConfig] = None,
        pipeline: Optional[EventPipeline] = None,
    ) -> None:
        self.runner = runner
        self.store: BaselineStore = store if store is not None else InMemoryBaselineStore()
        self.config = config or BaselineConfig()
        self._pipeline = pipeline

    def _emit(self, event: DiagnosticEvent) -> None:
        if self._pipeline is not None:
            self._pipeline.enqueue(event)

    async def capture(
        self,
        endpoint: Any,
        name: str,
        sample_count: Optional[int] = None,
        sample_interval: Optional[float] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> Baseline:
        """Capture and persist a baseline named ``name``.

        Raises
        ------
        ValueError
            If ``name`` is blank, ``sample_count < 1`` or ``sample_interval < 0``.
        OperationCancelledError
            If cancelled; nothing is persisted.
        """
        if not name or not name.strip():
            raise ValueError("baseline name must not be blank")
        count = self.config.sample_count if sample_count is None else sample_count
        interval = self.config.sample_interval_seconds if sample_interval is None else sample_interval
        if count < 1:
            raise ValueError("sample_count must be >= 1")
        if interval < 0:
            raise ValueError("sample_interval must be >= 0")

        token = ensure_token(cancellation)
        fingerprint = endpoint_fingerprint(endpoint)
        samples: Dict[str, List[Optional[float]]] = {key: [] for key in METRIC_KEYS}
        logger.info("baseline.capture.started", extra={"baseline": name, "samples": count})

        for index in range(count):
            if index:
                await token.sleep(interval)
            token.raise_if_cancelled()
            report = await self.runner.run_full(endpoint, token)
            token.raise_if_cancelled()
            for key, value in report_values(report).items():
                samples[key].append(value)
            logger.debug(
                "baseline.capture.sample",
                extra={"baseline": name, "index": index + 1, "health_score": report.health_score},
            )

        baseline = Baseline(
            name=name,
            captured_at=datetime.now(timezone.utc),
            machine_fingerprint=machine_fingerprint(),
            endpoint_fingerprint=fingerprint,
            sample_count=count,
            metrics=summarize_samples(samples),
            target=endpoint_label(endpoint),
        )
        self.store.save(baseline)
        logger.info(
            "baseline.capture.completed",
            extra={"baseline": name, "metrics": sorted(baseline.metrics)},
        )
        self._emit(
            DiagnosticEvent.info(
                EventType.BASELINE,
                f"Baseline '{name}' captured from {count} samples.",
                source="baseline",
                data={
                    "name": name,
                    "endpoint_fingerprint": fingerprint,
                    "metrics": {k: v.model_dump() for k, v in baseline.metrics.items()},
                },
            )
        )
        return baseline

    def resolve(
        self, baseline_name: Optional[str] = None, fingerprint: Optional[str] = None
    ) -> Optional[Baseline]:
        """Most recent capture under ``baseline_name``.

        The endpoint fingerprint is consulted only when no name is given; an
        unknown name never resolves to another capture.
        """
        if baseline_name:
            return self.store.latest_by_name(baseline_name)
        if fingerprint:
            return self.store.latest_by_fingerprint(fingerprint)
        return None

    def compare(
        self,
        current: DiagnosticReport,
        baseline_name: Optional[str] = None,
        endpoint: Any = None,
        *,
        fingerprint: Optional[str] = None,
    ) -> BaselineComparisonResult:
        """Compare ``current`` against the resolved baseline.

        The fingerprint comes from ``fingerprint``, else from ``endpoint``,
        else from the report itself.
        """
        if current is None:
            raise ValueError("current report must be provided")
        key = fingerprint
        if key is None and endpoint is not None:
            key = endpoint_fingerprint(endpoint)
        if key is None:
            key = current.endpoint_fingerprint

        baseline = self.resolve(baseline_name, key)
        if baseline is None:
            wanted = f"name '{baseline_name}'" if baseline_name else "this endpoint"
            message = f"No baseline found for {wanted}; capture one first."
            logger.info("baseline.compare.not_found", extra={"baseline": baseline_name})
            return BaselineComparisonResult.not_found(message)

        result = compare_to_baseline(current, baseline)
        logger.info(
            "baseline.compare.completed",
            extra={
                "baseline": baseline.name,
                "has_regressions": result.has_regressions,
                "notes": len(result.notes),
            },
        )
        if result.has_regressions:
            self._emit(
                DiagnosticEvent.warning(
                    EventType.BASELINE,
                    f"Regressions detected against baseline '{baseline.name}'.",
                    source="baseline",
                    data={"notes": list(result.notes)},
                )
            )
        return result
