"""Diagnostics client.

Wires one configuration into the engine: an explicitly constructed
:class:`EventPipeline`, the :class:`DiagnosticsRunner`, the
:class:`BaselineEngine` and its storage. The client owns the pipeline
lifecycle; ``start`` launches the event worker and ``stop`` performs the
final flush.

Example
-------
>>> async def main(endpoint):  # doctest: +SKIP
...     async with DiagnosticsClient(default_probe_set(endpoint)) as client:
...         report = await client.run_full(endpoint)
...         comparison = client.compare(report, baseline_name="nightly")
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from .baseline.engine import BaselineEngine
from .baseline.models import Baseline, BaselineComparisonResult
from .baseline.store import BaselineStore, FileBaselineStore, InMemoryBaselineStore
from .config.models import AppConfig, EnvSettings, load_config
from .events.pipeline import EventPipeline
from .events.sinks import EventSink
from .monitoring.monitor import DiagnosticMonitor
from .reports.models import DiagnosticReport
from .reports.recommendations import RecommendationRule
from .reports.runner import DiagnosticsRunner
from .triage.models import Probe, TriageResult
from .utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class DiagnosticsClient:  # pylint: disable=too-many-instance-attributes
    """Entry point tying probes, events and baselines together.

    Parameters
    ----------
    probes: Sequence[Probe]
        Probe set used for triage and full runs.
    config: Optional[AppConfig]
        Effective configuration; defaults when omitted.
    extra_sinks: Iterable[EventSink]
        Sinks added after the built-in ones.
    store: Optional[BaselineStore]
        Baseline storage; a file store under
        ``config.baseline.storage_directory`` when set, else in-memory.
    rules: Sequence[RecommendationRule]
        Additional recommendation rules.
    """

    def __init__(
        self,
        probes: Sequence[Probe],
        config: Optional[AppConfig] = None,
        *,
        extra_sinks: Iterable[EventSink] = (),
        store: Optional[BaselineStore] = None,
        rules: Sequence[RecommendationRule] = (),
    ) -> None:
        self.config = config or AppConfig()
        self.pipeline = EventPipeline.from_config(self.config.pipeline, extra_sinks)
        self.runner = DiagnosticsRunner(probes, self.config, self.pipeline, rules)
        if store is None:
            directory = self.config.baseline.storage_directory
            store = FileBaselineStore(directory) if directory else InMemoryBaselineStore()
        self.baselines = BaselineEngine(self.runner, store, self.config.baseline, self.pipeline)
        self._started = False

    @classmethod
    def from_env(
        cls,
        probes: Sequence[Probe],
        settings: Optional[EnvSettings] = None,
        **kwargs: Any,
    ) -> "DiagnosticsClient":
        """Build a client from ``ENDPOINT_DIAG_*`` settings and the optional config file."""
        return cls(probes, load_config(settings), **kwargs)

    async def start(self) -> None:
        """Start the event worker. Idempotent."""
        if self._started:
            logger.debug("client.start no-op: already started")
            return
        await self.pipeline.start()
        self._started = True
        logger.info("client.started")

    async def stop(self) -> None:
        """Flush remaining events and close sinks. Idempotent."""
        if not self._started:
            logger.debug("client.stop no-op: not started")
            return
        await self.pipeline.stop()
        self._started = False
        logger.info("client.stopped")

    async def __aenter__(self) -> "DiagnosticsClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def run_quick(
        self, endpoint: Any, cancellation: Optional[CancellationToken] = None
    ) -> TriageResult:
        return await self.runner.run_quick(endpoint, cancellation)

    async def run_full(
        self,
        endpoint: Any,
        cancellation: Optional[CancellationToken] = None,
        baseline_report: Optional[DiagnosticReport] = None,
    ) -> DiagnosticReport:
        return await self.runner.run_full(endpoint, cancellation, baseline_report)

    async def capture_baseline(
        self,
        endpoint: Any,
        name: str,
        sample_count: Optional[int] = None,
        sample_interval: Optional[float] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> Baseline:
        return await self.baselines.capture(
            endpoint, name, sample_count, sample_interval, cancellation
        )

    def compare(
        self,
        current: DiagnosticReport,
        baseline_name: Optional[str] = None,
        endpoint: Any = None,
    ) -> BaselineComparisonResult:
        return self.baselines.compare(current, baseline_name, endpoint)

    def monitor(self) -> DiagnosticMonitor:
        """New monitor bound to this client's runner and pipeline."""
        return DiagnosticMonitor(self.runner, self.pipeline)

    async def create_diagnostic_package(
        self, since: Optional[datetime] = None, output_path: Optional[Path] = None
    ) -> Path:
        return await self.pipeline.create_diagnostic_package(since, output_path)
