"""
Endpoint diagnostics package.

This package hosts the diagnostic orchestration engine: a retry-aware probe
collector, a parallel triage orchestrator, percentile baselines with
regression detection, and a non-blocking event pipeline that persists every
diagnostic event to pluggable sinks. :class:`DiagnosticsClient` wires them
together from one configuration.
"""

from .__version__ import __baseline_format_version__, __version__
from .client import DiagnosticsClient
from .endpoint import Endpoint

__all__ = ["DiagnosticsClient", "Endpoint", "__version__", "__baseline_format_version__"]
