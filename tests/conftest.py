"""Pytest configuration for test suite.

Ensures the project root is on ``sys.path`` so ``import endpoint_diagnostics``
resolves to the local sources regardless of the working directory pytest
chooses. Shared fixtures build scripted probes that need no network.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest


def _ensure_project_root_on_syspath() -> None:
    project_root = Path(__file__).resolve().parents[1]
    project_root_str = str(project_root)
    if project_root_str not in sys.path:
        # Prepend to prefer local sources over site-packages
        sys.path.insert(0, project_root_str)


_ensure_project_root_on_syspath()

from endpoint_diagnostics.config.models import AppConfig, RetryPolicy  # noqa: E402
from endpoint_diagnostics.endpoint import Endpoint  # noqa: E402
from endpoint_diagnostics.triage.models import Probe, ProbeRole, TestResult  # noqa: E402


def scripted_probe(
    name: str,
    role: ProbeRole = ProbeRole.CUSTOM,
    *,
    success: bool = True,
    delay: float = 0.0,
    metrics=None,
    issues=(),
    duration_ms=None,
) -> Probe:
    """Probe returning a fixed result after an optional delay."""

    async def run(endpoint, token):
        if delay:
            await asyncio.sleep(delay)
        return TestResult(
            name=name,
            success=success,
            details="scripted",
            duration_ms=duration_ms,
            issues=tuple(issues),
            metrics=dict(metrics or {}),
        )

    return Probe(name=name, func=run, role=role)


@pytest.fixture
def endpoint() -> Endpoint:
    return Endpoint(host="db.example.internal", port=5432)


@pytest.fixture
def fast_config() -> AppConfig:
    """Config with no retry back-off and no pauses between samples."""
    config = AppConfig()
    config.triage.total_timeout_seconds = 2.0
    config.triage.retry = RetryPolicy(max_attempts=1, base_delay_seconds=0.0)
    config.full_run.attempt_delay_seconds = 0.0
    config.full_run.connection_attempts = 3
    config.full_run.network_samples = 3
    config.baseline.sample_interval_seconds = 0.0
    config.baseline.sample_count = 3
    return config


@pytest.fixture
def healthy_probes():
    return [
        scripted_probe("network", ProbeRole.NETWORK, metrics={"latency_avg_ms": 10.0, "jitter_ms": 2.0}),
        scripted_probe("connection", ProbeRole.CONNECTION, duration_ms=20.0),
        scripted_probe("operation", ProbeRole.OPERATION, duration_ms=30.0),
    ]


@pytest.fixture
def make_probe():
    return scripted_probe
