"""Tests for the DiagnosticsClient wiring."""

import zipfile

import orjson
import pytest

from endpoint_diagnostics import DiagnosticsClient
from endpoint_diagnostics.baseline.store import FileBaselineStore, InMemoryBaselineStore
from endpoint_diagnostics.config.models import EnvSettings
from endpoint_diagnostics.events import MemorySink


@pytest.mark.asyncio
async def test_client_end_to_end(fast_config, endpoint, healthy_probes, tmp_path):
    fast_config.pipeline.log_directory = tmp_path / "logs"
    fast_config.baseline.storage_directory = tmp_path / "baselines"
    memory = MemorySink()

    async with DiagnosticsClient(healthy_probes, fast_config, extra_sinks=[memory]) as client:
        assert isinstance(client.baselines.store, FileBaselineStore)
        baseline = await client.capture_baseline(endpoint, "nightly", sample_count=2)
        report = await client.run_full(endpoint)
        comparison = client.compare(report, baseline_name="nightly")
        assert comparison.succeeded
        assert comparison.baseline_name == baseline.name

    assert not client.pipeline.is_running
    assert memory.events
    jsonl = next((tmp_path / "logs").glob("diagnostics-*.jsonl"))
    first = orjson.loads(jsonl.read_bytes().splitlines()[0])
    assert {"event_type", "severity", "message", "run_id"} <= set(first)

    archive = await client.create_diagnostic_package()
    with zipfile.ZipFile(archive) as zf:
        names = zf.namelist()
    assert jsonl.name in names
    assert "diagnostics.log" in names


@pytest.mark.asyncio
async def test_client_defaults_to_memory_store(fast_config, healthy_probes):
    client = DiagnosticsClient(healthy_probes, fast_config)
    assert isinstance(client.baselines.store, InMemoryBaselineStore)
    await client.stop()
    await client.start()
    await client.start()
    assert client.pipeline.is_running
    await client.stop()


@pytest.mark.asyncio
async def test_client_quick_run_and_monitor(fast_config, endpoint, healthy_probes):
    async with DiagnosticsClient(healthy_probes, fast_config) as client:
        triage = await client.run_quick(endpoint)
        assert len(triage.results) == 3
        monitor = client.monitor()
        assert monitor.runner is client.runner


def test_client_from_env(tmp_path, monkeypatch, healthy_probes):
    config_path = tmp_path / "config.json"
    config_path.write_bytes(orjson.dumps({"triage": {"total_timeout_seconds": 7.5}}))
    monkeypatch.setenv("ENDPOINT_DIAG_CONFIG_PATH", str(config_path))
    monkeypatch.setenv("ENDPOINT_DIAG_BASELINE_DIRECTORY", str(tmp_path / "b"))

    client = DiagnosticsClient.from_env(healthy_probes, EnvSettings(_env_file=None))
    assert client.config.triage.total_timeout_seconds == 7.5
    assert isinstance(client.baselines.store, FileBaselineStore)
    assert client.baselines.store.directory == tmp_path / "b"
