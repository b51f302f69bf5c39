"""Tests for configuration models and loading."""

import orjson
import pytest
from pydantic import ValidationError

from endpoint_diagnostics.config.models import (
    AppConfig,
    EnvSettings,
    HealthScoreWeights,
    RetryPolicy,
    load_config,
)


def test_defaults_are_usable():
    cfg = AppConfig()
    assert cfg.triage.total_timeout_seconds == 30.0
    assert cfg.triage.retry.max_attempts == 3
    assert cfg.pipeline.capacity == 8192
    assert cfg.pipeline.log_directory is None
    assert cfg.baseline.sample_count == 5
    assert cfg.full_run.health_weights == HealthScoreWeights()


def test_load_partial_document(tmp_path):
    path = tmp_path / "config.json"
    path.write_bytes(
        orjson.dumps(
            {
                "triage": {"network_jitter_threshold_ms": 25, "retry": {"max_attempts": 5}},
                "pipeline": {"log_directory": str(tmp_path / "logs"), "console_mirror": True},
                "full_run": {"health_weights": {"connection_failure": 60}},
            }
        )
    )
    cfg = AppConfig.load(path)
    assert cfg.triage.network_jitter_threshold_ms == 25.0
    assert cfg.triage.retry.max_attempts == 5
    assert cfg.triage.retry.base_delay_seconds == 0.15
    assert cfg.pipeline.log_directory == tmp_path / "logs"
    assert cfg.pipeline.console_mirror is True
    assert cfg.full_run.health_weights.connection_failure == 60.0
    assert cfg.full_run.health_weights.jitter == 10.0


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        AppConfig.load(tmp_path / "absent.json")


@pytest.mark.parametrize(
    "payload",
    [
        {"triage": {"total_timeout_seconds": 0}},
        {"pipeline": {"capacity": 0}},
        {"baseline": {"sample_count": 0}},
        {"triage": {"saturation_critical_percent": 120}},
    ],
)
def test_invalid_values_are_rejected(tmp_path, payload):
    path = tmp_path / "config.json"
    path.write_bytes(orjson.dumps(payload))
    with pytest.raises(ValidationError):
        AppConfig.load(path)


def test_retry_policy_bounds():
    with pytest.raises(ValidationError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValidationError):
        RetryPolicy(base_delay_seconds=-1)


def test_env_settings_prefix(monkeypatch, tmp_path):
    monkeypatch.setenv("ENDPOINT_DIAG_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("ENDPOINT_DIAG_LOG_DIRECTORY", str(tmp_path / "logs"))
    settings = EnvSettings(_env_file=None)
    assert settings.log_level == "DEBUG"
    cfg = load_config(settings)
    assert cfg.pipeline.log_directory == tmp_path / "logs"
    assert cfg.baseline.storage_directory is None


def test_load_config_without_file_uses_defaults(monkeypatch):
    for var in ("CONFIG_PATH", "LOG_DIRECTORY", "BASELINE_DIRECTORY"):
        monkeypatch.delenv(f"ENDPOINT_DIAG_{var}", raising=False)
    cfg = load_config(EnvSettings(_env_file=None))
    assert cfg == AppConfig()
