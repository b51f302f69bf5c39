"""Config models and loader.

This module defines Pydantic models for file- and environment-based
configuration of the diagnostic engine. Every model has usable defaults, so
an empty JSON object (or no file at all) yields a working configuration.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import orjson
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RetryPolicy(BaseModel):
    """Retry behaviour applied to every probe invocation.

    Attributes
    ----------
    max_attempts: int
        Total attempts including the first one.
    base_delay_seconds: float
        Delay before the second attempt; doubles for each later attempt.
    max_delay_seconds: Optional[float]
        Optional cap for a single back-off delay.
    """

    max_attempts: int = Field(3, ge=1, description="Total attempts per probe")
    base_delay_seconds: float = Field(
        0.15, ge=0.0, description="Back-off before attempt 2, doubled afterwards"
    )
    max_delay_seconds: Optional[float] = Field(
        5.0, ge=0.0, description="Upper bound for a single back-off delay"
    )


class TriageConfig(BaseModel):
    """Budget and thresholds for a triage pass.

    Attributes
    ----------
    total_timeout_seconds: float
        Wall-clock budget for one orchestration pass. Probes still running at
        the deadline are abandoned and reported as timed out.
    network_jitter_threshold_ms: float
        Latency variance above which the network probe is considered unstable.
    saturation_critical_percent: float
        Utilization above which the resource-saturation rule fires.
    slow_operation_threshold_ms: float
        Elapsed time above which the operation-latency rule fires.
    slow_connection_threshold_ms: float
        Elapsed time above which a connection probe is reported as slow.
    """

    total_timeout_seconds: float = Field(30.0, gt=0.0)
    network_jitter_threshold_ms: float = Field(50.0, ge=0.0)
    saturation_critical_percent: float = Field(80.0, ge=0.0, le=100.0)
    slow_operation_threshold_ms: float = Field(500.0, ge=0.0)
    slow_connection_threshold_ms: float = Field(1000.0, ge=0.0)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)


class PipelineConfig(BaseModel):
    """Event pipeline sizing and the built-in sinks.

    Attributes
    ----------
    capacity: int
        Maximum queued events; the oldest is evicted when full.
    flush_interval_seconds: float
        Idle wait between flush cycles of the background worker.
    batch_size: int
        Queue length that triggers an immediate flush; also the largest batch
        handed to sinks in one cycle.
    error_backoff_seconds: float
        Pause after an unexpected worker error before resuming.
    log_directory: Optional[Path]
        Directory for the JSON-lines and rolling text sinks. When unset, no
        file sinks are created by ``build_default_sinks``.
    rolling_file_size_mb: int
        Size at which the rolling text log rolls over.
    rolling_file_count: int
        Number of rolled files retained.
    console_mirror: bool
        Mirror events to the console through structlog.
    """

    capacity: int = Field(8192, ge=1)
    flush_interval_seconds: float = Field(1.0, gt=0.0)
    batch_size: int = Field(256, ge=1)
    error_backoff_seconds: float = Field(2.0, ge=0.0)
    log_directory: Optional[Path] = None
    rolling_file_size_mb: int = Field(5, ge=1)
    rolling_file_count: int = Field(5, ge=1)
    console_mirror: bool = False


class BaselineConfig(BaseModel):
    """Defaults for baseline capture.

    Attributes
    ----------
    sample_count: int
        Number of full diagnostic passes per capture.
    sample_interval_seconds: float
        Pause between passes.
    storage_directory: Optional[Path]
        Directory for ``FileBaselineStore``; in-memory storage when unset.
    """

    sample_count: int = Field(5, ge=1)
    sample_interval_seconds: float = Field(2.0, ge=0.0)
    storage_directory: Optional[Path] = None


class HealthScoreWeights(BaseModel):
    """Penalty weights for the 0-100 health score.

    The defaults reproduce the historical scoring. They have never been tuned
    against field data and are exposed here so operators can adjust them.
    """

    connection_failure: float = Field(40.0, ge=0.0)
    connection_latency: float = Field(15.0, ge=0.0)
    connection_latency_scale_ms: float = Field(1000.0, gt=0.0)
    network_latency: float = Field(20.0, ge=0.0)
    network_latency_scale_ms: float = Field(200.0, gt=0.0)
    jitter: float = Field(10.0, ge=0.0)
    jitter_scale_ms: float = Field(100.0, gt=0.0)
    critical_recommendation: float = Field(10.0, ge=0.0)
    warning_recommendation: float = Field(5.0, ge=0.0)


class FullRunConfig(BaseModel):
    """Sampling performed by a full diagnostic run on top of triage.

    Attributes
    ----------
    connection_attempts: int
        Sequential connection-probe invocations used for the success rate.
    network_samples: int
        Sequential network-probe invocations used for latency statistics.
    attempt_delay_seconds: float
        Pause between those sequential invocations.
    """

    connection_attempts: int = Field(5, ge=1)
    network_samples: int = Field(4, ge=1)
    attempt_delay_seconds: float = Field(0.2, ge=0.0)
    generate_recommendations: bool = True
    health_weights: HealthScoreWeights = Field(default_factory=HealthScoreWeights)


class AppConfig(BaseModel):
    """Top-level application configuration."""

    triage: TriageConfig = Field(default_factory=TriageConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    baseline: BaselineConfig = Field(default_factory=BaselineConfig)
    full_run: FullRunConfig = Field(default_factory=FullRunConfig)

    @staticmethod
    def load(path: Path) -> "AppConfig":
        """Load application config from a JSON file.

        Raises
        ------
        FileNotFoundError
            If ``path`` does not exist.
        pydantic.ValidationError
            If the document does not match the configuration schema.
        """
        data = orjson.loads(path.read_bytes())
        return AppConfig.model_validate(data)


class EnvSettings(BaseSettings):
    """Environment-driven settings and .env support.

    Attributes
    ----------
    log_level: str
        Logging level name (e.g., "DEBUG", "INFO"). Defaults to "INFO".
    log_directory: Optional[Path]
        Overrides ``PipelineConfig.log_directory``.
    baseline_directory: Optional[Path]
        Overrides ``BaselineConfig.storage_directory``.
    config_path: Optional[Path]
        Optional JSON config file consumed by ``load_config``.
    """

    model_config = SettingsConfigDict(env_file=".env", env_prefix="ENDPOINT_DIAG_")

    log_level: str = Field("INFO")
    log_directory: Optional[Path] = None
    baseline_directory: Optional[Path] = None
    config_path: Optional[Path] = None


def load_config(settings: Optional[EnvSettings] = None) -> AppConfig:
    """Build the effective configuration from the environment.

    Reads ``config_path`` when set, then applies directory overrides from the
    environment on top of the file values.
    """
    settings = settings or EnvSettings()
    cfg = AppConfig.load(settings.config_path) if settings.config_path else AppConfig()
    if settings.log_directory is not None:
        cfg.pipeline.log_directory = settings.log_directory
    if settings.baseline_directory is not None:
        cfg.baseline.storage_directory = settings.baseline_directory
    return cfg
