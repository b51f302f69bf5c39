"""Retry-aware metric collection."""

from .errors import (
    FatalFailure,
    Outcome,
    ProbeError,
    Success,
    TransientFailure,
    is_transient_error,
)
from .retry import CollectorResult, CollectorStatus, RetryableCollector, backoff_delay

__all__ = [
    "CollectorResult",
    "CollectorStatus",
    "FatalFailure",
    "Outcome",
    "ProbeError",
    "RetryableCollector",
    "Success",
    "TransientFailure",
    "backoff_delay",
    "is_transient_error",
]
