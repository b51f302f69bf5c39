"""Diagnostic event records.

Every collector, probe and orchestration step describes what happened as a
:class:`DiagnosticEvent`. Events are produced continuously, queued in the
:class:`~endpoint_diagnostics.events.pipeline.EventPipeline` and delivered
once to each configured sink.
"""

from __future__ import annotations

import os
import platform
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

import psutil
from pydantic import BaseModel, ConfigDict, Field

from ..utils.correlation import get_run_id


class EventSeverity(str, Enum):
    """Severity attached to every diagnostic event."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class EventType(str, Enum):
    """Coarse category of a diagnostic event."""

    COLLECTOR = "collector"
    PROBE = "probe"
    TRIAGE = "triage"
    CONNECTION = "connection"
    NETWORK = "network"
    BASELINE = "baseline"
    REPORT = "report"
    MONITOR = "monitor"
    GENERAL = "general"


def _process_name() -> str:
    try:
        return psutil.Process(os.getpid()).name()
    except psutil.Error:
        return "unknown"


_MACHINE_NAME = platform.node() or "unknown"
_PROCESS_NAME = _process_name()


class DiagnosticEvent(BaseModel):
    """Timestamped, severity-tagged record of one diagnostic occurrence.

    Attributes
    ----------
    event_id: str
        Unique identifier (hex uuid4).
    timestamp: datetime
        UTC creation time.
    event_type: EventType
        Category tag used by sinks and filters.
    severity: EventSeverity
        Severity tag.
    message: str
        Free-text description.
    source: str
        Component that produced the event (e.g., "collector.network").
    data: Dict[str, Any]
        Opaque structured payload.
    run_id: str
        Correlation id of the active triage or full run, if any.
    machine_name / process_name: str
        Host and process identity for archived logs.
    """

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event_type: EventType = EventType.GENERAL
    severity: EventSeverity = EventSeverity.INFO
    message: str
    source: str = "engine"
    data: Dict[str, Any] = Field(default_factory=dict)
    run_id: str = Field(default_factory=get_run_id)
    machine_name: str = _MACHINE_NAME
    process_name: str = _PROCESS_NAME

    @classmethod
    def info(cls, event_type: EventType, message: str, **kwargs: Any) -> "DiagnosticEvent":
        return cls(event_type=event_type, severity=EventSeverity.INFO, message=message, **kwargs)

    @classmethod
    def warning(
        cls, event_type: EventType, message: str, **kwargs: Any
    ) -> "DiagnosticEvent":
        return cls(
            event_type=event_type, severity=EventSeverity.WARNING, message=message, **kwargs
        )

    @classmethod
    def error(cls, event_type: EventType, message: str, **kwargs: Any) -> "DiagnosticEvent":
        return cls(event_type=event_type, severity=EventSeverity.ERROR, message=message, **kwargs)

    def to_record(self) -> Dict[str, Any]:
        """Return a JSON-compatible dict for sinks.

        Values in ``data`` that have no JSON form are rendered with ``str``.
        """
        return self.model_dump(mode="json", fallback=str)

    def to_line(self) -> str:
        """Single-line text rendering used by the rolling text sink."""
        prefix = f"{self.timestamp.isoformat()} [{self.severity.value.upper()}]"
        run = f" run={self.run_id}" if self.run_id else ""
        return f"{prefix} {self.event_type.value}/{self.source}{run}: {self.message}"
