"""Diagnostic events, sinks and the non-blocking pipeline."""

from .models import DiagnosticEvent, EventSeverity, EventType
from .package import create_diagnostic_package
from .pipeline import EventPipeline
from .sinks import (
    ConsoleSink,
    EventSink,
    JsonLinesSink,
    MemorySink,
    RollingFileSink,
    build_default_sinks,
)

__all__ = [
    "ConsoleSink",
    "DiagnosticEvent",
    "EventPipeline",
    "EventSeverity",
    "EventSink",
    "EventType",
    "JsonLinesSink",
    "MemorySink",
    "RollingFileSink",
    "build_default_sinks",
    "create_diagnostic_package",
]
