"""Continuous monitoring."""

from .monitor import DiagnosticMonitor, DiagnosticSnapshot

__all__ = ["DiagnosticMonitor", "DiagnosticSnapshot"]
