"""Parallel probe triage and ranked diagnosis."""

from .models import (
    Diagnosis,
    DiagnosisCategory,
    Probe,
    ProbeRole,
    TestResult,
    TriageResult,
)
from .orchestrator import ProbeOrchestrator, validate_probe_set
from .probes import (
    default_probe_set,
    http_operation_probe,
    metric_threshold_probe,
    tcp_connection_probe,
    tcp_reachability_probe,
)
from .rules import diagnose

__all__ = [
    "Diagnosis",
    "DiagnosisCategory",
    "Probe",
    "ProbeOrchestrator",
    "ProbeRole",
    "TestResult",
    "TriageResult",
    "default_probe_set",
    "diagnose",
    "http_operation_probe",
    "metric_threshold_probe",
    "tcp_connection_probe",
    "tcp_reachability_probe",
    "validate_probe_set",
]
