"""Diagnostic scan infrastructure."""

from __future__ import annotations

from .engine import PhaseScheduler, run_scan
from .models import (
    PROBE_ORDER,
    Issue,
    PhaseOutcome,
    PhaseStatus,
    ProbeContext,
    ProbeDefinition,
    ScanOptions,
    ScanResult,
    Severity,
)
from .probes import collect_probes, resolve_timeout
from .utils import format_mb, serialize_scan, to_payload

__all__ = [
    "PROBE_ORDER",
    "Issue",
    "PhaseOutcome",
    "PhaseScheduler",
    "PhaseStatus",
    "ProbeContext",
    "ProbeDefinition",
    "ScanOptions",
    "ScanResult",
    "Severity",
    "collect_probes",
    "format_mb",
    "resolve_timeout",
    "run_scan",
    "serialize_scan",
    "to_payload",
]
