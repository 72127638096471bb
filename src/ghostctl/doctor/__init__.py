"""Doctor command infrastructure."""

from __future__ import annotations

from .engine import DoctorEngine, run_probes
from .models import (
    PROBE_CATEGORY_VALUES,
    DoctorReport,
    DoctorSummary,
    ProbeCategory,
    ProbeContext,
    ProbeDefinition,
    ProbeExecutorOptions,
    ProbeResult,
    ProbeStatus,
    aggregate_results,
    build_report,
    serialize_report,
)
from .probes import collect_probes

__all__ = [
    "DoctorEngine",
    "DoctorReport",
    "DoctorSummary",
    "PROBE_CATEGORY_VALUES",
    "ProbeCategory",
    "ProbeContext",
    "ProbeDefinition",
    "ProbeExecutorOptions",
    "ProbeResult",
    "ProbeStatus",
    "aggregate_results",
    "build_report",
    "collect_probes",
    "run_probes",
    "serialize_report",
]
