"""Step descriptors and the sequential task runner."""
from __future__ import annotations

from .engine import TaskRunner
from .models import (
    RunContext,
    RunReport,
    Step,
    StepResult,
    StepStatus,
    TaskHandle,
    validate_steps,
)

__all__ = [
    "RunContext",
    "RunReport",
    "Step",
    "StepResult",
    "StepStatus",
    "TaskHandle",
    "TaskRunner",
    "validate_steps",
]
