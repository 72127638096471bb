"""Step descriptors and run bookkeeping for the task runner."""
from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..errors import SkipSignal

if TYPE_CHECKING:
    from ..instance import Instance
    from ..system import System
    from ..ui import UI

STEP_ID_PATTERN = re.compile(r"^[a-z][a-z0-9-]*$")


@dataclass(slots=True)
class RunContext:
    """Shared state threaded through every step of one run.

    ``state`` is the only place steps hand results to later steps, e.g. the
    MySQL step stores the generated credentials under ``state["mysql"]``.
    """

    ui: UI
    system: System
    instance: Instance
    argv: dict[str, Any] = field(default_factory=dict)
    state: dict[str, Any] = field(default_factory=dict)

    @property
    def local(self) -> bool:
        """Return whether the run targets a local (development) install."""
        return bool(self.argv.get("local"))


class TaskHandle:
    """Given to a running step so it can skip itself or retitle its output."""

    def __init__(self, step: Step) -> None:
        """Bind the handle to *step*."""
        self.step = step
        self.title = step.display_title

    def skip(self, reason: str | None = None) -> None:
        """Abort the current step without failing the run."""
        raise SkipSignal(reason)


StepTask = Callable[[RunContext, TaskHandle], Awaitable[None]]
SkipCheck = Callable[[RunContext], Awaitable[bool | str]]
EnabledCheck = Callable[[RunContext], bool]
UserSkipHook = Callable[[RunContext], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class Step:
    """One unit of orchestrated work.

    ``enabled`` is a cheap synchronous filter deciding whether the step is
    relevant to this invocation at all. ``skip`` inspects durable state and
    returns ``False`` to proceed, ``True`` to skip quietly or a string to skip
    with that reason. ``optional`` steps are confirmed with the operator when
    prompting is on; ``depends_on`` names earlier steps whose being declined
    declines this one too. ``stage`` files the step under another step's id
    for stage selection, so selecting that id runs both.
    """

    id: str
    name: str
    task: StepTask
    title: str | None = None
    enabled: EnabledCheck | None = None
    skip: SkipCheck | None = None
    optional: bool = False
    prompt: str | None = None
    depends_on: tuple[str, ...] = ()
    on_user_skip: UserSkipHook | None = None
    stage: str | None = None

    def __post_init__(self) -> None:
        """Validate the descriptor once, at construction."""
        if not STEP_ID_PATTERN.match(self.id):
            raise ValueError(f"Invalid step id {self.id!r}; use lowercase words joined by '-'.")
        if not self.name.strip():
            raise ValueError(f"Step {self.id!r} needs a non-empty name.")
        if not callable(self.task):
            raise TypeError(f"Step {self.id!r} task must be callable.")
        if self.id in self.depends_on:
            raise ValueError(f"Step {self.id!r} cannot depend on itself.")

    @property
    def stage_id(self) -> str:
        """Return the id stage selection matches against."""
        return self.stage or self.id

    @property
    def display_title(self) -> str:
        """Return the title shown to the operator."""
        return self.title or f"Setting up {self.name}"

    @property
    def question(self) -> str:
        """Return the confirmation asked before an optional step."""
        return self.prompt or f"Do you wish to set up {self.name}?"


def validate_steps(steps: Sequence[Step]) -> None:
    """Reject duplicate ids and dependencies on later or unknown steps."""
    seen: set[str] = set()
    for step in steps:
        if step.id in seen:
            raise ValueError(f"Duplicate step id {step.id!r}.")
        for dependency in step.depends_on:
            if dependency not in seen:
                raise ValueError(
                    f"Step {step.id!r} depends on {dependency!r}, "
                    "which is not registered before it."
                )
        seen.add(step.id)


class StepStatus(str, Enum):
    """Outcome of a single step."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    DECLINED = "declined"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class StepResult:
    """Recorded outcome of one step."""

    id: str
    title: str
    status: StepStatus
    reason: str | None = None


@dataclass(slots=True)
class RunReport:
    """Ordered results of a run; steps that were not enabled are absent."""

    results: list[StepResult] = field(default_factory=list)

    def add(self, result: StepResult) -> None:
        """Append *result*."""
        self.results.append(result)

    def ids(self, status: StepStatus | None = None) -> list[str]:
        """Return step ids, optionally only those with *status*."""
        return [result.id for result in self.results if status is None or result.status is status]

    @property
    def completed(self) -> list[str]:
        """Return ids of steps that ran to completion."""
        return self.ids(StepStatus.COMPLETED)

    def get(self, step_id: str) -> StepResult | None:
        """Return the result for *step_id*, if the step was reported."""
        for result in self.results:
            if result.id == step_id:
                return result
        return None

    def to_dict(self) -> Mapping[str, object]:
        """Return a serialisable summary for the operation log."""
        return {
            "steps": [
                {"id": r.id, "status": r.status.value, "reason": r.reason} for r in self.results
            ]
        }


__all__ = [
    "RunContext",
    "RunReport",
    "Step",
    "StepResult",
    "StepStatus",
    "TaskHandle",
    "validate_steps",
]
