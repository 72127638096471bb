"""Result types shared by the doctor checks and the ``doctor`` command."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from ..instance import Instance
    from ..system import System


class ProbeStatus(str, Enum):
    """Traffic-light outcome of a single check, ordered by severity."""

    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {ProbeStatus.GREEN: 0, ProbeStatus.YELLOW: 1, ProbeStatus.RED: 2}

ProbeCategory = Literal["env", "system", "instance", "process"]

PROBE_CATEGORY_VALUES: tuple[ProbeCategory, ...] = ("env", "system", "instance", "process")


@dataclass(slots=True, frozen=True)
class ProbeExecutorOptions:
    """How many checks may run at once."""

    max_concurrency: int = 4


@dataclass(slots=True, frozen=True)
class ProbeContext:
    """What a check may look at.

    ``instance`` is ``None`` when doctor runs outside an installation; the
    instance checks then report yellow instead of inspecting anything.
    """

    system: System
    instance: Instance | None
    options: ProbeExecutorOptions = field(default_factory=ProbeExecutorOptions)


@dataclass(slots=True, frozen=True)
class ProbeResult:
    id: str
    category: ProbeCategory
    status: ProbeStatus
    message: str
    remediation: str | None = None
    duration_ms: int | None = None
    data: Mapping[str, Any] | None = None

    def as_dict(self) -> dict[str, object]:
        """Return the JSON form; optional fields are omitted when empty."""
        payload: dict[str, object] = {
            "id": self.id,
            "category": self.category,
            "status": self.status.value,
            "message": self.message,
        }
        if self.remediation:
            payload["remediation"] = self.remediation
        if self.duration_ms is not None:
            payload["duration_ms"] = self.duration_ms
        if self.data:
            payload["data"] = _jsonable(self.data)
        return payload


@dataclass(slots=True, frozen=True)
class ProbeDefinition:
    """A named check and the function that performs it."""

    id: str
    category: ProbeCategory
    run: Callable[[ProbeContext], ProbeResult]


@dataclass(slots=True, frozen=True)
class DoctorSummary:
    status: ProbeStatus
    exit_code: int
    totals: Mapping[ProbeStatus, int]


@dataclass(slots=True, frozen=True)
class DoctorReport:
    results: Sequence[ProbeResult]
    summary: DoctorSummary
    metadata: Mapping[str, Any] | None = None


def aggregate_results(results: Iterable[ProbeResult]) -> DoctorSummary:
    """Summarise *results*: the worst status wins and only red fails the run."""
    totals = dict.fromkeys(ProbeStatus, 0)
    for result in results:
        totals[result.status] += 1
    seen = [status for status, count in totals.items() if count]
    worst = max(seen, key=lambda status: status.severity, default=ProbeStatus.GREEN)
    return DoctorSummary(
        status=worst,
        exit_code=int(worst is ProbeStatus.RED),
        totals=totals,
    )


def build_report(
    results: Sequence[ProbeResult],
    metadata: Mapping[str, Any] | None = None,
) -> DoctorReport:
    """Wrap *results* together with their summary."""
    return DoctorReport(
        results=tuple(results),
        summary=aggregate_results(results),
        metadata=metadata,
    )


def _jsonable(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    return str(value)


def serialize_report(report: DoctorReport) -> dict[str, object]:
    """Return *report* as plain data suitable for ``--json`` and the operations log."""
    summary = report.summary
    return {
        "summary": {
            "status": summary.status.value,
            "exit_code": summary.exit_code,
            "totals": {status.value: summary.totals.get(status, 0) for status in ProbeStatus},
        },
        "results": [result.as_dict() for result in report.results],
        "metadata": _jsonable(report.metadata or {}),
    }
