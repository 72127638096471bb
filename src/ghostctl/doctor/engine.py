"""Runs doctor checks on a thread pool and assembles the report."""

from __future__ import annotations

import logging
import time
import traceback
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

from ..errors import ConfigError
from .models import (
    DoctorReport,
    ProbeContext,
    ProbeDefinition,
    ProbeResult,
    ProbeStatus,
    build_report,
)

LOGGER = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _check(probe: ProbeDefinition, context: ProbeContext) -> ProbeResult:
    started = time.perf_counter()
    try:
        result = probe.run(context)
    except Exception as exc:  # noqa: BLE001 - a crashing check is reported red
        return ProbeResult(
            id=probe.id,
            category=probe.category,
            status=ProbeStatus.RED,
            message=f"Check '{probe.id}' crashed: {exc}",
            duration_ms=_elapsed_ms(started),
            data={"exception": repr(exc), "traceback": traceback.format_exc()},
        )
    # The definition, not the check, decides where a result is filed.
    return replace(
        result,
        id=probe.id,
        category=probe.category,
        duration_ms=_elapsed_ms(started) if result.duration_ms is None else result.duration_ms,
    )


def prime_context(context: ProbeContext) -> None:
    """Load the lazily cached stores and extensions once, before checks share them."""
    context.system.extensions  # noqa: B018
    stores = [context.system.global_config]
    if context.instance is not None:
        stores += [context.instance.cli_config, context.instance.config]
    for store in stores:
        try:
            store.values  # noqa: B018
        except ConfigError as exc:
            # Left unloaded; the checks reading it report the error.
            LOGGER.debug("Not priming %s: %s", store.path, exc.message)


def run_probes(context: ProbeContext, probes: Sequence[ProbeDefinition]) -> list[ProbeResult]:
    """Run *probes*, at most ``max_concurrency`` at a time, in registration order."""
    workers = max(1, context.options.max_concurrency)
    if workers == 1 or len(probes) <= 1:
        return [_check(probe, context) for probe in probes]
    prime_context(context)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="doctor") as pool:
        return list(pool.map(lambda probe: _check(probe, context), probes))


class DoctorEngine:
    """Runs a set of checks against one context."""

    def __init__(self, context: ProbeContext) -> None:
        self.context = context

    def run(
        self,
        probes: Sequence[ProbeDefinition],
        *,
        metadata: Mapping[str, object] | None = None,
    ) -> DoctorReport:
        """Run *probes* and return the report, with timing merged into *metadata*."""
        started = time.perf_counter()
        results = run_probes(self.context, probes)
        return build_report(
            results,
            metadata={
                "duration_ms": _elapsed_ms(started),
                "probe_count": len(results),
                **(metadata or {}),
            },
        )
