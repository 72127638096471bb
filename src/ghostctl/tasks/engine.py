"""Sequential runner for setup, update, install and uninstall steps."""
from __future__ import annotations

import logging
from collections.abc import Collection, Sequence

from ..errors import AbortRun, SkipSignal, StepFailure
from ..ui import UI
from .models import RunContext, RunReport, Step, StepResult, StepStatus, TaskHandle, validate_steps

LOGGER = logging.getLogger(__name__)


class TaskRunner:
    """Execute steps one at a time in registration order.

    Per step: filter on ``enabled``; honour stage selection and opt-out flags;
    decline steps whose dependencies were declined; evaluate ``skip``; confirm
    optional steps when prompting; run ``task``. The first exception aborts the
    run and is raised as :class:`StepFailure`, or :class:`AbortRun` when earlier
    steps already completed.
    """

    def __init__(
        self,
        ui: UI,
        *,
        stages: Collection[str] | None = None,
        disabled: Collection[str] = (),
        prompt: bool = True,
    ) -> None:
        """Configure the runner.

        *stages* restricts the run to the listed step ids. *disabled* holds ids
        opted out with ``--no-setup-<id>``. *prompt* enables the per-step
        confirmation for optional steps.
        """
        self.ui = ui
        self.stages = set(stages) if stages is not None else None
        self.disabled = set(disabled)
        self.prompt = prompt

    async def run(self, steps: Sequence[Step], ctx: RunContext) -> RunReport:
        """Run *steps* against *ctx* and return the report."""
        validate_steps(steps)
        report = RunReport()
        declined: set[str] = set()

        for step in steps:
            if step.enabled is not None and not step.enabled(ctx):
                LOGGER.debug("Step %s not enabled for this run.", step.id)
                continue

            title = step.display_title
            reason = await self._decline_reason(step, ctx, declined)
            if reason is not None:
                declined.add(step.id)
                self.ui.step_skipped(title, reason)
                report.add(StepResult(step.id, title, StepStatus.DECLINED, reason))
                continue

            handle = TaskHandle(step)
            try:
                skip = await step.skip(ctx) if step.skip is not None else False
                if skip:
                    skip_reason = skip if isinstance(skip, str) else None
                    self.ui.step_skipped(title, skip_reason)
                    report.add(StepResult(step.id, title, StepStatus.SKIPPED, skip_reason))
                    continue

                if step.optional and self.prompt and self.stages is None:
                    if not self.ui.confirm(step.question, default=True):
                        declined.add(step.id)
                        await self._user_skipped(step, ctx)
                        self.ui.step_skipped(title, "declined")
                        report.add(StepResult(step.id, title, StepStatus.DECLINED, "declined"))
                        continue

                self.ui.step_started(title)
                await step.task(ctx, handle)
            except SkipSignal as signal:
                self.ui.step_skipped(handle.title, signal.reason)
                report.add(StepResult(step.id, handle.title, StepStatus.SKIPPED, signal.reason))
                continue
            except Exception as exc:
                self.ui.step_failed(handle.title, exc)
                report.add(StepResult(step.id, handle.title, StepStatus.FAILED, str(exc)))
                completed = report.completed
                error_cls = AbortRun if completed else StepFailure
                failure = error_cls(step.id, handle.title, exc, completed=completed, report=report)
                raise failure from exc

            self.ui.step_completed(handle.title)
            report.add(StepResult(step.id, handle.title, StepStatus.COMPLETED))

        return report

    async def _decline_reason(
        self,
        step: Step,
        ctx: RunContext,
        declined: set[str],
    ) -> str | None:
        if self.stages is not None:
            if step.stage_id not in self.stages:
                return "not selected"
            return None
        if step.id in self.disabled:
            await self._user_skipped(step, ctx)
            return f"disabled with --no-setup-{step.id}"
        for dependency in step.depends_on:
            if dependency in declined:
                return f"requires {dependency}, which was skipped"
        return None

    async def _user_skipped(self, step: Step, ctx: RunContext) -> None:
        if step.on_user_skip is not None:
            await step.on_user_skip(ctx)


__all__ = ["TaskRunner"]
