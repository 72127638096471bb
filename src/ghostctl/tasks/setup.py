"""Composition and execution of the ``setup`` step list."""
from __future__ import annotations

from collections.abc import Collection

from .. import __version__
from ..system import System
from .configure import configure, skip_configure
from .engine import TaskRunner
from .linux import linux_user_step
from .migrations import database_migrate_step
from .models import RunContext, RunReport, Step, TaskHandle

HEAD_STEP_IDS = ("config", "instance", "linux-user")
TAIL_STEP_IDS = ("migrate", "start")


async def register_instance(ctx: RunContext, handle: TaskHandle) -> None:
    """Add the instance to the global registry and record its name."""
    pname = ctx.argv.get("pname")
    if pname and not ctx.instance.cli_config.get("name"):
        ctx.instance.name = str(pname).replace(".", "-")
    name = ctx.system.add_instance(ctx.instance)
    config = ctx.instance.config
    if not config.has("paths.contentPath"):
        config.set("paths.contentPath", str(ctx.instance.dir / "content")).save()
    ctx.instance.cli_version = __version__
    ctx.ui.log_verbose(f"Registered instance as '{name}'.")


async def skip_register_instance(ctx: RunContext) -> bool | str:
    """Skip when this directory is already registered under its recorded name."""
    if ctx.instance.cli_config.get("name") and ctx.instance.is_setup:
        return "Instance already set up"
    return False


async def start_instance(ctx: RunContext, handle: TaskHandle) -> None:
    """Start Ghost and tell the operator where to find it."""
    await ctx.instance.start(enable=bool(ctx.argv.get("enable", True)))
    url = ctx.instance.config.get("url")
    if url:
        ctx.ui.log(f"Ghost was started successfully. Your site is available at {url}", "green")


async def skip_start(ctx: RunContext) -> bool | str:
    """Starting is the one step that is not idempotent; skip when already running."""
    if ctx.argv.get("start") is False:
        return "disabled with --no-start"
    if await ctx.instance.is_running():
        return "Ghost is already running"
    return False


def head_steps() -> list[Step]:
    """Return the built-in steps that run before extension steps."""
    return [
        Step(
            id="config",
            name="configuration",
            title="Configuring Ghost",
            task=configure,
            skip=skip_configure,
        ),
        Step(
            id="instance",
            name="instance",
            title="Setting up instance",
            task=register_instance,
            skip=skip_register_instance,
        ),
        linux_user_step(),
    ]


def tail_steps() -> list[Step]:
    """Return the built-in steps that run after extension steps."""
    return [
        database_migrate_step(),
        Step(
            id="start",
            name="Ghost",
            title="Starting Ghost",
            task=start_instance,
            skip=skip_start,
            optional=True,
            prompt="Do you want to start Ghost?",
        ),
    ]


async def build_setup_steps(system: System) -> list[Step]:
    """Return built-in head steps, then each extension's steps, then the tail."""
    steps = head_steps()
    for contributed in await system.hook("setup"):
        steps.extend(contributed or ())
    steps.extend(tail_steps())
    return steps


async def run_setup(
    ctx: RunContext,
    *,
    stages: Collection[str] | None = None,
    disabled: Collection[str] = (),
) -> RunReport:
    """Compose and run the setup steps against *ctx*."""
    if stages is not None:
        ctx.argv["stages"] = list(stages)
    steps = await build_setup_steps(ctx.system)
    runner = TaskRunner(
        ctx.ui,
        stages=stages,
        disabled=disabled,
        prompt=ctx.ui.allow_prompt,
    )
    return await runner.run(steps, ctx)


__all__ = [
    "HEAD_STEP_IDS",
    "TAIL_STEP_IDS",
    "build_setup_steps",
    "head_steps",
    "register_instance",
    "run_setup",
    "tail_steps",
]
