"""Removal of an instance: process, content, extension artefacts and files."""
from __future__ import annotations

import os
import shutil
from pathlib import Path

from .engine import TaskRunner
from .models import RunContext, RunReport, Step, TaskHandle


async def _skip_stop(ctx: RunContext) -> bool | str:
    if not await ctx.instance.is_running():
        return "Ghost is not running"
    return False


async def _stop(ctx: RunContext, handle: TaskHandle) -> None:
    ctx.instance.load_running_environment(set_node_env=True)
    await ctx.instance.stop(disable=True)


async def _remove_content(ctx: RunContext, handle: TaskHandle) -> None:
    content = ctx.instance.dir / "content"
    if not content.exists():
        handle.skip("No content folder")
    if content.stat().st_uid == os.getuid():
        shutil.rmtree(content)
    else:
        await ctx.ui.sudo(["rm", "-rf", str(content)])


async def _run_hooks(ctx: RunContext, handle: TaskHandle) -> None:
    await ctx.system.hook("uninstall", ctx.instance)


async def _unregister(ctx: RunContext, handle: TaskHandle) -> None:
    ctx.system.remove_instance(ctx.instance)


async def _remove_files(ctx: RunContext, handle: TaskHandle) -> None:
    directory = ctx.instance.dir
    for entry in list(directory.iterdir()):
        _remove_path(entry)


def _remove_path(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink(missing_ok=True)
    elif path.is_dir():
        shutil.rmtree(path)


def build_uninstall_steps() -> list[Step]:
    """Return the ordered uninstall steps."""
    return [
        Step(id="stop", name="Ghost", title="Stopping Ghost", task=_stop, skip=_skip_stop),
        Step(
            id="content",
            name="content folder",
            title="Removing content folder",
            task=_remove_content,
        ),
        Step(
            id="hooks",
            name="system configuration",
            title="Removing related configuration",
            task=_run_hooks,
        ),
        Step(
            id="unregister",
            name="instance",
            title="Removing Ghost instance from the registry",
            task=_unregister,
        ),
        Step(
            id="files",
            name="Ghost files",
            title="Removing Ghost installation",
            task=_remove_files,
        ),
    ]


async def run_uninstall(ctx: RunContext) -> RunReport:
    """Remove the instance completely."""
    return await TaskRunner(ctx.ui, prompt=False).run(build_uninstall_steps(), ctx)


__all__ = ["build_uninstall_steps", "run_uninstall"]
