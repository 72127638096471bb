"""Foreground supervisor behind the hidden ``ghostctl run`` command.

``run`` launches Ghost with its bootstrap socket pointed at a local
:class:`StartupListener`, relays the single startup report to the process
manager (which forwards it to whoever started us) and then mirrors Ghost's
exit code.
"""
from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from typing import TYPE_CHECKING

from ..errors import ApplicationError, SystemRequirementError
from ..service_accounts import should_use_ghost_user
from .startup import StartupListener

if TYPE_CHECKING:
    from ..instance import Instance

LOGGER = logging.getLogger(__name__)

ENTRY_POINT = "current/index.js"


def ghost_command(instance: Instance) -> list[str]:
    """Return the argv launching Ghost, via ``sudo -E -u <user>`` when that user owns content."""
    settings = instance.system.settings
    command = [settings.node_bin, str(instance.dir / ENTRY_POINT)]
    if should_use_ghost_user(instance.dir / "content", settings.system_user):
        instance.ui.log(f"Running sudo command: {' '.join(command)}", "gray")
        return ["sudo", "-E", "-u", settings.system_user, *command]
    return command


def bootstrap_environment(listener: StartupListener, environment: str) -> dict[str, str]:
    """Return the child environment pointing Ghost's bootstrap socket at *listener*."""
    env = dict(os.environ)
    env["NODE_ENV"] = environment
    env["bootstrap-socket__host"] = listener.host
    env["bootstrap-socket__port"] = str(listener.port)
    return env


async def run_ghost(
    instance: Instance,
    *,
    on_spawn: Callable[[asyncio.subprocess.Process], None] | None = None,
) -> int:
    """Run Ghost in the foreground and return its exit code.

    *on_spawn* receives the child process so the caller can terminate it on
    signals.
    """
    entry = instance.dir / ENTRY_POINT
    if not entry.exists():
        raise SystemRequirementError(
            f"{entry} was not found.",
            help="Run `ghostctl install` or `ghostctl update` to install Ghost.",
        )
    system = instance.system
    system.set_environment(os.environ.get("NODE_ENV") == "development", set_node_env=True)
    process = instance.process

    async with StartupListener() as listener:
        child = await asyncio.create_subprocess_exec(
            *ghost_command(instance),
            cwd=str(instance.dir),
            env=bootstrap_environment(listener, system.environment),
        )
        if on_spawn is not None:
            on_spawn(child)
        try:
            await listener.wait(system.settings.start_timeout, alive=lambda: child.returncode)
        except ApplicationError as exc:
            LOGGER.debug("Ghost failed to start: %s", exc.message)
            if child.returncode is None:
                child.terminate()
                await child.wait()
            process.error(exc.message)
            return 1
    process.success()
    return await child.wait()


__all__ = ["ENTRY_POINT", "bootstrap_environment", "ghost_command", "run_ghost"]
