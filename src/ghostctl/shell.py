"""Async subprocess primitive shared by steps, providers and process managers.

Elevation is confined to this module: callers ask for ``elevated=True`` on the
individual commands that need root instead of running ghostctl as root.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shlex
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

from .errors import ProcessError, SystemRequirementError

LOGGER = logging.getLogger(__name__)


def elevate(args: Sequence[str]) -> list[str]:
    """Return *args* prefixed with ``sudo`` unless already running as root."""
    if os.geteuid() == 0:
        return list(args)
    if shutil.which("sudo") is None:
        raise SystemRequirementError(
            f"`{args[0]}` needs root privileges but sudo is not available.",
            help="Install sudo or re-run the command as root.",
        )
    return ["sudo", *args]


async def run(
    args: Sequence[str],
    *,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
    elevated: bool = False,
    check: bool = True,
    input: str | None = None,  # noqa: A002 - mirrors subprocess.run
) -> subprocess.CompletedProcess[str]:
    """Run *args* and return the completed process.

    Raises :class:`ProcessError` when the binary is missing or, with *check*,
    when it exits nonzero.
    """
    command = elevate(args) if elevated else list(args)
    LOGGER.debug("Running %s", shlex.join(command))
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            stdin=subprocess.PIPE if input is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise ProcessError(f"{command[0]} not found: {exc}", cmd=command) from exc
    stdout_raw, stderr_raw = await process.communicate(
        input.encode("utf-8") if input is not None else None
    )
    returncode = process.returncode if process.returncode is not None else -1
    result = subprocess.CompletedProcess(
        command,
        returncode,
        stdout=stdout_raw.decode("utf-8", errors="replace"),
        stderr=stderr_raw.decode("utf-8", errors="replace"),
    )
    if check and result.returncode != 0:
        raise command_error(result)
    return result


def command_error(result: subprocess.CompletedProcess[str]) -> ProcessError:
    """Build the :class:`ProcessError` describing a failed *result*."""
    command = [str(part) for part in result.args]
    stdout = result.stdout or ""
    stderr = result.stderr or ""
    message = stderr.strip() or stdout.strip() or "no output"
    return ProcessError(
        f"{shlex.join(command)} failed (exit {result.returncode}): {message}",
        cmd=command,
        returncode=result.returncode,
        stdout=stdout,
        stderr=stderr,
        killed=result.returncode < 0,
    )


__all__ = ["command_error", "elevate", "run"]
