"""Process manager that runs Ghost as a detached child with a PID file."""
from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
from pathlib import Path
from typing import ClassVar

from ..errors import ApplicationError, ProcessError, SystemRequirementError
from .base import ProcessManager
from .startup import STARTUP_SOCKET_ENV, StartupListener, send_startup_message

LOGGER = logging.getLogger(__name__)

PID_FILE = ".ghostpid"


class LocalProcessManager(ProcessManager):
    """Supervise Ghost without an init system.

    ``start`` launches ``python -m ghostctl run`` in a new session and records
    its PID in ``.ghostpid``; the ``run`` process reports back over a loopback
    socket once Ghost has booted.
    """

    name: ClassVar[str] = "local"

    def pid_file(self, directory: Path) -> Path:
        """Return the PID file path for *directory*."""
        return Path(directory) / PID_FILE

    async def start(self, directory: Path, environment: str) -> None:
        """Spawn the detached runner and wait for Ghost to report in."""
        self._check_content_ownership(Path(directory))
        env = dict(os.environ)
        env["NODE_ENV"] = environment
        command = [sys.executable, "-m", "ghostctl", "run"]
        async with StartupListener() as listener:
            env[STARTUP_SOCKET_ENV] = listener.address
            try:
                child = subprocess.Popen(  # noqa: S603
                    command,
                    cwd=str(directory),
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    start_new_session=True,
                )
            except OSError as exc:
                raise ProcessError(f"Could not launch Ghost: {exc}", cmd=command) from exc
            self.pid_file(directory).write_text(f"{child.pid}\n", encoding="utf-8")
            try:
                await listener.wait(self.system.settings.start_timeout, alive=child.poll)
            except ApplicationError:
                await self.stop(directory)
                raise

    async def stop(self, directory: Path) -> None:
        """Terminate the PID recorded in ``.ghostpid``; tolerate a missing process."""
        pid_file = self.pid_file(directory)
        pid = _read_pid(pid_file)
        if pid is None:
            pid_file.unlink(missing_ok=True)
            return
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            LOGGER.debug("Process %s already gone.", pid)
        except OSError as exc:
            raise ProcessError(
                f"Could not stop Ghost (pid {pid}): {exc}",
                cmd=["kill", "-TERM", str(pid)],
                help="The process may belong to another user; stop it with sudo.",
            ) from exc
        pid_file.unlink(missing_ok=True)

    async def is_running(self, directory: Path) -> bool:
        """Return whether the recorded PID is alive, removing a stale PID file."""
        pid_file = self.pid_file(directory)
        pid = _read_pid(pid_file)
        if pid is None:
            if pid_file.exists():
                pid_file.unlink(missing_ok=True)
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            LOGGER.debug("Removing stale PID file %s (pid %s).", pid_file, pid)
            pid_file.unlink(missing_ok=True)
            return False
        except PermissionError:
            # Signal 0 to another user's live process.
            return True
        return True

    async def is_enabled(self) -> bool:
        """The local manager has no boot-time behaviour."""
        return False

    async def enable(self) -> None:
        """No-op for the local manager."""

    async def disable(self) -> None:
        """No-op for the local manager."""

    def success(self) -> None:
        """Tell the launching ``start`` that Ghost booted."""
        address = os.environ.get(STARTUP_SOCKET_ENV)
        if address:
            send_startup_message(address, {"started": True})

    def error(self, message: str) -> None:
        """Tell the launching ``start`` that Ghost failed, or raise when detached."""
        address = os.environ.get(STARTUP_SOCKET_ENV)
        if not address:
            super().error(message)
            return
        send_startup_message(address, {"error": True, "message": message})

    def _check_content_ownership(self, directory: Path) -> None:
        content = directory / "content"
        if not content.exists():
            return
        if content.stat().st_uid != os.getuid():
            raise SystemRequirementError(
                "Your content folder is not owned by the current user.",
                help=(
                    "Ghost started with the local process manager runs as you. "
                    f"Fix ownership with `sudo chown -R $USER {content}`."
                ),
            )


def _read_pid(pid_file: Path) -> int | None:
    try:
        raw = pid_file.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


__all__ = ["PID_FILE", "LocalProcessManager"]
