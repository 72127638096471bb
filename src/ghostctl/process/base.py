"""Base contract for process managers.

A process manager decides how the Ghost process is supervised. Every variant
must implement :meth:`ProcessManager.start`, :meth:`ProcessManager.stop` and
:meth:`ProcessManager.is_running`; supervisor-backed variants also implement
the enable trio so the service survives reboots.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

from ..errors import ApplicationError
from .startup import poll_port

if TYPE_CHECKING:
    from ..instance import Instance
    from ..system import System
    from ..ui import UI

LOGGER = logging.getLogger(__name__)


class ProcessManager:
    """Lifecycle operations over one instance's application process."""

    name: ClassVar[str] = "base"
    REQUIRED_METHODS: ClassVar[tuple[str, ...]] = ("start", "stop", "is_running")
    ENABLE_METHODS: ClassVar[tuple[str, ...]] = ("is_enabled", "enable", "disable")

    def __init__(self, ui: UI, system: System, instance: Instance) -> None:
        """Bind the manager to *instance*."""
        self.ui = ui
        self.system = system
        self.instance = instance

    # Required ----------------------------------------------------------
    async def start(self, directory: Path, environment: str) -> None:
        """Start the application in *directory* for *environment*."""
        raise NotImplementedError

    async def stop(self, directory: Path) -> None:
        """Stop the application; an already stopped process is not an error."""
        raise NotImplementedError

    async def is_running(self, directory: Path) -> bool:
        """Return whether the application is running; never raises."""
        raise NotImplementedError

    # Optional ----------------------------------------------------------
    async def restart(self, directory: Path, environment: str) -> None:
        """Restart the application; defaults to stop followed by start."""
        await self.stop(directory)
        await self.start(directory, environment)

    async def is_enabled(self) -> bool:
        """Return whether the supervisor starts the application on boot."""
        raise NotImplementedError

    async def enable(self) -> None:
        """Start the application on boot."""
        raise NotImplementedError

    async def disable(self) -> None:
        """Stop starting the application on boot."""
        raise NotImplementedError

    # Startup reporting -------------------------------------------------
    def success(self) -> None:
        """Called by the supervised process once the application has booted."""

    def error(self, message: str) -> None:
        """Called by the supervised process when the application failed to boot."""
        raise ApplicationError(message)

    async def ensure_started(self, port: int, *, host: str = "127.0.0.1") -> None:
        """Wait for the application port to accept connections.

        On timeout the process is stopped and :class:`ApplicationError` raised.
        """
        timeout = self.system.settings.start_timeout
        if await poll_port(port, host=host, timeout=timeout):
            return
        LOGGER.debug("Port %s:%s did not open within %ss", host, port, timeout)
        await self.stop(self.instance.dir)
        raise ApplicationError(
            "Could not communicate with Ghost",
            help="Check the Ghost logs with `ghostctl log` for more information.",
        )

    # Class-level checks ------------------------------------------------
    @classmethod
    def will_run(cls) -> bool:
        """Return whether this manager can run on the current system."""
        return True

    @classmethod
    def supports_enable_behavior(cls) -> bool:
        """Return whether the class implements the enable trio."""
        return all(_overrides(cls, method) for method in cls.ENABLE_METHODS)

    @staticmethod
    def is_valid(candidate: object) -> bool | list[str]:
        """Check that *candidate* is a usable process manager class.

        Returns ``True`` when valid, ``False`` when it is not a subclass of
        :class:`ProcessManager`, or the list of required methods it is missing.
        """
        if not isinstance(candidate, type) or not issubclass(candidate, ProcessManager):
            return False
        if candidate is ProcessManager:
            return list(ProcessManager.REQUIRED_METHODS)
        missing = [
            method
            for method in ProcessManager.REQUIRED_METHODS
            if not _overrides(candidate, method)
        ]
        return missing or True


def _overrides(cls: type, method: str) -> bool:
    return getattr(cls, method, None) is not getattr(ProcessManager, method)


__all__ = ["ProcessManager"]
