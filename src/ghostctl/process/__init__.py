"""Process manager abstraction and the built-in local variant."""
from __future__ import annotations

from .base import ProcessManager
from .local import PID_FILE, LocalProcessManager
from .startup import STARTUP_SOCKET_ENV, StartupListener, poll_port, send_startup_message

__all__ = [
    "PID_FILE",
    "STARTUP_SOCKET_ENV",
    "LocalProcessManager",
    "ProcessManager",
    "StartupListener",
    "poll_port",
    "send_startup_message",
]
