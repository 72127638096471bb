"""Scoped SIGINT/SIGTERM handling for CLI commands."""
from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from types import FrameType

LOGGER = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@contextmanager
def cleanup_on_exit(callback: Callable[[], None]) -> Iterator[None]:
    """Run *callback* exactly once when the block exits, however it exits.

    While the block runs, SIGINT and SIGTERM trigger the callback and then end
    the process with ``128 + signum``. Previous handlers are restored on exit.
    """
    done = False

    def _cleanup() -> None:
        nonlocal done
        if done:
            return
        done = True
        callback()

    def _handler(signum: int, _frame: FrameType | None) -> None:
        LOGGER.debug("Received signal %s, cleaning up.", signum)
        _cleanup()
        raise SystemExit(128 + signum)

    previous: dict[int, object] = {}
    # Handlers can only be installed from the main thread.
    if threading.current_thread() is threading.main_thread():
        for signum in HANDLED_SIGNALS:
            previous[signum] = signal.signal(signum, _handler)
    try:
        yield
    finally:
        try:
            _cleanup()
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)  # type: ignore[arg-type]


__all__ = ["cleanup_on_exit"]
