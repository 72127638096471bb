"""Startup signalling between a supervisor and the process it launched.

The launching side opens a :class:`StartupListener` on the loopback interface
and passes its address to the child. The child reports exactly one JSON line,
either ``{"started": true}`` or ``{"error": true, "message": "..."}``, using
:func:`send_startup_message`. When no channel is available the fallback is
:func:`poll_port`, which waits for the application's HTTP port to open.
"""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import socket
import time
from collections.abc import Callable

from ..errors import ApplicationError

LOGGER = logging.getLogger(__name__)

STARTUP_SOCKET_ENV = "GHOSTCTL_STARTUP_SOCKET"
POLL_INTERVAL = 0.25


class StartupListener:
    """Loopback TCP server receiving one startup report."""

    def __init__(self, host: str = "127.0.0.1") -> None:
        """Prepare a listener on *host*; call :meth:`open` before use."""
        self.host = host
        self.port: int | None = None
        self._server: asyncio.AbstractServer | None = None
        self._message: asyncio.Future[dict[str, object]] | None = None

    @property
    def address(self) -> str:
        """Return ``host:port`` for handing to the child process."""
        if self.port is None:
            raise RuntimeError("StartupListener.open() has not been awaited.")
        return f"{self.host}:{self.port}"

    async def open(self) -> StartupListener:
        """Bind an ephemeral port and start accepting reports."""
        self._message = asyncio.get_running_loop().create_future()
        self._server = await asyncio.start_server(self._handle, self.host, 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def close(self) -> None:
        """Stop accepting connections."""
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def __aenter__(self) -> StartupListener:
        return await self.open()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            line = await reader.readline()
        finally:
            writer.close()
        try:
            payload = json.loads(line.decode("utf-8") or "{}")
        except json.JSONDecodeError:
            LOGGER.debug("Ignoring malformed startup message: %r", line)
            return
        if isinstance(payload, dict) and self._message is not None and not self._message.done():
            self._message.set_result(payload)

    async def wait(
        self,
        timeout: float,
        *,
        alive: Callable[[], int | None] | None = None,
    ) -> None:
        """Wait for the startup report.

        *alive* returns ``None`` while the child runs and its exit code once it
        has exited. Raises :class:`ApplicationError` if the child reports an
        error, exits first, or stays silent for *timeout* seconds.
        """
        if self._message is None:
            raise RuntimeError("StartupListener.open() has not been awaited.")
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ApplicationError(
                    "Could not communicate with Ghost",
                    help="Check the Ghost logs with `ghostctl log` for more information.",
                )
            try:
                payload = await asyncio.wait_for(
                    asyncio.shield(self._message), min(POLL_INTERVAL, remaining)
                )
            except TimeoutError:
                exit_code = alive() if alive is not None else None
                if exit_code is not None:
                    raise ApplicationError(
                        f"Ghost process exited with code {exit_code}",
                        help="Check the Ghost logs with `ghostctl log` for more information.",
                    ) from None
                continue
            if payload.get("started"):
                return
            raise ApplicationError(str(payload.get("message") or "Ghost failed to start"))


def send_startup_message(address: str, payload: dict[str, object]) -> None:
    """Send *payload* to the listener at *address* (``host:port``)."""
    host, _, port = address.rpartition(":")
    with socket.create_connection((host, int(port)), timeout=5) as conn:
        conn.sendall(json.dumps(payload).encode("utf-8") + b"\n")


async def poll_port(
    port: int,
    *,
    host: str = "127.0.0.1",
    timeout: float = 60.0,
    interval: float = POLL_INTERVAL,
) -> bool:
    """Return ``True`` once *host*:*port* accepts a connection within *timeout*."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            _reader, writer = await asyncio.open_connection(host, port)
        except OSError:
            await asyncio.sleep(interval)
            continue
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        return True
    return False


__all__ = [
    "STARTUP_SOCKET_ENV",
    "StartupListener",
    "poll_port",
    "send_startup_message",
]
