"""Port allocation helpers for new instances."""
from __future__ import annotations

import socket
from collections.abc import Iterable

from .errors import SystemRequirementError

DEFAULT_BASE_PORT = 2368
MAX_PORT = 65535


def is_port_free(port: int, host: str = "127.0.0.1") -> bool:
    """Return True when nothing is bound to *host*:*port*."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def find_free_port(
    base_port: int = DEFAULT_BASE_PORT,
    *,
    host: str = "127.0.0.1",
    reserved: Iterable[int] = (),
) -> int:
    """Return the first port from *base_port* that is free and not *reserved*.

    *reserved* holds ports already configured for other instances, which may
    be stopped and therefore not bound right now.
    """
    if base_port < 1:
        raise ValueError("Base port must be a positive integer.")
    taken = set(reserved)
    candidate = base_port
    while candidate <= MAX_PORT:
        if candidate not in taken and is_port_free(candidate, host):
            return candidate
        candidate += 1
    raise SystemRequirementError(f"No free port found at or above {base_port}.")


__all__ = ["DEFAULT_BASE_PORT", "find_free_port", "is_port_free"]
