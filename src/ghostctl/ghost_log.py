"""Reading and pretty-printing Ghost's JSON file logs."""
from __future__ import annotations

import asyncio
import json
import re
from collections import deque
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from rich.markup import escape

from .errors import ConfigError

if TYPE_CHECKING:
    from .instance import Instance

# Bunyan level numbers used by Ghost's logger.
LEVELS = {10: "TRACE", 20: "DEBUG", 30: "INFO", 40: "WARN", 50: "ERROR", 60: "FATAL"}
LEVEL_STYLES = {"WARN": "yellow", "ERROR": "red", "FATAL": "bold red"}
FOLLOW_INTERVAL = 0.5


def log_file_path(instance: Instance, *, error: bool = False) -> Path:
    """Return the log file Ghost writes for the active environment.

    Raises :class:`ConfigError` when file logging is not enabled.
    """
    config = instance.config
    transports = config.get("logging.transports", []) or []
    if "file" not in transports:
        raise ConfigError(
            "You have excluded file logging in your Ghost config. "
            "Add it to the transports to use this command.",
            config_key="logging.transports",
            config_value=", ".join(str(item) for item in transports),
            environment=instance.system.environment,
        )
    url = str(config.get("url", ""))
    stem = re.sub(r"\W", "_", url, flags=re.ASCII)
    suffix = ".error" if error else ""
    return instance.dir / "content" / "logs" / f"{stem}_{instance.system.environment}{suffix}.log"


def read_last_lines(path: Path, count: int) -> list[str]:
    """Return the last *count* non-empty lines of *path*."""
    lines: deque[str] = deque(maxlen=max(count, 0))
    with path.open(encoding="utf-8", errors="replace") as handle:
        for line in handle:
            line = line.rstrip("\n")
            if line.strip():
                lines.append(line)
    return list(lines)


def format_line(line: str) -> str:
    """Render one JSON log record as ``[time] LEVEL message``; other text is escaped."""
    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        return escape(line)
    if not isinstance(record, dict):
        return escape(line)
    level = LEVELS.get(record.get("level", 30), "INFO")
    stamp = record.get("time", "")
    try:
        parsed = datetime.fromisoformat(str(stamp).replace("Z", "+00:00"))
        stamp = parsed.strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        pass
    message = record.get("msg", "")
    request = record.get("req")
    if isinstance(request, dict):
        message = f"{request.get('method', '')} {request.get('url', '')} {message}".strip()
    style = LEVEL_STYLES.get(level)
    label = f"[{style}]{level}[/{style}]" if style else level
    error = record.get("err")
    if isinstance(error, dict) and error.get("message"):
        message = f"{message} {error['message']}".strip()
    return f"\\[{stamp}] {label} {escape(str(message))}"


async def follow(
    path: Path,
    emit: Callable[[str], None],
    *,
    interval: float = FOLLOW_INTERVAL,
) -> None:
    """Emit lines appended to *path* until cancelled."""
    with path.open(encoding="utf-8", errors="replace") as handle:
        handle.seek(0, 2)
        while True:
            line = handle.readline()
            if not line:
                await asyncio.sleep(interval)
                continue
            if line.strip():
                emit(line.rstrip("\n"))


__all__ = ["follow", "format_line", "log_file_path", "read_last_lines"]
