"""Find out which Node.js Ghost would be started with."""
from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass

from packaging.version import InvalidVersion, Version

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class NodeVersionInfo:
    """``node --version`` output and its numeric parts."""

    raw: str
    version: str
    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, raw: str) -> NodeVersionInfo | None:
        """Parse output such as ``v18.19.1``; None when it is not a version."""
        text = raw.strip().removeprefix("v")
        try:
            parsed = Version(text)
        except InvalidVersion:
            LOGGER.debug("Unrecognised Node.js version output %r.", raw)
            return None
        return cls(raw.strip(), text, parsed.major, parsed.minor, parsed.micro)


def detect_node_version(node_bin: str = "node") -> NodeVersionInfo | None:
    """Run ``<node_bin> --version``; None when Node is missing or broken."""
    try:
        completed = subprocess.run(  # noqa: S603
            [node_bin, "--version"],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as exc:
        LOGGER.debug("Could not run %s: %s", node_bin, exc)
        return None
    if completed.returncode != 0 or not completed.stdout.strip():
        return None
    return NodeVersionInfo.parse(completed.stdout)


__all__ = ["NodeVersionInfo", "detect_node_version"]
