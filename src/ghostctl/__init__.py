"""ghostctl package bootstrap.

Exposes the package version that the CLI reports and that instances record as
their ``cli-version`` whenever ghostctl touches them.
"""
from __future__ import annotations

__all__ = ["__version__", "get_version"]

# NOTE: The version is duplicated in ``pyproject.toml`` and managed by Hatch.
__version__ = "1.0.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
