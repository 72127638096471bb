"""Provider interfaces for ghostctl."""
from __future__ import annotations

from .nginx import NginxError, NginxProvider
from .systemd import SystemdError, SystemdProvider
from .version_installer import (
    VersionInstaller,
    VersionInstallError,
    VersionInstallResult,
    read_package_version,
)

__all__ = [
    "NginxError",
    "NginxProvider",
    "SystemdError",
    "SystemdProvider",
    "VersionInstallError",
    "VersionInstallResult",
    "VersionInstaller",
    "read_package_version",
]
