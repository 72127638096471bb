"""Systemd provider for managing instance service units."""
from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .. import shell
from ..errors import ProcessError


class SystemdError(ProcessError):
    """Raised when systemctl operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Drive ``systemctl`` for the unit backing one Ghost instance."""

    unit_dir: Path = Path("/lib/systemd/system")
    systemctl_bin: str = "systemctl"

    def unit_name(self, instance: str) -> str:
        """Return the systemd unit name for *instance*."""
        safe = instance.replace("/", "-")
        return f"ghost_{safe}"

    def unit_path(self, instance: str) -> Path:
        """Return the full path for the instance unit file."""
        return self.unit_dir / f"{self.unit_name(instance)}.service"

    def unit_exists(self, instance: str) -> bool:
        """Return True when the unit file is installed."""
        return self.unit_path(instance).exists()

    def is_installed(self) -> bool:
        """Return True when ``systemctl`` can be resolved on PATH."""
        return shutil.which(self.systemctl_bin) is not None

    async def start(self, instance: str) -> subprocess.CompletedProcess[str]:
        """Start the instance unit."""
        return await self._systemctl("start", self.unit_name(instance))

    async def stop(self, instance: str) -> subprocess.CompletedProcess[str]:
        """Stop the instance unit."""
        return await self._systemctl("stop", self.unit_name(instance))

    async def restart(self, instance: str) -> subprocess.CompletedProcess[str]:
        """Restart the instance unit."""
        return await self._systemctl("restart", self.unit_name(instance))

    async def enable(self, instance: str) -> subprocess.CompletedProcess[str]:
        """Enable the instance unit."""
        return await self._systemctl("enable", self.unit_name(instance), "--quiet")

    async def disable(self, instance: str) -> subprocess.CompletedProcess[str]:
        """Disable the instance unit."""
        return await self._systemctl("disable", self.unit_name(instance), "--quiet")

    async def is_active(self, instance: str) -> bool:
        """Return whether the unit is active; any nonzero exit means it is not."""
        result = await self._query("is-active", self.unit_name(instance))
        return result is not None and result.returncode == 0

    async def is_enabled(self, instance: str) -> bool:
        """Return whether the unit starts on boot."""
        result = await self._query("is-enabled", self.unit_name(instance))
        return result is not None and result.returncode == 0

    async def daemon_reload(self) -> subprocess.CompletedProcess[str]:
        """Ask systemd to re-read unit files."""
        return await self._systemctl("daemon-reload")

    async def remove(self, instance: str) -> None:
        """Remove the unit file for *instance* and reload the daemon."""
        path = self.unit_path(instance)
        if not path.exists() and not path.is_symlink():
            return
        await shell.run(["rm", "-f", str(path)], elevated=True)
        await self.daemon_reload()

    # ------------------------------------------------------------------
    async def _systemctl(self, command: str, *args: str) -> subprocess.CompletedProcess[str]:
        result = await shell.run([self.systemctl_bin, command, *args], elevated=True, check=False)
        if result.returncode != 0:
            raise _systemd_error(result)
        return result

    async def _query(self, command: str, unit: str) -> subprocess.CompletedProcess[str] | None:
        try:
            return await shell.run([self.systemctl_bin, command, unit], check=False)
        except ProcessError:
            return None


def _systemd_error(result: subprocess.CompletedProcess[str]) -> SystemdError:
    base = shell.command_error(result)
    return SystemdError(
        base.message,
        cmd=base.cmd,
        returncode=base.returncode,
        stdout=base.stdout,
        stderr=base.stderr,
        killed=base.killed,
    )


__all__ = ["SystemdError", "SystemdProvider"]
