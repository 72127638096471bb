"""Nginx provider for managing per-instance site configurations."""
from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .. import shell
from ..errors import ProcessError

LOGGER = logging.getLogger(__name__)


class NginxError(ProcessError):
    """Raised when nginx rejects or fails to reload a configuration."""


@dataclass(slots=True)
class NginxProvider:
    """Link, validate and reload nginx sites for Ghost instances.

    Site files are rendered into the instance's ``system/files`` directory and
    symlinked into ``sites-available``; this provider owns the
    ``sites-enabled`` side plus validation and reloads.
    """

    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    snippets_dir: Path = Path("/etc/nginx/snippets")
    nginx_bin: str = "nginx"

    def site_name(self, host: str, *, ssl: bool = False) -> str:
        """Return the canonical site file name for *host*."""
        return f"{host}-ssl.conf" if ssl else f"{host}.conf"

    def site_path(self, host: str, *, ssl: bool = False) -> Path:
        """Return the path in sites-available for *host*."""
        return self.sites_available / self.site_name(host, ssl=ssl)

    def enabled_path(self, host: str, *, ssl: bool = False) -> Path:
        """Return the path of the symlink in sites-enabled for *host*."""
        return self.sites_enabled / self.site_name(host, ssl=ssl)

    def site_exists(self, host: str, *, ssl: bool = False) -> bool:
        """Return True when the site configuration is present in sites-available."""
        path = self.site_path(host, ssl=ssl)
        return path.exists() or path.is_symlink()

    def is_enabled(self, host: str, *, ssl: bool = False) -> bool:
        """Return True when the site is linked into sites-enabled."""
        target = self.enabled_path(host, ssl=ssl)
        if not target.is_symlink():
            return False
        try:
            return target.resolve() == self.site_path(host, ssl=ssl).resolve()
        except OSError:
            return False

    def is_installed(self) -> bool:
        """Return True when the nginx binary can be resolved on PATH."""
        return shutil.which(self.nginx_bin) is not None

    async def enable(self, host: str, *, ssl: bool = False) -> None:
        """Link the site into sites-enabled."""
        await shell.run(
            [
                "ln",
                "-sf",
                str(self.site_path(host, ssl=ssl)),
                str(self.enabled_path(host, ssl=ssl)),
            ],
            elevated=True,
        )

    async def disable(self, host: str, *, ssl: bool = False) -> None:
        """Remove the sites-enabled link."""
        await shell.run(["rm", "-f", str(self.enabled_path(host, ssl=ssl))], elevated=True)

    async def remove(self, host: str, *, ssl: bool = False) -> None:
        """Remove both the sites-available entry and its enabled link."""
        await shell.run(
            [
                "rm",
                "-f",
                str(self.enabled_path(host, ssl=ssl)),
                str(self.site_path(host, ssl=ssl)),
            ],
            elevated=True,
        )

    async def activate(self, host: str, *, ssl: bool = False) -> None:
        """Enable the site, validate the whole configuration and reload.

        Validation failures roll the new site back out so nginx keeps serving
        its previous configuration.
        """
        await self.enable(host, ssl=ssl)
        try:
            await self.test_config()
        except NginxError:
            LOGGER.debug("nginx rejected %s; removing it.", self.site_name(host, ssl=ssl))
            await self.remove(host, ssl=ssl)
            raise
        await self.reload()

    async def test_config(self) -> subprocess.CompletedProcess[str]:
        """Run ``nginx -t`` to validate the configuration."""
        return await self._run_nginx(["-t"])

    async def reload(self) -> subprocess.CompletedProcess[str]:
        """Reload nginx to apply configuration changes."""
        return await self._run_nginx(["-s", "reload"])

    # ------------------------------------------------------------------
    async def _run_nginx(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        result = await shell.run([self.nginx_bin, *args], elevated=True, check=False)
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise NginxError(
                f"{self.nginx_bin} {' '.join(args)} failed (exit {result.returncode}): {message}",
                cmd=[str(part) for part in result.args],
                returncode=result.returncode,
                stdout=result.stdout or "",
                stderr=result.stderr or "",
            )
        return result


__all__ = ["NginxError", "NginxProvider"]
