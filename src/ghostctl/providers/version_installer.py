"""Install Ghost releases from npm into ``versions/<version>``."""
from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from packaging.version import InvalidVersion, Version

from .. import shell
from ..errors import CliError

LOGGER = logging.getLogger(__name__)


class VersionInstallError(CliError):
    """Raised when resolving or installing a Ghost version fails."""


@dataclass(frozen=True, slots=True)
class VersionInstallResult:
    """Where a version landed."""

    version: str
    path: Path


class VersionInstaller:
    """Resolve and install releases of the configured npm package."""

    def __init__(
        self,
        *,
        versions_dir: Path,
        package_name: str = "ghost",
        npm_bin: str = "npm",
        npm_args: Sequence[str] | None = None,
    ) -> None:
        """Initialise the installer with the target directory and npm configuration."""
        self.versions_dir = Path(versions_dir)
        self.package_name = package_name
        self.npm_bin = npm_bin
        self.npm_args = list(npm_args or [])

    def version_path(self, version: str) -> Path:
        """Return the directory a given version is installed into."""
        return self.versions_dir / version

    def is_installed(self, version: str) -> bool:
        """Return True when *version* already has a directory."""
        return self.version_path(version).is_dir()

    def installed_versions(self) -> list[str]:
        """Return installed versions, oldest first."""
        if not self.versions_dir.is_dir():
            return []
        names = [entry.name for entry in self.versions_dir.iterdir() if entry.is_dir()]
        return sorted((name for name in names if _parse(name) is not None), key=_sort_key)

    async def available_versions(self) -> list[str]:
        """Return the published versions from the npm registry, oldest first."""
        result = await shell.run(
            [self.npm_bin, "view", self.package_name, "versions", "--json"],
            check=False,
        )
        if result.returncode != 0:
            raise VersionInstallError(
                f"Unable to fetch versions of {self.package_name} from npm.",
                context={"stderr": (result.stderr or "").strip()},
                help="Check your network connection and npm registry settings.",
            )
        try:
            payload = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as exc:
            raise VersionInstallError(f"npm returned invalid JSON: {exc}") from exc
        if isinstance(payload, str):
            payload = [payload]
        return sorted((str(item) for item in payload if _parse(str(item))), key=_sort_key)

    async def resolve_version(
        self,
        requested: str | None = None,
        *,
        active: str | None = None,
        force: bool = False,
    ) -> str | None:
        """Return the version to install.

        Without *requested* the newest stable release wins. ``None`` means the
        *active* version is already the newest and there is nothing to do.
        Requesting an older version than *active* needs *force*.
        """
        available = await self.available_versions()
        if not available:
            raise VersionInstallError(f"No published versions of {self.package_name} found.")

        if requested:
            version = requested.strip().lstrip("v")
            if version not in available:
                raise VersionInstallError(
                    f"Invalid version specified: {requested}",
                    help=f"Run `npm view {self.package_name} versions` to list releases.",
                )
        else:
            stable = [item for item in available if not _sort_key(item).is_prerelease]
            version = (stable or available)[-1]

        if active and _parse(active) is not None:
            if _sort_key(version) == _sort_key(active) and not force and not requested:
                return None
            if _sort_key(version) < _sort_key(active) and not force:
                raise VersionInstallError(
                    f"Version {version} is older than the installed version {active}.",
                    help="Pass --force to install it anyway.",
                )
        return version

    async def install(self, version: str) -> VersionInstallResult:
        """Install *version* into ``versions/<version>`` with production dependencies."""
        normalized = version.strip().lstrip("v")
        if not normalized:
            raise VersionInstallError("Version identifier must be a non-empty string.")

        target_dir = self.version_path(normalized)
        if target_dir.exists():
            shutil.rmtree(target_dir)
        self.versions_dir.mkdir(parents=True, exist_ok=True)

        staging_dir = Path(
            tempfile.mkdtemp(prefix=f".ghostctl-install-{normalized}-", dir=str(self.versions_dir))
        )
        try:
            await shell.run(
                [
                    self.npm_bin,
                    "install",
                    f"{self.package_name}@{normalized}",
                    "--prefix",
                    str(staging_dir),
                    "--no-save",
                    "--omit=dev",
                    "--ignore-scripts",
                    *self.npm_args,
                ],
                env=_npm_env(),
            )
            package_dir = _package_directory(staging_dir, self.package_name)
            if not (package_dir / "package.json").exists():
                raise VersionInstallError(
                    f"npm install completed but the package is missing: {package_dir}"
                )
            shutil.move(str(package_dir), str(target_dir))
        finally:
            shutil.rmtree(staging_dir, ignore_errors=True)

        try:
            await shell.run(
                [self.npm_bin, "install", "--omit=dev", "--no-audit", "--no-fund", *self.npm_args],
                cwd=target_dir,
                env=_npm_env(),
            )
        except CliError:
            shutil.rmtree(target_dir, ignore_errors=True)
            raise
        LOGGER.debug("Installed %s@%s into %s", self.package_name, normalized, target_dir)
        return VersionInstallResult(version=normalized, path=target_dir)

    def remove_old_versions(self, keep: int, protect: Iterable[str | None] = ()) -> list[str]:
        """Delete all but the newest *keep* versions, never touching *protect*."""
        protected = {item for item in protect if item}
        installed = self.installed_versions()
        newest = set(installed[-keep:]) if keep > 0 else set()
        removed: list[str] = []
        for version in installed:
            if version in newest or version in protected:
                continue
            shutil.rmtree(self.version_path(version), ignore_errors=True)
            removed.append(version)
        return removed


def read_package_version(directory: Path) -> str | None:
    """Return the ``version`` field of ``package.json`` in *directory*."""
    try:
        payload = json.loads((Path(directory) / "package.json").read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    version = payload.get("version") if isinstance(payload, dict) else None
    return str(version) if version else None


def _package_directory(prefix: Path, package_name: str) -> Path:
    path = prefix / "node_modules"
    for part in package_name.split("/"):
        path /= part
    return path


def _npm_env() -> dict[str, str]:
    env = dict(os.environ)
    env.setdefault("NODE_ENV", "production")
    return env


def _parse(value: str) -> Version | None:
    try:
        return Version(value)
    except InvalidVersion:
        return None


def _sort_key(value: str) -> Version:
    return Version(value)


__all__ = [
    "VersionInstallError",
    "VersionInstallResult",
    "VersionInstaller",
    "read_package_version",
]
