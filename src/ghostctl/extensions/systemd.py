"""Systemd extension: the ``systemd`` process manager and its setup step."""
from __future__ import annotations

import shlex
import shutil
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

from ..errors import SystemRequirementError
from ..extension import Extension
from ..instance import Instance
from ..process.base import ProcessManager
from ..providers.systemd import SystemdProvider
from ..service_accounts import user_exists
from ..tasks.models import RunContext, Step, TaskHandle

if TYPE_CHECKING:
    from ..system import System


def provider_for(system: System) -> SystemdProvider:
    """Build a provider from the ``systemd`` settings of *system*."""
    settings = system.settings.systemd
    return SystemdProvider(unit_dir=settings.unit_dir, systemctl_bin=settings.systemctl_bin)


def exec_start_command() -> str:
    """Return the command systemd runs to supervise Ghost."""
    binary = shutil.which("ghostctl")
    if binary:
        return f"{binary} run"
    return f"{shlex.quote(sys.executable)} -m ghostctl run"


class SystemdProcessManager(ProcessManager):
    """Run Ghost as the ``ghost_<name>`` systemd unit."""

    name: ClassVar[str] = "systemd"

    @property
    def provider(self) -> SystemdProvider:
        """Return the systemctl wrapper."""
        return provider_for(self.system)

    @property
    def unit(self) -> str:
        """Return this instance's unit name."""
        return self.provider.unit_name(self.instance.name)

    def _precheck(self) -> None:
        if not self.provider.unit_exists(self.instance.name):
            raise SystemRequirementError(
                f"Systemd unit file for {self.unit} not found.",
                help="Run `ghostctl setup systemd` to create it.",
            )

    def _port(self) -> tuple[int, str]:
        config = self.instance.config
        return int(config.get("server.port", 2368)), str(config.get("server.host", "127.0.0.1"))

    async def start(self, directory: Path, environment: str) -> None:
        """Start the unit and wait until Ghost listens on its port."""
        self._precheck()
        await self.provider.start(self.instance.name)
        port, host = self._port()
        await self.ensure_started(port, host=host)

    async def stop(self, directory: Path) -> None:
        """Stop the unit."""
        self._precheck()
        await self.provider.stop(self.instance.name)

    async def restart(self, directory: Path, environment: str) -> None:
        """Restart with a single ``systemctl restart``."""
        self._precheck()
        await self.provider.restart(self.instance.name)
        port, host = self._port()
        await self.ensure_started(port, host=host)

    async def is_running(self, directory: Path) -> bool:
        """Return whether the unit is active."""
        return await self.provider.is_active(self.instance.name)

    async def is_enabled(self) -> bool:
        """Return whether the unit starts on boot."""
        return await self.provider.is_enabled(self.instance.name)

    async def enable(self) -> None:
        """Start the unit on boot."""
        await self.provider.enable(self.instance.name)

    async def disable(self) -> None:
        """Stop starting the unit on boot."""
        await self.provider.disable(self.instance.name)

    @classmethod
    def will_run(cls) -> bool:
        """Systemd is only usable where ``systemctl`` is on ``PATH``.

        Selection happens on the class, before any settings are bound, so a
        custom ``systemd.systemctl_bin`` is not consulted here. The
        ``system-systemd`` doctor check verifies the configured binary.
        """
        return shutil.which("systemctl") is not None


class SystemdExtension(Extension):
    """Contributes the ``systemd`` step and process manager."""

    extension_id = "systemd"
    process_managers = {"systemd": SystemdProcessManager}

    @property
    def provider(self) -> SystemdProvider:
        """Return the systemctl wrapper."""
        return provider_for(self.system)

    def setup(self) -> Sequence[Step]:
        """Return the ``systemd`` step."""
        return [
            Step(
                id="systemd",
                name="Systemd",
                task=self._setup_systemd,
                enabled=self._enabled,
                skip=self._skip,
                optional=True,
                depends_on=("linux-user",),
                on_user_skip=self._use_local_process,
            )
        ]

    def _enabled(self, ctx: RunContext) -> bool:
        if "systemd" in ctx.argv.get("stages", ()):
            return True
        return not ctx.local and ctx.instance.config.get("process") == "systemd"

    async def _skip(self, ctx: RunContext) -> bool | str:
        if self.provider.unit_exists(ctx.instance.name):
            return "Systemd service has already been set up"
        return False

    async def _use_local_process(self, ctx: RunContext) -> None:
        ctx.instance.config.set("process", "local").save()

    async def _setup_systemd(self, ctx: RunContext, handle: TaskHandle) -> None:
        user = self.system.settings.system_user
        if not user_exists(user):
            handle.skip(
                f"The '{user}' user has not been created, "
                "try running `ghostctl setup linux-user` first"
            )
        instance = ctx.instance
        unit = self.provider.unit_name(instance.name)
        contents = self.system.templates.render_to_string(
            "systemd/ghost.service.j2",
            {
                "name": instance.name,
                "directory": str(instance.dir),
                "user": user,
                "environment": self.system.environment,
                "exec_start": exec_start_command(),
            },
        )
        await self.template(
            instance,
            contents,
            "systemd service",
            f"{unit}.service",
            self.system.settings.systemd.unit_dir,
        )
        await self.provider.daemon_reload()

    async def uninstall(self, instance: Instance) -> None:
        """Remove the unit file and its generated copy."""
        provider = self.provider
        unit = provider.unit_name(instance.name)
        if provider.unit_exists(instance.name):
            await provider.remove(instance.name)
        (instance.files_dir / f"{unit}.service").unlink(missing_ok=True)


__all__ = ["SystemdExtension", "SystemdProcessManager", "exec_start_command"]
