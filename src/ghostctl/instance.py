"""One installed Ghost deployment and its persisted state.

An instance owns three kinds of files in its directory: the tool-internal
``.ghost-cli`` store (name, version pins, running flag), one application
config per environment (``config.production.json`` / ``config.development.json``)
and whatever its process manager keeps (e.g. ``.ghostpid``).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from .errors import CliError
from .store import ConfigStore

if TYPE_CHECKING:
    from .process.base import ProcessManager
    from .system import System
    from .ui import UI

LOGGER = logging.getLogger(__name__)

CLI_CONFIG_FILE = ".ghost-cli"
ENVIRONMENTS = ("production", "development")
DEFAULT_PROCESS = "local"


@dataclass(frozen=True, slots=True)
class InstanceSummary:
    """What ``ghostctl ls`` shows for one instance."""

    name: str
    dir: Path
    version: str | None
    running: bool
    environment: str | None = None
    url: str | None = None
    port: int | None = None
    process: str | None = None


def default_name(url: str | None, directory: Path) -> str:
    """Derive an instance name from *url*, else from *directory*."""
    hostname = urlparse(url).hostname if url else None
    if hostname:
        return hostname.replace(".", "-")
    return Path(directory).name or "ghost"


def config_file_name(environment: str) -> str:
    """Return the application config file name for *environment*."""
    return f"config.{environment}.json"


class Instance:
    """Aggregate root over an instance directory."""

    def __init__(self, ui: UI, system: System, directory: Path) -> None:
        """Bind the instance to *directory*; nothing is read until needed."""
        self.ui = ui
        self.system = system
        self.dir = Path(directory)
        self.cli_config = ConfigStore(self.dir / CLI_CONFIG_FILE)
        self._config: ConfigStore | None = None
        self._config_environment: str | None = None
        self._process: ProcessManager | None = None
        self._process_name: str | None = None

    def __repr__(self) -> str:
        return f"Instance(dir={str(self.dir)!r})"

    # Persisted attributes ---------------------------------------------
    def _cli_value(self, key: str) -> Any:
        return self.cli_config.get(key)

    def _set_cli_value(self, key: str, value: Any) -> None:
        self.cli_config.set(key, value).save()

    @property
    def name(self) -> str:
        """Return the recorded name, or one derived from the configured URL."""
        recorded = self._cli_value("name")
        if recorded:
            return str(recorded)
        url = self.config.get("url") if self.has_config() else None
        return default_name(url, self.dir)

    @name.setter
    def name(self, value: str) -> None:
        self._set_cli_value("name", value)

    @property
    def version(self) -> str | None:
        """Return the active Ghost version."""
        return self._cli_value("active-version")

    @version.setter
    def version(self, value: str | None) -> None:
        self._set_cli_value("active-version", value)

    @property
    def previous_version(self) -> str | None:
        """Return the version active before the last update, used for rollback."""
        return self._cli_value("previous-version")

    @previous_version.setter
    def previous_version(self, value: str | None) -> None:
        self._set_cli_value("previous-version", value)

    @property
    def cli_version(self) -> str | None:
        """Return the ghostctl version that last touched this instance."""
        return self._cli_value("cli-version")

    @cli_version.setter
    def cli_version(self, value: str | None) -> None:
        self._set_cli_value("cli-version", value)

    @property
    def node_version(self) -> str | None:
        """Return the Node.js version recorded at install time."""
        return self._cli_value("node-version")

    @node_version.setter
    def node_version(self, value: str | None) -> None:
        self._set_cli_value("node-version", value)

    @property
    def running(self) -> str | None:
        """Return the environment the instance was last started in, if any."""
        return self._cli_value("running")

    @running.setter
    def running(self, value: str | None) -> None:
        self._set_cli_value("running", value)

    # Config and process ------------------------------------------------
    def config_path(self, environment: str | None = None) -> Path:
        """Return the config file path for *environment* (default: active one)."""
        return self.dir / config_file_name(environment or self.system.environment)

    def has_config(self, environment: str | None = None) -> bool:
        """Return True when a config file exists for *environment*."""
        return ConfigStore.exists(self.config_path(environment))

    @property
    def config(self) -> ConfigStore:
        """Return the config store of the active environment.

        The store is replaced whenever the system environment has changed
        since it was created.
        """
        environment = self.system.environment
        if self._config is None or self._config_environment != environment:
            self._config = ConfigStore(self.config_path(environment))
            self._config_environment = environment
        return self._config

    @property
    def process_name(self) -> str:
        """Return the configured process manager name."""
        return str(self.config.get("process", DEFAULT_PROCESS) or DEFAULT_PROCESS)

    @property
    def process(self) -> ProcessManager:
        """Return the process manager, rebuilt when the configured name changes."""
        name = self.process_name
        if self._process is None or self._process_name != name:
            manager_cls = self.system.get_process_manager(name)
            self._process = manager_cls(self.ui, self.system, self)
            self._process_name = name
        return self._process

    # State -------------------------------------------------------------
    @property
    def is_setup(self) -> bool:
        """Return True when the global registry lists this directory under its name."""
        entry = self.system.registry().get(self.name)
        return isinstance(entry, dict) and entry.get("cwd") == str(self.dir)

    async def is_running(self) -> bool:
        """Return whether the instance is running, reconciling the cached flag.

        Without a cached flag both environments are probed and the first one
        found running is cached; otherwise the prior environment is restored.
        With a cached flag that environment is loaded and checked directly,
        and the flag is cleared when the process turns out to be gone.
        """
        running = self.running
        if not running:
            previous = self.system.environment
            for environment in ENVIRONMENTS:
                if not self.has_config(environment):
                    continue
                self.system.set_environment(environment == "development")
                if await self._probe_running():
                    self.running = environment
                    return True
            self.system.set_environment(previous == "development")
            return False

        self.system.set_environment(running == "development")
        if await self._probe_running():
            return True
        self.running = None
        return False

    async def _probe_running(self) -> bool:
        try:
            return bool(await self.process.is_running(self.dir))
        except Exception as exc:  # noqa: BLE001 - unknown state counts as stopped
            LOGGER.debug("Could not determine whether %s is running: %s", self.dir, exc)
            return False

    def check_environment(self) -> None:
        """Switch to development when only a development config exists."""
        if not self.system.production:
            return
        if self.has_config("production") or not self.has_config("development"):
            return
        self.ui.log(
            "Found a development config but no production config; running in development mode.",
            "yellow",
        )
        self.system.set_environment(True, set_node_env=True)

    def load_running_environment(self, set_node_env: bool = False) -> None:
        """Activate the environment the instance is recorded as running in."""
        running = self.running
        if not running:
            raise CliError(
                "Ghost instance is not running",
                help="Start it with `ghostctl start`.",
            )
        self.system.set_environment(running == "development", set_node_env=set_node_env)

    # Lifecycle ---------------------------------------------------------
    async def start(self, enable: bool = False) -> None:
        """Start the instance in the active environment."""
        process = self.process
        await process.start(self.dir, self.system.environment)
        if enable and process.supports_enable_behavior() and not await process.is_enabled():
            await process.enable()
        self.running = self.system.environment

    async def stop(self, disable: bool = False) -> None:
        """Stop the instance and clear the running flag."""
        process = self.process
        await process.stop(self.dir)
        if disable and process.supports_enable_behavior() and await process.is_enabled():
            await process.disable()
        self.running = None

    async def restart(self) -> None:
        """Restart the instance in the active environment."""
        await self.process.restart(self.dir, self.system.environment)
        self.running = self.system.environment

    async def summary(self) -> InstanceSummary:
        """Return the listing summary; running instances include their live config."""
        if not await self.is_running():
            return InstanceSummary(
                name=self.name,
                dir=self.dir,
                version=self.version,
                running=False,
            )
        self.load_running_environment()
        port = self.config.get("server.port")
        return InstanceSummary(
            name=self.name,
            dir=self.dir,
            version=self.version,
            running=True,
            environment=self.system.environment,
            url=self.config.get("url"),
            port=int(port) if port is not None else None,
            process=self.process_name,
        )

    # Generated files ---------------------------------------------------
    @property
    def files_dir(self) -> Path:
        """Return the directory holding generated system files."""
        return self.dir / "system" / "files"

    async def template(
        self,
        contents: str,
        descriptor: str,
        filename: str,
        target_dir: Path | None = None,
    ) -> bool:
        """Write *contents* to ``system/files/<filename>`` and link it into *target_dir*.

        In verbose interactive runs the operator may view or edit the file
        before it is written.
        """
        if self.ui.allow_prompt and self.ui.verbose:
            while True:
                choice = self.ui.choose(
                    f"Would you like to view or edit the {descriptor} file?",
                    ["continue", "view", "edit"],
                    default="continue",
                )
                if choice == "view":
                    self.ui.log(contents)
                    continue
                if choice == "edit":
                    contents = self.ui.edit(contents, extension=Path(filename).suffix or ".txt")
                    continue
                break

        self.files_dir.mkdir(parents=True, exist_ok=True)
        path = self.files_dir / filename
        path.write_text(contents, encoding="utf-8")
        if target_dir is not None:
            await self.ui.sudo(["ln", "-sf", str(path), str(Path(target_dir) / filename)])
        return True


__all__ = [
    "CLI_CONFIG_FILE",
    "ENVIRONMENTS",
    "Instance",
    "InstanceSummary",
    "config_file_name",
    "default_name",
]
