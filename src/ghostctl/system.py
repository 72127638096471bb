"""Process-wide context: environment, instance registry and extension hooks."""
from __future__ import annotations

import inspect
import logging
import os
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .config import AppConfig
from .extension import Extension, discover_extensions
from .instance import CLI_CONFIG_FILE, Instance
from .process.base import ProcessManager
from .process.local import LocalProcessManager
from .store import ConfigStore
from .templates import TemplateEngine

if TYPE_CHECKING:
    from .ui import UI

LOGGER = logging.getLogger(__name__)

GLOBAL_CONFIG_FILE = "config"


class System:
    """Coordinator shared by every command of one invocation."""

    def __init__(
        self,
        ui: UI,
        settings: AppConfig,
        templates: TemplateEngine | None = None,
        extensions: Sequence[Extension] | None = None,
    ) -> None:
        """Create the facade; extensions are discovered on first use unless given."""
        self.ui = ui
        self.settings = settings
        self.templates = templates or TemplateEngine.with_overrides(settings.templates_dir)
        self._extensions = list(extensions) if extensions is not None else None
        self._instances: dict[Path, Instance] = {}
        self._global_config: ConfigStore | None = None
        self.development = False
        self.production = True
        self.environment = "production"

    # Environment -------------------------------------------------------
    def set_environment(self, is_development: bool, set_node_env: bool = False) -> None:
        """Select development or production, optionally exporting ``NODE_ENV``."""
        self.development = is_development
        self.production = not is_development
        self.environment = "development" if is_development else "production"
        if set_node_env:
            os.environ["NODE_ENV"] = self.environment

    # Global registry ---------------------------------------------------
    @property
    def global_dir(self) -> Path:
        """Return the per-user ghostctl directory."""
        return self.settings.global_dir

    @property
    def global_config(self) -> ConfigStore:
        """Return the global store holding the instance registry."""
        if self._global_config is None:
            self._global_config = ConfigStore(self.global_dir / GLOBAL_CONFIG_FILE)
        return self._global_config

    def registry(self) -> dict[str, Any]:
        """Return a copy of the ``{name: {"cwd": ...}}`` registry."""
        instances = self.global_config.get("instances", {})
        return dict(instances) if isinstance(instances, dict) else {}

    def _save_registry(self, instances: dict[str, Any]) -> None:
        self.global_config.set("instances", instances).save()

    def get_instance(self, directory: Path | str) -> Instance:
        """Return the instance rooted at *directory*, cached per resolved path."""
        path = Path(directory).expanduser().resolve()
        instance = self._instances.get(path)
        if instance is None:
            instance = Instance(self.ui, self, path)
            self._instances[path] = instance
        return instance

    def get_instance_by_name(self, name: str) -> Instance | None:
        """Return the registered instance called *name*, if any."""
        entry = self.registry().get(name)
        if not isinstance(entry, dict) or not entry.get("cwd"):
            return None
        return self.get_instance(entry["cwd"])

    async def get_all_instances(self, running_only: bool = False) -> list[Instance]:
        """Return registered instances, pruning entries whose directory is gone."""
        instances = self.registry()
        pruned = False
        result: list[Instance] = []
        previous = self.environment
        for name, entry in list(instances.items()):
            cwd = entry.get("cwd") if isinstance(entry, dict) else None
            if not cwd or not ConfigStore.exists(Path(cwd) / CLI_CONFIG_FILE):
                LOGGER.debug("Pruning stale registry entry %s (%s).", name, cwd)
                del instances[name]
                pruned = True
                continue
            instance = self.get_instance(cwd)
            if running_only and not await instance.is_running():
                continue
            result.append(instance)
        self.set_environment(previous == "development")
        if pruned:
            self._save_registry(instances)
        return result

    def add_instance(self, instance: Instance) -> str:
        """Register *instance* and return the unique name it was recorded under.

        A directory that is already registered keeps its existing name; a new
        directory whose name collides gets a numeric suffix.
        """
        instances = self.registry()
        directory = str(instance.dir)
        for name, entry in instances.items():
            if isinstance(entry, dict) and entry.get("cwd") == directory:
                instance.name = name
                return name
        name = self.dedupe_instance_name(instance.name)
        instances[name] = {"cwd": directory}
        self._save_registry(instances)
        instance.name = name
        return name

    def remove_instance(self, instance: Instance) -> None:
        """Drop every registry entry pointing at *instance*."""
        instances = self.registry()
        directory = str(instance.dir)
        remaining = {
            name: entry
            for name, entry in instances.items()
            if not (isinstance(entry, dict) and entry.get("cwd") == directory)
        }
        if len(remaining) != len(instances):
            self._save_registry(remaining)

    def dedupe_instance_name(self, name: str) -> str:
        """Return *name*, or ``name-<n>`` with the lowest free ``n``."""
        instances = self.registry()
        if name not in instances:
            return name
        index = 1
        while f"{name}-{index}" in instances:
            index += 1
        return f"{name}-{index}"

    # Extensions --------------------------------------------------------
    @property
    def extensions(self) -> list[Extension]:
        """Return loaded extensions in discovery order."""
        if self._extensions is None:
            self._extensions = discover_extensions(self.ui, self)
        return self._extensions

    async def hook(self, name: str, *args: Any) -> list[Any]:
        """Call hook *name* on every extension that implements it, in order."""
        results: list[Any] = []
        for extension in self.extensions:
            if not extension.overrides(name):
                continue
            LOGGER.debug("Running %s hook of extension %s.", name, extension.name)
            result = getattr(extension, name)(*args)
            if inspect.isawaitable(result):
                result = await result
            results.append(result)
        return results

    def process_managers(self) -> dict[str, type[ProcessManager]]:
        """Return every known process manager by name."""
        managers: dict[str, type[ProcessManager]] = {"local": LocalProcessManager}
        for extension in self.extensions:
            for name, manager in extension.process_managers.items():
                managers.setdefault(name, manager)
        return managers

    def get_process_manager(self, name: str | None = None) -> type[ProcessManager]:
        """Resolve *name* to a usable process manager class.

        Unknown, invalid or unrunnable managers fall back to the local one with
        a single warning. Validity is checked before runnability.
        """
        if not name or name == LocalProcessManager.name:
            return LocalProcessManager
        candidate = self.process_managers().get(name)
        if candidate is None:
            LOGGER.warning(
                "Process manager '%s' not found; falling back to the local process manager.",
                name,
            )
            return LocalProcessManager
        validity = ProcessManager.is_valid(candidate)
        if validity is False:
            LOGGER.warning(
                "Process manager '%s' does not extend ProcessManager; "
                "falling back to the local process manager.",
                name,
            )
            return LocalProcessManager
        if validity is not True:
            LOGGER.warning(
                "Process manager '%s' is missing required methods (%s); "
                "falling back to the local process manager.",
                name,
                ", ".join(validity),
            )
            return LocalProcessManager
        if not candidate.will_run():
            LOGGER.warning(
                "Process manager '%s' will not run on this system; "
                "falling back to the local process manager.",
                name,
            )
            return LocalProcessManager
        return candidate

    # Diagnostics -------------------------------------------------------
    def write_error_log(self, text: str) -> Path | None:
        """Write *text* to a timestamped debug log and return its path."""
        stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
        path = self.settings.logs_dir / f"ghostctl-debug-{stamp}.log"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        except OSError as exc:
            LOGGER.warning("Unable to write debug log %s: %s", path, exc)
            return None
        return path


__all__ = ["GLOBAL_CONFIG_FILE", "System"]
