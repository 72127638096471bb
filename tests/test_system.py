"""Tests for the system facade: registry, environment and process managers."""
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, ClassVar

import pytest

from ghostctl.config import AppConfig
from ghostctl.extension import Extension, ExtensionInfo
from ghostctl.instance import CLI_CONFIG_FILE, Instance
from ghostctl.process.base import ProcessManager
from ghostctl.process.local import LocalProcessManager
from ghostctl.store import ConfigStore
from ghostctl.system import System
from ghostctl.ui import UI


class CompleteManager(ProcessManager):
    """Implements the required methods and always runs."""

    name: ClassVar[str] = "complete"

    async def start(self, directory: Path, environment: str) -> None:
        """Start nothing."""

    async def stop(self, directory: Path) -> None:
        """Stop nothing."""

    async def is_running(self, directory: Path) -> bool:
        """Never running."""
        return False


class PartialManager(ProcessManager):
    """Misses ``stop`` and ``is_running``."""

    name: ClassVar[str] = "partial"

    async def start(self, directory: Path, environment: str) -> None:
        """Start nothing."""


class UnrunnableManager(CompleteManager):
    """Complete but refuses to run on this host."""

    name: ClassVar[str] = "unrunnable"

    @classmethod
    def will_run(cls) -> bool:
        """Never runnable."""
        return False


class NotAManager:
    """Does not extend :class:`ProcessManager`."""


class ManagersExtension(Extension):
    """Registers the managers above."""

    process_managers: ClassVar[dict[str, Any]] = {  # type: ignore[assignment]
        "complete": CompleteManager,
        "partial": PartialManager,
        "unrunnable": UnrunnableManager,
        "bogus": NotAManager,
    }


@pytest.fixture
def managed_system(ui: UI, settings: AppConfig, tmp_path: Path) -> System:
    """Return a system with the test managers registered."""
    system = System(ui, settings, extensions=[])
    extension = ManagersExtension(ui, system, ExtensionInfo(name="managers", version="1.0"), tmp_path)
    system._extensions = [extension]  # type: ignore[attr-defined]
    return system


def _make_instance_dir(base: Path, name: str) -> Path:
    directory = base / name
    directory.mkdir()
    ConfigStore(directory / CLI_CONFIG_FILE).set("active-version", "5.0.0").save()
    return directory


# Process manager resolution ---------------------------------------------


def test_local_and_empty_names_resolve_to_local(managed_system: System) -> None:
    """The local manager needs no lookup."""
    assert managed_system.get_process_manager(None) is LocalProcessManager
    assert managed_system.get_process_manager("local") is LocalProcessManager


def test_valid_manager_is_returned(managed_system: System) -> None:
    """A complete, runnable manager is used as is."""
    assert managed_system.get_process_manager("complete") is CompleteManager


@pytest.mark.parametrize(
    ("name", "fragment"),
    [
        ("missing", "not found"),
        ("bogus", "does not extend"),
        ("partial", "missing required methods (stop, is_running)"),
        ("unrunnable", "will not run"),
    ],
)
def test_unusable_manager_falls_back_with_one_warning(
    managed_system: System,
    caplog: pytest.LogCaptureFixture,
    name: str,
    fragment: str,
) -> None:
    """Unknown, invalid or unrunnable managers fall back to local with a single warning."""
    with caplog.at_level(logging.WARNING, logger="ghostctl.system"):
        manager = managed_system.get_process_manager(name)

    assert manager is LocalProcessManager
    warnings = [record for record in caplog.records if record.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert fragment in warnings[0].getMessage()


def test_is_valid_reports_missing_methods() -> None:
    """``is_valid`` distinguishes non-subclasses from incomplete ones."""
    assert ProcessManager.is_valid(CompleteManager) is True
    assert ProcessManager.is_valid(NotAManager) is False
    assert ProcessManager.is_valid(PartialManager) == ["stop", "is_running"]
    assert ProcessManager.is_valid(ProcessManager) == ["start", "stop", "is_running"]


def test_enable_support_requires_all_three_methods() -> None:
    """Only managers overriding the enable trio support enable behaviour."""
    assert LocalProcessManager.supports_enable_behavior() is True
    assert CompleteManager.supports_enable_behavior() is False


def test_process_managers_include_local_first(managed_system: System) -> None:
    """Extension managers never shadow the built-in local manager."""
    managers = managed_system.process_managers()

    assert managers["local"] is LocalProcessManager
    assert managers["complete"] is CompleteManager


# Registry ----------------------------------------------------------------


def test_add_instance_dedupes_names(system: System, tmp_path: Path) -> None:
    """A colliding name gets the lowest free numeric suffix."""
    first = system.get_instance(_make_instance_dir(tmp_path, "a"))
    second = system.get_instance(_make_instance_dir(tmp_path, "b"))
    third = system.get_instance(_make_instance_dir(tmp_path, "c"))
    for instance in (first, second, third):
        instance.name = "blog"

    assert system.add_instance(first) == "blog"
    assert system.add_instance(second) == "blog-1"
    assert system.add_instance(third) == "blog-2"
    assert second.name == "blog-1"
    assert system.registry()["blog-2"] == {"cwd": str(third.dir)}


def test_add_instance_reuses_existing_entry(system: System, tmp_path: Path) -> None:
    """Registering the same directory twice keeps its original name."""
    instance = system.get_instance(_make_instance_dir(tmp_path, "a"))
    instance.name = "blog"
    system.add_instance(instance)

    instance.name = "renamed"
    assert system.add_instance(instance) == "blog"
    assert instance.name == "blog"
    assert list(system.registry()) == ["blog"]


def test_remove_instance_drops_entries(system: System, tmp_path: Path) -> None:
    """Removal deletes every entry for the directory."""
    instance = system.get_instance(_make_instance_dir(tmp_path, "a"))
    system.add_instance(instance)

    system.remove_instance(instance)

    assert system.registry() == {}


def test_get_instance_is_cached_by_resolved_path(system: System, tmp_path: Path) -> None:
    """The same directory yields the same instance object."""
    directory = _make_instance_dir(tmp_path, "a")

    assert system.get_instance(directory) is system.get_instance(tmp_path / "a" / ".." / "a")


def test_get_instance_by_name(system: System, tmp_path: Path) -> None:
    """Registered names map back to their instance."""
    instance = system.get_instance(_make_instance_dir(tmp_path, "a"))
    instance.name = "blog"
    system.add_instance(instance)

    assert system.get_instance_by_name("blog") is instance
    assert system.get_instance_by_name("other") is None


def test_get_all_instances_prunes_stale_entries(system: System, tmp_path: Path) -> None:
    """Entries whose directory lost its ``.ghost-cli`` file are removed."""
    keep = system.get_instance(_make_instance_dir(tmp_path, "keep"))
    gone = system.get_instance(_make_instance_dir(tmp_path, "gone"))
    keep.name = "keep"
    gone.name = "gone"
    system.add_instance(keep)
    system.add_instance(gone)
    (gone.dir / CLI_CONFIG_FILE).unlink()

    instances = asyncio.run(system.get_all_instances())

    assert instances == [keep]
    assert list(system.registry()) == ["keep"]


# Environment ---------------------------------------------------------------


def test_set_environment_toggles_flags(
    system: System,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Development and production are mutually exclusive."""
    monkeypatch.setenv("NODE_ENV", "test")

    system.set_environment(True)
    assert (system.development, system.production, system.environment) == (True, False, "development")
    assert os.environ["NODE_ENV"] == "test"

    system.set_environment(False, set_node_env=True)
    assert system.environment == "production"
    assert os.environ["NODE_ENV"] == "production"


# Hooks ------------------------------------------------------------------


class HookExtension(Extension):
    """Implements ``setup`` only."""

    def setup(self) -> list[str]:  # type: ignore[override]
        """Return a marker."""
        return [self.name]


def test_hook_calls_only_overriding_extensions(ui: UI, settings: AppConfig, tmp_path: Path) -> None:
    """Extensions that do not implement a hook are not called."""
    system = System(ui, settings, extensions=[])
    system._extensions = [  # type: ignore[attr-defined]
        HookExtension(ui, system, ExtensionInfo(name="one", version="1"), tmp_path),
        Extension(ui, system, ExtensionInfo(name="plain", version="1"), tmp_path),
        HookExtension(ui, system, ExtensionInfo(name="two", version="1"), tmp_path),
    ]

    assert asyncio.run(system.hook("setup")) == [["one"], ["two"]]
    assert asyncio.run(system.hook("uninstall", None)) == []


def test_write_error_log(system: System, settings: AppConfig) -> None:
    """Debug logs land in the logs directory."""
    path = system.write_error_log("traceback")

    assert path is not None
    assert path.parent == settings.logs_dir
    assert path.read_text() == "traceback"


def test_instance_process_is_rebuilt_when_name_changes(
    managed_system: System,
    tmp_path: Path,
    write_config: Any,
) -> None:
    """Changing the configured manager swaps the process manager object."""
    instance: Instance = managed_system.get_instance(_make_instance_dir(tmp_path, "a"))
    write_config(instance, {"process": "local"})
    assert isinstance(instance.process, LocalProcessManager)

    instance.config.set("process", "complete")

    assert isinstance(instance.process, CompleteManager)
