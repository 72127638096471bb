"""Extension contract and discovery.

Extensions contribute setup steps, version-gated CLI migrations, uninstall
cleanup and named process managers. Built-in extensions load first in a fixed
order; third-party ones register a subclass of :class:`Extension` under the
``ghostctl.extensions`` entry-point group and load after them, sorted by name.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from importlib import metadata
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from .instance import Instance
    from .process.base import ProcessManager
    from .system import System
    from .tasks.migrations import Migration
    from .tasks.models import Step
    from .ui import UI

LOGGER = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "ghostctl.extensions"
HOOKS = ("setup", "migrations", "uninstall")


@dataclass(frozen=True, slots=True)
class ExtensionInfo:
    """Package metadata an extension was loaded from."""

    name: str
    version: str
    package: str | None = None


class Extension:
    """Base class for extensions.

    Subclasses override any of :meth:`setup`, :meth:`migrations` and
    :meth:`uninstall`; :meth:`ghostctl.system.System.hook` only calls the
    hooks a subclass actually overrides.
    """

    extension_id: ClassVar[str] = ""
    process_managers: ClassVar[dict[str, type[ProcessManager]]] = {}

    @classmethod
    def extension_name(cls) -> str:
        """Return the registry name of built-in extensions."""
        if cls.extension_id:
            return cls.extension_id
        return cls.__name__.removesuffix("Extension").lower()

    def __init__(self, ui: UI, system: System, info: ExtensionInfo, directory: Path) -> None:
        """Store the collaborators every extension needs."""
        self.ui = ui
        self.system = system
        self.info = info
        self.directory = directory

    @property
    def name(self) -> str:
        """Return the extension name."""
        return self.info.name

    def setup(self) -> Sequence[Step]:
        """Return the steps this extension adds to ``setup``."""
        return ()

    def migrations(self) -> Sequence[Migration]:
        """Return the CLI migrations this extension needs."""
        return ()

    async def uninstall(self, instance: Instance) -> None:
        """Remove whatever this extension created for *instance*."""

    def overrides(self, hook: str) -> bool:
        """Return whether this extension implements *hook*."""
        if hook not in HOOKS:
            raise ValueError(f"Unknown extension hook {hook!r}.")
        return getattr(type(self), hook) is not getattr(Extension, hook)

    async def template(
        self,
        instance: Instance,
        contents: str,
        descriptor: str,
        filename: str,
        target_dir: Path | None = None,
    ) -> bool:
        """Write a generated file for *instance*; see :meth:`Instance.template`."""
        return await instance.template(contents, descriptor, filename, target_dir)


def builtin_extensions() -> list[type[Extension]]:
    """Return the built-in extension classes in load order."""
    from .extensions.mysql import MySQLExtension
    from .extensions.nginx import NginxExtension
    from .extensions.systemd import SystemdExtension

    return [MySQLExtension, NginxExtension, SystemdExtension]


def discover_extensions(ui: UI, system: System) -> list[Extension]:
    """Instantiate built-in then entry-point extensions."""
    from . import __version__

    extensions: list[Extension] = []
    loaded: set[str] = set()
    for cls in builtin_extensions():
        info = ExtensionInfo(name=cls.extension_name(), version=__version__, package="ghostctl")
        extensions.append(cls(ui, system, info, Path(__file__).parent / "extensions"))
        loaded.add(info.name)

    entry_points = sorted(metadata.entry_points(group=ENTRY_POINT_GROUP), key=lambda ep: ep.name)
    for entry_point in entry_points:
        if entry_point.name in loaded:
            LOGGER.warning(
                "Ignoring extension %r from %s; the name is already taken.",
                entry_point.name,
                entry_point.value,
            )
            continue
        extension = _load_entry_point(ui, system, entry_point)
        if extension is not None:
            extensions.append(extension)
            loaded.add(entry_point.name)
    return extensions


def _load_entry_point(ui: UI, system: System, entry_point: metadata.EntryPoint) -> Extension | None:
    try:
        cls = entry_point.load()
    except (ImportError, AttributeError) as exc:
        LOGGER.warning("Failed to load extension %r: %s", entry_point.name, exc)
        return None
    if not isinstance(cls, type) or not issubclass(cls, Extension):
        LOGGER.warning(
            "Extension %r does not point at an Extension subclass; ignoring it.",
            entry_point.name,
        )
        return None
    package = entry_point.dist.name if entry_point.dist is not None else None
    version = entry_point.dist.version if entry_point.dist is not None else "0.0.0"
    module = __import__(cls.__module__, fromlist=["__file__"])
    directory = Path(getattr(module, "__file__", ".") or ".").parent
    info = ExtensionInfo(name=entry_point.name, version=version, package=package)
    return cls(ui, system, info, directory)


__all__ = [
    "ENTRY_POINT_GROUP",
    "Extension",
    "ExtensionInfo",
    "builtin_extensions",
    "discover_extensions",
]
