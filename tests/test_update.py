"""Tests for update and rollback."""
from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Any, ClassVar

import pytest

from ghostctl import __version__
from ghostctl.errors import AbortRun, ApplicationError, CliError, ProcessError, StepFailure
from ghostctl.extension import Extension, ExtensionInfo
from ghostctl.instance import Instance
from ghostctl.process.base import ProcessManager
from ghostctl.system import System
from ghostctl.tasks.models import RunContext, StepStatus
from ghostctl.tasks.update import link_current, run_update, should_offer_rollback


class FlakyManager(ProcessManager):
    """Fails to start whichever version is marked broken."""

    name: ClassVar[str] = "flaky"
    running: ClassVar[set[Path]] = set()
    broken_version: ClassVar[str | None] = None
    starts: ClassVar[list[str | None]] = []

    async def start(self, directory: Path, environment: str) -> None:
        """Start unless the active version is broken."""
        FlakyManager.starts.append(self.instance.version)
        if self.instance.version == FlakyManager.broken_version:
            raise ApplicationError("Ghost failed to boot")
        FlakyManager.running.add(Path(directory))

    async def stop(self, directory: Path) -> None:
        """Forget *directory*."""
        FlakyManager.running.discard(Path(directory))

    async def is_running(self, directory: Path) -> bool:
        """Return whether *directory* was started."""
        return Path(directory) in FlakyManager.running


class FlakyExtension(Extension):
    """Provides :class:`FlakyManager`."""

    process_managers: ClassVar[dict[str, Any]] = {"flaky": FlakyManager}  # type: ignore[assignment]


class FakeInstaller:
    """Records installs and reports *latest* as the newest release."""

    def __init__(self, latest: str) -> None:
        self.latest = latest
        self.installed: list[str] = []

    async def resolve_version(
        self,
        requested: str | None = None,
        *,
        active: str | None = None,
        force: bool = False,
    ) -> str | None:
        version = requested or self.latest
        if version == active and not force:
            return None
        return version

    async def install(self, version: str) -> None:
        self.installed.append(version)

    def is_installed(self, version: str) -> bool:
        return version in self.installed

    def remove_old_versions(self, keep: int, protect: Any = ()) -> list[str]:
        return []


@pytest.fixture
def installer(monkeypatch: pytest.MonkeyPatch) -> FakeInstaller:
    """Replace the npm installer used by the update steps."""
    fake = FakeInstaller("5.1.0")
    monkeypatch.setattr("ghostctl.tasks.update.version_installer", lambda ctx: fake)
    return fake


@pytest.fixture
def installed(
    run_context: RunContext,
    system: System,
    instance: Instance,
    write_config: Any,
    tmp_path: Path,
) -> Instance:
    """Return an instance running 5.0.0 under the flaky manager."""
    FlakyManager.running = set()
    FlakyManager.broken_version = None
    FlakyManager.starts = []
    system._extensions = [  # type: ignore[attr-defined]
        FlakyExtension(system.ui, system, ExtensionInfo(name="flaky", version="1"), tmp_path)
    ]
    write_config(instance, {"url": "http://localhost:2368", "process": "flaky"})
    instance.version = "5.0.0"
    instance.cli_version = __version__
    return instance


def test_link_current_replaces_existing_link(tmp_path: Path) -> None:
    """``current`` is a relative link that is swapped in place."""
    link_current(tmp_path, "5.0.0")
    current = link_current(tmp_path, "5.1.0")

    assert os.readlink(current) == os.path.join("versions", "5.1.0")
    assert not (tmp_path / ".current.tmp").exists()


def test_rollback_without_previous_version_fails(
    run_context: RunContext,
    installed: Instance,
) -> None:
    """A rollback needs a recorded previous version."""
    run_context.argv["rollback"] = True

    with pytest.raises(CliError, match="No previous version found"):
        asyncio.run(run_update(run_context))


def test_up_to_date_returns_none(
    run_context: RunContext,
    installed: Instance,
    installer: FakeInstaller,
) -> None:
    """Nothing runs when the newest version is active."""
    installed.version = "5.1.0"

    assert asyncio.run(run_update(run_context)) is None
    assert installer.installed == []
    assert "All up to date!" in run_context.ui.console.export_text()


def test_update_records_versions_and_restarts(
    run_context: RunContext,
    installed: Instance,
    installer: FakeInstaller,
) -> None:
    """A successful update links the new version and keeps the old one for rollback."""
    report = asyncio.run(run_update(run_context))

    assert report is not None
    assert report.ids(StepStatus.COMPLETED) == ["download", "link", "restart"]
    assert report.get("stop").reason == "Ghost is not running"  # type: ignore[union-attr]
    assert report.get("remove-old").reason == "No old versions to remove"  # type: ignore[union-attr]
    assert installer.installed == ["5.1.0"]
    assert installed.version == "5.1.0"
    assert installed.previous_version == "5.0.0"
    assert installed.running == "production"
    assert os.readlink(installed.dir / "current") == os.path.join("versions", "5.1.0")


def test_update_stops_running_instance(
    run_context: RunContext,
    installed: Instance,
    installer: FakeInstaller,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A running instance is stopped before the link is swapped."""
    monkeypatch.setenv("NODE_ENV", "production")
    asyncio.run(installed.start())

    report = asyncio.run(run_update(run_context))

    assert report is not None
    assert "stop" in report.completed
    assert FlakyManager.starts == ["5.0.0", "5.1.0"]


def test_failed_restart_offers_rollback(
    run_context: RunContext,
    installed: Instance,
    installer: FakeInstaller,
) -> None:
    """When Ghost fails to boot the previous version is restored."""
    FlakyManager.broken_version = "5.1.0"

    report = asyncio.run(run_update(run_context))

    assert report is not None
    assert installed.version == "5.0.0"
    assert installed.previous_version is None
    assert report.get("download").reason == "Rolling back to an installed version"  # type: ignore[union-attr]
    assert FlakyManager.starts == ["5.1.0", "5.0.0"]
    assert os.readlink(installed.dir / "current") == os.path.join("versions", "5.0.0")


def test_declined_rollback_reraises(
    run_context: RunContext,
    installed: Instance,
    installer: FakeInstaller,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Declining the rollback surfaces the original failure."""
    FlakyManager.broken_version = "5.1.0"
    monkeypatch.setattr(run_context.ui, "confirm", lambda question, default=True: False)

    with pytest.raises(AbortRun) as excinfo:
        asyncio.run(run_update(run_context))

    assert excinfo.value.step_id == "restart"
    assert installed.version == "5.1.0"


def test_should_offer_rollback_only_for_application_errors() -> None:
    """Process failures and failed rollbacks do not trigger another rollback."""
    app_failure = StepFailure("restart", "Restarting Ghost", ApplicationError("boom"))
    process_failure = StepFailure(
        "download",
        "Downloading",
        ProcessError("npm failed", cmd=["npm"], returncode=1),
    )

    assert should_offer_rollback(app_failure, rollback=False) is True
    assert should_offer_rollback(app_failure, rollback=True) is False
    assert should_offer_rollback(process_failure, rollback=False) is False
