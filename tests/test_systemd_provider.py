"""Tests for the systemd provider and process manager."""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from ghostctl.errors import ApplicationError, SystemRequirementError
from ghostctl.extension import ExtensionInfo
from ghostctl.extensions.systemd import SystemdExtension, SystemdProcessManager
from ghostctl.instance import Instance
from ghostctl.providers.systemd import SystemdError, SystemdProvider
from ghostctl.system import System
from ghostctl.tasks.models import RunContext, Step, TaskHandle
from ghostctl.ui import UI


@pytest.fixture
def provider(tmp_path: Path) -> SystemdProvider:
    """Return a provider whose unit directory lives in the temporary path."""
    unit_dir = tmp_path / "units"
    unit_dir.mkdir()
    return SystemdProvider(unit_dir=unit_dir, systemctl_bin="systemctl")


def test_unit_naming(provider: SystemdProvider) -> None:
    """Units are named ``ghost_<instance>``."""
    assert provider.unit_name("blog-example-com") == "ghost_blog-example-com"
    assert provider.unit_path("blog").name == "ghost_blog.service"
    assert provider.unit_exists("blog") is False


def test_lifecycle_commands_are_elevated(provider: SystemdProvider, shell_recorder: Any) -> None:
    """Start, stop, enable and disable go through sudo."""
    asyncio.run(provider.start("blog"))
    asyncio.run(provider.stop("blog"))
    asyncio.run(provider.enable("blog"))
    asyncio.run(provider.disable("blog"))

    assert shell_recorder.commands() == [
        ["systemctl", "start", "ghost_blog"],
        ["systemctl", "stop", "ghost_blog"],
        ["systemctl", "enable", "ghost_blog", "--quiet"],
        ["systemctl", "disable", "ghost_blog", "--quiet"],
    ]
    assert all(call["elevated"] for call in shell_recorder.calls)


def test_failed_command_raises_systemd_error(
    provider: SystemdProvider,
    shell_recorder: Any,
) -> None:
    """A nonzero exit is reported with the command output."""
    shell_recorder.respond("start", returncode=5, stderr="Unit ghost_blog.service not found.")

    with pytest.raises(SystemdError) as excinfo:
        asyncio.run(provider.start("blog"))

    assert excinfo.value.returncode == 5
    assert "not found" in excinfo.value.message


def test_queries_map_exit_codes(provider: SystemdProvider, shell_recorder: Any) -> None:
    """``is-active`` and ``is-enabled`` are true only on exit code zero."""
    shell_recorder.respond("is-active", returncode=3, stdout="inactive")

    assert asyncio.run(provider.is_active("blog")) is False
    assert asyncio.run(provider.is_enabled("blog")) is True
    assert shell_recorder.calls[0]["elevated"] is False


def test_remove_deletes_unit_and_reloads(provider: SystemdProvider, shell_recorder: Any) -> None:
    """Removing an installed unit reloads the daemon."""
    provider.unit_path("blog").write_text("[Unit]\n")

    asyncio.run(provider.remove("blog"))

    assert shell_recorder.commands() == [
        ["rm", "-f", str(provider.unit_path("blog"))],
        ["systemctl", "daemon-reload"],
    ]


def test_remove_missing_unit_is_noop(provider: SystemdProvider, shell_recorder: Any) -> None:
    """Nothing runs when the unit is not installed."""
    asyncio.run(provider.remove("blog"))

    assert shell_recorder.calls == []


# Process manager -----------------------------------------------------------


@pytest.fixture
def systemd_instance(instance: Instance, write_config: Any) -> Instance:
    """Return an instance configured for systemd."""
    instance.name = "blog"
    write_config(instance, {"url": "https://blog.example", "process": "systemd", "server": {"port": 2368}})
    return instance


def test_manager_requires_unit_file(ui: UI, system: System, systemd_instance: Instance) -> None:
    """Starting without a unit file points the operator at ``setup systemd``."""
    manager = SystemdProcessManager(ui, system, systemd_instance)

    with pytest.raises(SystemRequirementError, match="ghostctl setup systemd"):
        asyncio.run(manager.start(systemd_instance.dir, "production"))


def test_manager_start_waits_for_port(
    ui: UI,
    system: System,
    systemd_instance: Instance,
    shell_recorder: Any,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """After ``systemctl start`` the manager waits for Ghost's port."""
    manager = SystemdProcessManager(ui, system, systemd_instance)
    manager.provider.unit_path("blog").parent.mkdir(parents=True, exist_ok=True)
    manager.provider.unit_path("blog").write_text("[Unit]\n")
    polled: list[tuple[int, str]] = []

    async def fake_poll(port: int, *, host: str, timeout: float) -> bool:
        polled.append((port, host))
        return True

    monkeypatch.setattr("ghostctl.process.base.poll_port", fake_poll)

    asyncio.run(manager.start(systemd_instance.dir, "production"))

    assert shell_recorder.commands() == [["systemctl", "start", "ghost_blog"]]
    assert polled == [(2368, "127.0.0.1")]


def test_manager_stops_unit_when_port_never_opens(
    ui: UI,
    system: System,
    systemd_instance: Instance,
    shell_recorder: Any,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A unit that never listens is stopped again and reported."""
    manager = SystemdProcessManager(ui, system, systemd_instance)
    manager.provider.unit_path("blog").parent.mkdir(parents=True, exist_ok=True)
    manager.provider.unit_path("blog").write_text("[Unit]\n")

    async def never(port: int, *, host: str, timeout: float) -> bool:
        return False

    monkeypatch.setattr("ghostctl.process.base.poll_port", never)

    with pytest.raises(ApplicationError, match="Could not communicate"):
        asyncio.run(manager.restart(systemd_instance.dir, "production"))

    assert shell_recorder.commands() == [
        ["systemctl", "restart", "ghost_blog"],
        ["systemctl", "stop", "ghost_blog"],
    ]


# Extension step ----------------------------------------------------------


def _systemd_step(ui: UI, system: System, tmp_path: Path) -> tuple[SystemdExtension, Step]:
    extension = SystemdExtension(ui, system, ExtensionInfo(name="systemd", version="1"), tmp_path)
    (step,) = extension.setup()
    return extension, step


def test_systemd_step_enabled_for_systemd_installs(
    ui: UI,
    system: System,
    systemd_instance: Instance,
    run_context: RunContext,
    tmp_path: Path,
) -> None:
    """The step applies to non-local systemd installs or when named as a stage."""
    _, step = _systemd_step(ui, system, tmp_path)
    assert step.depends_on == ("linux-user",)
    assert step.enabled is not None

    assert step.enabled(run_context) is True
    run_context.argv["local"] = True
    assert step.enabled(run_context) is False
    run_context.argv["stages"] = ["systemd"]
    assert step.enabled(run_context) is True


def test_systemd_step_renders_unit(
    ui: UI,
    system: System,
    systemd_instance: Instance,
    run_context: RunContext,
    shell_recorder: Any,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """The unit is rendered into ``system/files`` and linked into the unit directory."""
    monkeypatch.setattr("ghostctl.extensions.systemd.user_exists", lambda name: True)
    monkeypatch.setattr("ghostctl.extensions.systemd.exec_start_command", lambda: "/usr/bin/ghostctl run")
    _, step = _systemd_step(ui, system, tmp_path)

    asyncio.run(step.task(run_context, TaskHandle(step)))

    unit = systemd_instance.files_dir / "ghost_blog.service"
    text = unit.read_text()
    assert f"WorkingDirectory={systemd_instance.dir}" in text
    assert "ExecStart=/usr/bin/ghostctl run" in text
    assert "User=ghost" in text
    assert shell_recorder.commands() == [
        ["ln", "-sf", str(unit), str(system.settings.systemd.unit_dir / "ghost_blog.service")],
        ["systemctl", "daemon-reload"],
    ]


def test_systemd_step_declined_switches_to_local(
    ui: UI,
    system: System,
    systemd_instance: Instance,
    run_context: RunContext,
    tmp_path: Path,
) -> None:
    """Declining systemd setup makes the instance use the local manager."""
    _, step = _systemd_step(ui, system, tmp_path)
    assert step.on_user_skip is not None

    asyncio.run(step.on_user_skip(run_context))

    assert systemd_instance.config.reload().get("process") == "local"


def test_manager_will_run_needs_systemctl_on_path(monkeypatch: pytest.MonkeyPatch) -> None:
    """Selection looks for ``systemctl`` on PATH."""
    monkeypatch.setattr("ghostctl.extensions.systemd.shutil.which", lambda name: None)
    assert SystemdProcessManager.will_run() is False

    monkeypatch.setattr(
        "ghostctl.extensions.systemd.shutil.which",
        lambda name: "/usr/bin/systemctl" if name == "systemctl" else None,
    )
    assert SystemdProcessManager.will_run() is True
