"""Tests for setup step composition and the built-in setup steps."""
from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from ghostctl import __version__
from ghostctl.extension import Extension, ExtensionInfo
from ghostctl.instance import Instance
from ghostctl.system import System
from ghostctl.tasks.linux import linux_user_enabled
from ghostctl.tasks.models import RunContext, Step, StepStatus, TaskHandle
from ghostctl.tasks.setup import (
    build_setup_steps,
    register_instance,
    run_setup,
    skip_register_instance,
    skip_start,
)


async def _noop(ctx: RunContext, handle: TaskHandle) -> None:
    return None


class ExtraExtension(Extension):
    """Contributes a single setup step."""

    def setup(self) -> Sequence[Step]:
        """Return the extra step."""
        return [Step(id="extra", name="extra", task=_noop)]


class SilentExtension(Extension):
    """Overrides no hooks."""


def test_extension_steps_sit_between_head_and_tail(system: System, tmp_path: Path) -> None:
    """Extension steps run after the built-in head and before migrate/start."""
    system._extensions = [  # type: ignore[attr-defined]
        SilentExtension(system.ui, system, ExtensionInfo(name="silent", version="1"), tmp_path),
        ExtraExtension(system.ui, system, ExtensionInfo(name="extra", version="1"), tmp_path),
    ]

    steps = asyncio.run(build_setup_steps(system))

    assert [step.id for step in steps] == ["config", "instance", "linux-user", "extra", "migrate", "start"]


def test_start_step_asks_its_own_question(system: System) -> None:
    """Start is optional and phrased as a start question."""
    start = asyncio.run(build_setup_steps(system))[-1]

    assert start.optional is True
    assert start.question == "Do you want to start Ghost?"


def test_register_instance_records_registry_and_version(
    run_context: RunContext,
    instance: Instance,
    system: System,
) -> None:
    """Registering adds the directory to the registry and stamps the CLI version."""
    assert asyncio.run(skip_register_instance(run_context)) is False

    asyncio.run(register_instance(run_context, None))  # type: ignore[arg-type]

    assert system.registry() == {"site": {"cwd": str(instance.dir)}}
    assert instance.cli_version == __version__
    assert instance.config.get("paths.contentPath") == str(instance.dir / "content")
    assert asyncio.run(skip_register_instance(run_context)) == "Instance already set up"


def test_skip_start_reasons(run_context: RunContext) -> None:
    """Start is skipped when opted out; a stopped instance is started."""
    assert asyncio.run(skip_start(run_context)) is False

    run_context.argv["start"] = False
    assert asyncio.run(skip_start(run_context)) == "disabled with --no-start"


def test_run_setup_with_stages_runs_only_selected(run_context: RunContext, system: System) -> None:
    """Stage selection declines every other step without prompting."""
    report = asyncio.run(run_setup(run_context, stages=["instance"]))

    assert run_context.argv["stages"] == ["instance"]
    assert report.ids(StepStatus.COMPLETED) == ["instance"]
    assert report.ids(StepStatus.DECLINED) == ["config", "migrate", "start"]
    assert report.get("config").reason == "not selected"  # type: ignore[union-attr]
    assert "site" in system.registry()


def test_run_setup_honours_disabled_steps(run_context: RunContext) -> None:
    """Opted-out steps are declined and the rest run or skip."""
    run_context.argv["start"] = False

    report = asyncio.run(run_setup(run_context, disabled=["config"]))

    assert report.to_dict() == {
        "steps": [
            {"id": "config", "status": "declined", "reason": "disabled with --no-setup-config"},
            {"id": "instance", "status": "completed", "reason": None},
            {"id": "migrate", "status": "skipped", "reason": "Ghost migrates its database on boot"},
            {"id": "start", "status": "skipped", "reason": "disabled with --no-start"},
        ]
    }


@pytest.mark.parametrize(
    ("local", "platform", "process", "expected"),
    [
        (False, "linux", "systemd", True),
        (True, "linux", "systemd", False),
        (False, "darwin", "systemd", False),
        (False, "linux", "local", False),
    ],
)
def test_linux_user_enabled(
    run_context: RunContext,
    instance: Instance,
    write_config: Any,
    monkeypatch: pytest.MonkeyPatch,
    local: bool,
    platform: str,
    process: str,
    expected: bool,
) -> None:
    """The service user only matters for systemd installs on Linux."""
    write_config(instance, {"process": process})
    run_context.argv["local"] = local
    monkeypatch.setattr("ghostctl.tasks.linux.sys.platform", platform)

    assert linux_user_enabled(run_context) is expected
