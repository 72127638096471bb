"""Shared fixtures for the ghostctl test suite."""

from __future__ import annotations

import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console

from ghostctl import shell
from ghostctl.config import AppConfig, load_config
from ghostctl.instance import Instance
from ghostctl.store import ConfigStore
from ghostctl.system import System
from ghostctl.tasks.models import RunContext
from ghostctl.ui import UI


class ShellRecorder:
    """Stand-in for :func:`ghostctl.shell.run` that records every call.

    A response registered for *key* answers commands with that exact argument,
    or with an argument containing it when registered with ``contains=True``.
    Unmatched commands succeed with empty output.
    """

    def __init__(self) -> None:
        """Start with no calls and no canned responses."""
        self.calls: list[dict[str, Any]] = []
        self.responses: dict[str, tuple[bool, int, str, str]] = {}

    def respond(
        self,
        key: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        *,
        contains: bool = False,
    ) -> None:
        """Answer commands matching *key* with the given result."""
        self.responses[key] = (contains, returncode, stdout, stderr)

    def commands(self) -> list[list[str]]:
        """Return the argument lists seen so far."""
        return [call["args"] for call in self.calls]

    async def __call__(
        self,
        args: Sequence[str],
        *,
        cwd: Path | str | None = None,
        env: Any = None,
        elevated: bool = False,
        check: bool = True,
        input: str | None = None,  # noqa: A002
    ) -> subprocess.CompletedProcess[str]:
        command = [str(part) for part in args]
        self.calls.append({"args": command, "cwd": cwd, "env": env, "elevated": elevated})
        returncode, stdout, stderr = 0, "", ""
        for key, (contains, *response) in self.responses.items():
            if key in command or (contains and any(key in part for part in command)):
                returncode, stdout, stderr = response
                break
        result = subprocess.CompletedProcess(command, returncode, stdout=stdout, stderr=stderr)
        if check and returncode != 0:
            raise shell.command_error(result)
        return result


@pytest.fixture
def shell_recorder(monkeypatch: pytest.MonkeyPatch) -> ShellRecorder:
    """Replace ``ghostctl.shell.run`` with a recorder."""
    recorder = ShellRecorder()
    monkeypatch.setattr("ghostctl.shell.run", recorder)
    return recorder


@pytest.fixture
def settings(tmp_path: Path) -> AppConfig:
    """Return settings rooted in the temporary directory."""
    return load_config(
        tmp_path / "ghostctl.yml",
        env={},
        overrides={
            "global_dir": str(tmp_path / "global"),
            "logs_dir": str(tmp_path / "logs"),
            "start_timeout": 2,
            "systemd": {"unit_dir": str(tmp_path / "units")},
            "nginx": {
                "sites_available": str(tmp_path / "nginx" / "sites-available"),
                "sites_enabled": str(tmp_path / "nginx" / "sites-enabled"),
                "snippets_dir": str(tmp_path / "nginx" / "snippets"),
            },
            "acme": {"home": str(tmp_path / "acme"), "bin": str(tmp_path / "acme" / "acme.sh")},
        },
    )


@pytest.fixture
def ui() -> UI:
    """Return a non-interactive UI writing to an in-memory console."""
    return UI(allow_prompt=False, console=Console(record=True, width=200))


@pytest.fixture
def system(ui: UI, settings: AppConfig) -> System:
    """Return a system without any extensions."""
    return System(ui, settings, extensions=[])


@pytest.fixture
def instance_dir(tmp_path: Path) -> Path:
    """Return an empty directory for one instance."""
    directory = tmp_path / "site"
    directory.mkdir()
    return directory


@pytest.fixture
def instance(system: System, instance_dir: Path) -> Instance:
    """Return the instance rooted at ``instance_dir``."""
    return system.get_instance(instance_dir)


def _write_config(
    instance: Instance,
    values: dict[str, Any],
    environment: str = "production",
) -> None:
    ConfigStore(instance.config_path(environment)).set(values).save()
    instance.config.reload()


@pytest.fixture
def write_config() -> Any:
    """Return a helper writing an application config for an instance."""
    return _write_config


@pytest.fixture
def run_context(ui: UI, system: System, instance: Instance) -> RunContext:
    """Return a run context for the fixture instance."""
    return RunContext(ui=ui, system=system, instance=instance)
