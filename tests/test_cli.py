"""Tests for the ghostctl command line interface."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console
from typer.testing import CliRunner

from ghostctl import __version__
from ghostctl.cli import RuntimeContext, app
from ghostctl.config import AppConfig
from ghostctl.instance import Instance
from ghostctl.logging import StructuredLogger
from ghostctl.store import ConfigStore
from ghostctl.system import System
from ghostctl.ui import UI

runner = CliRunner()


@pytest.fixture(autouse=True)
def wide_console(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep command output on one line per row."""
    monkeypatch.setattr("ghostctl.cli.console", Console(width=200))


@pytest.fixture(autouse=True)
def non_root(monkeypatch: pytest.MonkeyPatch) -> None:
    """Run every command as an ordinary user unless a test says otherwise."""
    monkeypatch.setattr("ghostctl.cli.os.geteuid", lambda: 1000)


@pytest.fixture
def runtime(settings: AppConfig, ui: UI, system: System, instance_dir: Path) -> RuntimeContext:
    """Return a runtime rooted at the fixture instance directory."""
    return RuntimeContext(
        settings=settings,
        logger=StructuredLogger(settings.logs_dir),
        ui=ui,
        system=system,
        directory=instance_dir.resolve(),
    )


@pytest.fixture
def installed(instance: Instance) -> Instance:
    """Mark the fixture instance as an installation of Ghost 5.1.0."""
    instance.version = "5.1.0"
    return instance


def _invoke(runtime: RuntimeContext, *args: str) -> Any:
    return runner.invoke(app, list(args), obj=runtime)


def _operations(runtime: RuntimeContext) -> list[dict[str, Any]]:
    lines = runtime.logger.path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_version_reports_tool_version(runtime: RuntimeContext) -> None:
    """The version command works outside an installation and is logged."""
    result = _invoke(runtime, "version")

    assert result.exit_code == 0
    assert f"ghostctl version: {__version__}" in result.stdout
    assert "Ghost version" not in result.stdout
    (record,) = _operations(runtime)
    assert record["operation"] == "version"
    assert record["result"]["status"] == "success"


def test_version_includes_installed_ghost(runtime: RuntimeContext, installed: Instance) -> None:
    """Inside an installation the active Ghost version is shown too."""
    result = _invoke(runtime, "version")

    assert result.exit_code == 0
    assert f"Ghost version: 5.1.0 (at {installed.dir})" in result.stdout


def test_ls_without_instances(runtime: RuntimeContext) -> None:
    """An empty registry is reported, not tabulated."""
    result = _invoke(runtime, "ls")

    assert result.exit_code == 0
    assert "No installed Ghost instances found" in runtime.ui.console.export_text()


def test_ls_lists_registered_instances(
    runtime: RuntimeContext,
    system: System,
    installed: Instance,
) -> None:
    """Registered instances are listed with their version and state."""
    system.add_instance(installed)

    result = _invoke(runtime, "ls")

    assert result.exit_code == 0
    assert "5.1.0" in result.stdout
    assert "stopped" in result.stdout
    assert installed.name in result.stdout


def test_config_set_and_get(
    runtime: RuntimeContext,
    installed: Instance,
    write_config: Any,
) -> None:
    """Values are coerced on set and printed as text or JSON on get."""
    write_config(installed, {"url": "https://blog.example", "server": {"host": "127.0.0.1"}})

    result = _invoke(runtime, "config", "server.port", "2400")
    assert result.exit_code == 0, result.stdout
    assert "Set server.port." in runtime.ui.console.export_text()
    stored = ConfigStore(installed.config_path("production"))
    assert stored.get("server.port") == 2400

    result = _invoke(runtime, "config", "url")
    assert result.stdout.strip() == "https://blog.example"

    installed.config.reload()
    result = _invoke(runtime, "config", "server")
    assert json.loads(result.stdout) == {"host": "127.0.0.1", "port": 2400}


def test_commands_require_an_installation(runtime: RuntimeContext) -> None:
    """Instance commands refuse to run outside a Ghost directory."""
    result = _invoke(runtime, "start")

    assert result.exit_code == 1
    assert "not a recognisable Ghost installation" in runtime.ui.console.export_text()
    (record,) = _operations(runtime)
    assert record["operation"] == "start"
    assert record["result"]["status"] == "error"
    assert record["result"]["rc"] == 1


def test_stop_when_already_stopped(runtime: RuntimeContext, installed: Instance) -> None:
    """Stopping a stopped instance is a no-op."""
    result = _invoke(runtime, "stop")

    assert result.exit_code == 0
    assert "Ghost (site) is already stopped." in runtime.ui.console.export_text()
    assert _operations(runtime)[-1]["result"]["changed"] == 0


def test_setup_rejects_unknown_options(runtime: RuntimeContext, installed: Instance) -> None:
    """Only --no-setup-<step> flags are accepted beyond the declared options."""
    result = _invoke(runtime, "setup", "--bogus")

    assert result.exit_code == 1
    assert "Unknown option: --bogus" in runtime.ui.console.export_text()


def test_setup_honours_disabled_steps(
    runtime: RuntimeContext,
    system: System,
    installed: Instance,
) -> None:
    """Disabled steps are declined and recorded in the operation log."""
    result = _invoke(runtime, "setup", "--no-setup-config", "--no-start")

    assert result.exit_code == 0, runtime.ui.console.export_text()
    assert installed.name in system.registry()
    record = _operations(runtime)[-1]
    assert record["args"]["extra"] == ["--no-setup-config"]
    declined = {"step": "config", "status": "declined", "detail": "disabled with --no-setup-config"}
    assert declined in record["steps"]
    assert {"step": "instance", "status": "completed"} in record["steps"]


def test_setup_stages_option_selects_steps(runtime: RuntimeContext, installed: Instance) -> None:
    """``--stages`` runs only the listed steps; the rest are not selected."""
    result = _invoke(runtime, "setup", "--stages=start", "--no-start")

    assert result.exit_code == 0, runtime.ui.console.export_text()
    record = _operations(runtime)[-1]
    assert record["args"]["stages"] == ["start"]
    assert record["args"]["extra"] == []
    steps = {step["step"]: step for step in record["steps"]}
    assert steps["start"] == {
        "step": "start",
        "status": "skipped",
        "detail": "disabled with --no-start",
    }
    others = [step for step_id, step in steps.items() if step_id != "start"]
    assert others
    assert all(step["status"] == "declined" for step in others)
    assert all(step["detail"] == "not selected" for step in others)


def test_setup_stages_option_accepts_lists(runtime: RuntimeContext, installed: Instance) -> None:
    """Comma-separated and repeated ``--stages`` values merge with positional stages."""
    result = _invoke(
        runtime, "setup", "config", "--stages", "instance,start", "--stages", "config", "--no-start"
    )

    assert result.exit_code == 0, runtime.ui.console.export_text()
    assert _operations(runtime)[-1]["args"]["stages"] == ["config", "instance", "start"]


def test_setup_local_defaults(
    runtime: RuntimeContext,
    system: System,
    installed: Instance,
    instance_dir: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """``--local`` fills in the local URL and process manager; ``--pname`` names the site."""
    monkeypatch.setenv("NODE_ENV", "production")

    result = _invoke(runtime, "setup", "--local", "--no-start", "--pname", "my.blog")

    assert result.exit_code == 0, runtime.ui.console.export_text()
    config = json.loads((instance_dir / "config.development.json").read_text(encoding="utf-8"))
    assert config["url"] == "http://localhost:2368/"
    assert config["process"] == "local"
    assert config["database"]["client"] == "sqlite3"
    assert "my-blog" in system.registry()


def test_doctor_outside_installation_warns(runtime: RuntimeContext) -> None:
    """Instance probes warn, and warnings do not fail the command."""
    result = _invoke(runtime, "doctor", "instance")

    assert result.exit_code == 0
    assert "WARN" in result.stdout
    assert _operations(runtime)[-1]["result"]["status"] == "warning"


def test_doctor_rejects_unknown_category(runtime: RuntimeContext) -> None:
    """Unknown categories are an error."""
    result = _invoke(runtime, "doctor", "nope")

    assert result.exit_code == 1
    assert "Unknown doctor categories" in result.stdout


def test_doctor_fails_on_red_probe(runtime: RuntimeContext, installed: Instance) -> None:
    """A missing config file fails the instance checks."""
    result = _invoke(runtime, "doctor", "instance", "--json")

    assert result.exit_code == 1
    payload = json.loads(result.stdout)
    assert payload["summary"]["status"] == "red"
    statuses = {entry["id"]: entry["status"] for entry in payload["results"]}
    assert statuses["instance-config"] == "red"


def test_named_instance_must_be_registered(runtime: RuntimeContext) -> None:
    """Instance names are looked up in the global registry."""
    result = _invoke(runtime, "restart", "nope")

    assert result.exit_code == 1
    assert "Ghost instance 'nope' does not exist" in runtime.ui.console.export_text()


def test_stop_by_name_uses_registry(
    runtime: RuntimeContext,
    system: System,
    installed: Instance,
) -> None:
    """A registered name selects the instance regardless of the working directory."""
    system.add_instance(installed)
    runtime.directory = installed.dir.parent

    result = _invoke(runtime, "stop", installed.name)

    assert result.exit_code == 0
    assert f"Ghost ({installed.name}) is already stopped." in runtime.ui.console.export_text()


def test_root_user_is_refused(
    runtime: RuntimeContext,
    installed: Instance,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Lifecycle commands refuse to run as root."""
    monkeypatch.setattr("ghostctl.cli.os.geteuid", lambda: 0)

    result = _invoke(runtime, "start")

    assert result.exit_code == 1
    assert "Can't run command as 'root' user." in runtime.ui.console.export_text()


def test_root_user_may_inspect(runtime: RuntimeContext, monkeypatch: pytest.MonkeyPatch) -> None:
    """Read-only commands are allowed for root."""
    monkeypatch.setattr("ghostctl.cli.os.geteuid", lambda: 0)

    assert _invoke(runtime, "version").exit_code == 0
    assert _invoke(runtime, "ls").exit_code == 0
