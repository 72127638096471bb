"""Tests for the built-in doctor probes."""

from __future__ import annotations

from typing import Any

import pytest

from ghostctl.doctor import ProbeContext, ProbeStatus, collect_probes
from ghostctl.doctor import probes as doctor_probes
from ghostctl.instance import Instance
from ghostctl.node_runtime import NodeVersionInfo
from ghostctl.system import System

VALID_CONFIG = {
    "url": "https://blog.example",
    "server": {"host": "127.0.0.1", "port": 2368},
    "database": {"client": "sqlite3"},
}


def _probe(probe_id: str) -> Any:
    (probe,) = [probe for probe in collect_probes() if probe.id == probe_id]
    return probe.run


def test_collect_probes_ids_and_categories() -> None:
    """Every category contributes probes in a stable order."""
    assert [probe.id for probe in collect_probes()] == [
        "env-python",
        "env-node",
        "env-npm",
        "system-linux",
        "system-systemd",
        "system-user",
        "instance-config",
        "instance-registry",
        "instance-content",
        "process-manager",
    ]
    assert {probe.category for probe in collect_probes(["instance"])} == {"instance"}


def test_collect_probes_rejects_unknown_category() -> None:
    """Typos in category filters are errors."""
    with pytest.raises(ValueError, match="Unknown doctor categories: nope"):
        collect_probes(["env", "nope"])


@pytest.mark.parametrize(
    "probe_id",
    ["instance-config", "instance-registry", "instance-content", "process-manager"],
)
def test_instance_probes_warn_without_instance(system: System, probe_id: str) -> None:
    """Outside an installation the instance checks are skipped with a warning."""
    result = _probe(probe_id)(ProbeContext(system=system, instance=None))

    assert result.status is ProbeStatus.YELLOW
    assert "No Ghost installation" in result.message


def test_env_node_reports_missing_binary(system: System, monkeypatch: pytest.MonkeyPatch) -> None:
    """A missing Node.js is a failure."""
    monkeypatch.setattr(doctor_probes, "detect_node_version", lambda node_bin: None)

    result = _probe("env-node")(ProbeContext(system=system, instance=None))

    assert result.status is ProbeStatus.RED
    assert result.remediation is not None


def test_env_node_reports_version(system: System, monkeypatch: pytest.MonkeyPatch) -> None:
    """A detected Node.js is reported with its version."""
    monkeypatch.setattr(
        doctor_probes,
        "detect_node_version",
        lambda node_bin: NodeVersionInfo("v20.11.0", "20.11.0", 20, 11, 0),
    )

    result = _probe("env-node")(ProbeContext(system=system, instance=None))

    assert result.status is ProbeStatus.GREEN
    assert result.data == {"version": "20.11.0"}


def test_env_npm_checks_path(system: System, monkeypatch: pytest.MonkeyPatch) -> None:
    """npm must resolve on PATH."""
    context = ProbeContext(system=system, instance=None)
    monkeypatch.setattr(doctor_probes.shutil, "which", lambda command: None)

    assert _probe("env-npm")(context).status is ProbeStatus.RED


def test_instance_config_missing_file(system: System, instance: Instance) -> None:
    """A missing config file is red."""
    result = _probe("instance-config")(ProbeContext(system=system, instance=instance))

    assert result.status is ProbeStatus.RED
    assert "config.production.json is missing" in result.message


@pytest.mark.parametrize(
    ("override", "fragment"),
    [
        ({"url": "blog.example"}, "url"),
        ({"server": {"port": "abc"}}, "port"),
        ({"database": {"client": "postgres"}}, "Unsupported database client"),
    ],
)
def test_instance_config_invalid_values(
    system: System,
    instance: Instance,
    write_config: Any,
    override: dict[str, Any],
    fragment: str,
) -> None:
    """Invalid values are reported red with the failing setting."""
    write_config(instance, VALID_CONFIG)
    write_config(instance, override)

    result = _probe("instance-config")(ProbeContext(system=system, instance=instance))

    assert result.status is ProbeStatus.RED
    assert fragment.lower() in result.message.lower()


def test_instance_config_valid(system: System, instance: Instance, write_config: Any) -> None:
    """A complete config is green."""
    write_config(instance, VALID_CONFIG)

    result = _probe("instance-config")(ProbeContext(system=system, instance=instance))

    assert result.status is ProbeStatus.GREEN


def test_instance_registry(system: System, instance: Instance) -> None:
    """Unregistered instances are a warning until set up."""
    context = ProbeContext(system=system, instance=instance)
    assert _probe("instance-registry")(context).status is ProbeStatus.YELLOW

    system.add_instance(instance)
    assert _probe("instance-registry")(context).status is ProbeStatus.GREEN


def test_instance_content(
    system: System,
    instance: Instance,
    write_config: Any,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """The content folder must exist; systemd installs also need the service user to own it."""
    context = ProbeContext(system=system, instance=instance)
    assert _probe("instance-content")(context).status is ProbeStatus.RED

    (instance.dir / "content").mkdir()
    assert _probe("instance-content")(context).status is ProbeStatus.GREEN

    write_config(instance, {"process": "systemd"})
    monkeypatch.setattr(doctor_probes, "owned_by", lambda path, user: False)
    result = _probe("instance-content")(context)
    assert result.status is ProbeStatus.RED
    assert "chown" in (result.remediation or "")


def test_process_manager_probe(system: System, instance: Instance, write_config: Any) -> None:
    """Unknown managers warn that the local manager will be used."""
    context = ProbeContext(system=system, instance=instance)
    assert _probe("process-manager")(context).status is ProbeStatus.GREEN

    write_config(instance, {"process": "supervisor"})
    result = _probe("process-manager")(context)

    assert result.status is ProbeStatus.YELLOW
    assert "not provided by any extension" in result.message


def test_system_user_flags_root(system: System, monkeypatch: pytest.MonkeyPatch) -> None:
    """Running as root is a failure."""
    monkeypatch.setattr(doctor_probes.os, "geteuid", lambda: 0)

    result = _probe("system-user")(ProbeContext(system=system, instance=None))

    assert result.status is ProbeStatus.RED


def test_system_linux_warns_elsewhere(system: System, monkeypatch: pytest.MonkeyPatch) -> None:
    """Non-Linux platforms only support local installs."""
    monkeypatch.setattr(doctor_probes.platform, "system", lambda: "Darwin")

    result = _probe("system-linux")(ProbeContext(system=system, instance=None))

    assert result.status is ProbeStatus.YELLOW

