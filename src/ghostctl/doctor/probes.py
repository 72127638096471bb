"""Probe registration entry point for the doctor command."""

from __future__ import annotations

import os
import platform
import shutil
import sys
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from .. import __version__
from ..errors import ConfigError
from ..node_runtime import detect_node_version
from ..process.base import ProcessManager
from ..service_accounts import owned_by
from ..store import ConfigStore
from ..tasks.configure import validate_port, validate_url
from .models import (
    PROBE_CATEGORY_VALUES,
    ProbeCategory,
    ProbeContext,
    ProbeDefinition,
    ProbeResult,
    ProbeStatus,
)


def collect_probes(categories: Sequence[str] = ()) -> Sequence[ProbeDefinition]:
    """Return the probes to run, optionally restricted to *categories*."""
    unknown = sorted(set(categories) - set(PROBE_CATEGORY_VALUES))
    if unknown:
        raise ValueError(f"Unknown doctor categories: {', '.join(unknown)}")
    probes: list[ProbeDefinition] = []
    probes.extend(_env_probes())
    probes.extend(_system_probes())
    probes.extend(_instance_probes())
    probes.extend(_process_probes())
    if categories:
        probes = [probe for probe in probes if probe.category in categories]
    return tuple(probes)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_probe(
    probe_id: str,
    category: ProbeCategory,
    handler: Callable[[ProbeContext], ProbeResult],
) -> ProbeDefinition:
    return ProbeDefinition(id=probe_id, category=category, run=handler)


def _command_exists(command: str) -> bool:
    path = Path(command)
    if path.is_absolute():
        return path.exists() and os.access(path, os.X_OK)
    resolved = shutil.which(command)
    return resolved is not None and os.access(resolved, os.X_OK)


def _result(
    probe_id: str,
    category: ProbeCategory,
    status: ProbeStatus,
    message: str,
    *,
    remediation: str | None = None,
    data: Mapping[str, object] | None = None,
) -> ProbeResult:
    return ProbeResult(
        id=probe_id,
        category=category,
        status=status,
        message=message,
        remediation=remediation,
        data=data,
    )


def _no_instance(probe_id: str, category: ProbeCategory) -> ProbeResult:
    return _result(
        probe_id,
        category,
        ProbeStatus.YELLOW,
        "No Ghost installation found in this directory; check skipped.",
    )


# ---------------------------------------------------------------------------
# Environment probes
# ---------------------------------------------------------------------------


def _env_probes() -> Sequence[ProbeDefinition]:
    return (
        _make_probe("env-python", "env", _probe_env_python),
        _make_probe("env-node", "env", _probe_env_node),
        _make_probe("env-npm", "env", _probe_env_npm),
    )


def _probe_env_python(_context: ProbeContext) -> ProbeResult:
    version = platform.python_version()
    return _result(
        "env-python",
        "env",
        ProbeStatus.GREEN,
        f"Python {version} running ghostctl {__version__}.",
        data={"executable": sys.executable, "version": version},
    )


def _probe_env_node(context: ProbeContext) -> ProbeResult:
    info = detect_node_version(context.system.settings.node_bin)
    if info is None:
        return _result(
            "env-node",
            "env",
            ProbeStatus.RED,
            "Node.js was not found.",
            remediation="Install a supported Node.js release and make sure `node` is on PATH.",
        )
    return _result(
        "env-node",
        "env",
        ProbeStatus.GREEN,
        f"Node.js {info.version} detected.",
        data={"version": info.version},
    )


def _probe_env_npm(context: ProbeContext) -> ProbeResult:
    npm_bin = context.system.settings.npm_bin
    if _command_exists(npm_bin):
        return _result("env-npm", "env", ProbeStatus.GREEN, f"Binary '{npm_bin}' available.")
    return _result(
        "env-npm",
        "env",
        ProbeStatus.RED,
        f"Required binary '{npm_bin}' not found on PATH.",
        remediation="npm ships with Node.js; reinstall Node.js or set npm_bin.",
    )


# ---------------------------------------------------------------------------
# System probes
# ---------------------------------------------------------------------------


def _system_probes() -> Sequence[ProbeDefinition]:
    return (
        _make_probe("system-linux", "system", _probe_system_linux),
        _make_probe("system-systemd", "system", _probe_system_systemd),
        _make_probe("system-user", "system", _probe_system_user),
    )


def _probe_system_linux(_context: ProbeContext) -> ProbeResult:
    name = platform.system()
    if name == "Linux":
        message = f"Platform: {platform.platform()}"
        return _result("system-linux", "system", ProbeStatus.GREEN, message)
    return _result(
        "system-linux",
        "system",
        ProbeStatus.YELLOW,
        f"Platform {name} is only supported for local installs.",
    )


def _probe_system_systemd(context: ProbeContext) -> ProbeResult:
    systemctl = context.system.settings.systemd.systemctl_bin
    if _command_exists(systemctl):
        return _result("system-systemd", "system", ProbeStatus.GREEN, "systemd is available.")
    return _result(
        "system-systemd",
        "system",
        ProbeStatus.YELLOW,
        "systemd was not found; only the local process manager can be used.",
    )


def _probe_system_user(_context: ProbeContext) -> ProbeResult:
    if os.geteuid() != 0:
        return _result("system-user", "system", ProbeStatus.GREEN, "Not running as root.")
    return _result(
        "system-user",
        "system",
        ProbeStatus.RED,
        "ghostctl is running as root.",
        remediation=(
            "Run ghostctl as a regular user with sudo rights; "
            "it elevates single commands itself."
        ),
    )


# ---------------------------------------------------------------------------
# Instance probes
# ---------------------------------------------------------------------------


def _instance_probes() -> Sequence[ProbeDefinition]:
    return (
        _make_probe("instance-config", "instance", _probe_instance_config),
        _make_probe("instance-registry", "instance", _probe_instance_registry),
        _make_probe("instance-content", "instance", _probe_instance_content),
    )


def _probe_instance_config(context: ProbeContext) -> ProbeResult:
    instance = context.instance
    if instance is None:
        return _no_instance("instance-config", "instance")
    path = instance.config_path()
    if not ConfigStore.exists(path):
        return _result(
            "instance-config",
            "instance",
            ProbeStatus.RED,
            f"Config file {path.name} is missing.",
            remediation="Run `ghostctl setup config` to create it.",
        )
    try:
        config = ConfigStore(path)
        validate_url(config.get("url"))
        validate_port(config.get("server.port"))
        if config.get("database.client") not in ("mysql", "sqlite3"):
            raise ConfigError(
                "Unsupported database client.",
                config_key="database.client",
                config_value=config.get("database.client"),
            )
    except ConfigError as exc:
        return _result(
            "instance-config",
            "instance",
            ProbeStatus.RED,
            f"{path.name}: {exc.message}",
            remediation=exc.help,
        )
    return _result("instance-config", "instance", ProbeStatus.GREEN, f"{path.name} is valid.")


def _probe_instance_registry(context: ProbeContext) -> ProbeResult:
    instance = context.instance
    if instance is None:
        return _no_instance("instance-registry", "instance")
    if instance.is_setup:
        return _result(
            "instance-registry",
            "instance",
            ProbeStatus.GREEN,
            f"Instance '{instance.name}' is registered.",
        )
    return _result(
        "instance-registry",
        "instance",
        ProbeStatus.YELLOW,
        f"Instance '{instance.name}' is not in the global registry.",
        remediation="Run `ghostctl setup instance` to register it.",
    )


def _probe_instance_content(context: ProbeContext) -> ProbeResult:
    instance = context.instance
    if instance is None:
        return _no_instance("instance-content", "instance")
    content = instance.dir / "content"
    if not content.exists():
        return _result(
            "instance-content",
            "instance",
            ProbeStatus.RED,
            "The content folder is missing.",
            remediation="Restore the content folder from a backup.",
        )
    if instance.process_name != "systemd":
        return _result("instance-content", "instance", ProbeStatus.GREEN, "Content folder present.")
    user = context.system.settings.system_user
    if owned_by(content, user):
        return _result(
            "instance-content",
            "instance",
            ProbeStatus.GREEN,
            f"Content folder is owned by '{user}'.",
        )
    return _result(
        "instance-content",
        "instance",
        ProbeStatus.RED,
        f"Content folder is not owned by '{user}'.",
        remediation=f"Run `sudo chown -R {user}:{user} {content}`.",
    )


# ---------------------------------------------------------------------------
# Process probes
# ---------------------------------------------------------------------------


def _process_probes() -> Sequence[ProbeDefinition]:
    return (_make_probe("process-manager", "process", _probe_process_manager),)


def _probe_process_manager(context: ProbeContext) -> ProbeResult:
    instance = context.instance
    if instance is None:
        return _no_instance("process-manager", "process")
    name = instance.process_name
    if name == "local":
        return _result(
            "process-manager", "process", ProbeStatus.GREEN, "Using the local process manager."
        )
    candidate = context.system.process_managers().get(name)
    problem: str | None = None
    if candidate is None:
        problem = f"Process manager '{name}' is not provided by any extension."
    elif ProcessManager.is_valid(candidate) is not True:
        problem = f"Process manager '{name}' is not a valid process manager."
    elif not candidate.will_run():
        problem = f"Process manager '{name}' cannot run on this system."
    if problem is None:
        return _result(
            "process-manager",
            "process",
            ProbeStatus.GREEN,
            f"Process manager '{name}' is available.",
        )
    return _result(
        "process-manager",
        "process",
        ProbeStatus.YELLOW,
        f"{problem} Ghost will be run by the local process manager.",
        remediation="Run `ghostctl config process local` or install the missing extension.",
    )
