"""Settings for ghostctl itself.

These are the tool's own settings, distinct from the per-instance
``config.<env>.json`` files managed through :class:`ghostctl.store.ConfigStore`.
Sources are layered, later ones winning:

1. The dataclass defaults below.
2. ``~/.ghost/ghostctl.yml`` (or the path in ``GHOSTCTL_CONFIG_FILE``).
3. Environment variables prefixed with ``GHOSTCTL_``.
4. Explicit overrides supplied programmatically.

Environment keys use double underscores to reach into a section::

    export GHOSTCTL_START_TIMEOUT=120
    export GHOSTCTL_NGINX__NGINX_BIN=/usr/local/sbin/nginx

Environment values go through ``yaml.safe_load`` so numbers and booleans
come out typed.
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

ENV_PREFIX = "GHOSTCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
DEFAULT_CONFIG_FILE = "~/.ghost/ghostctl.yml"
# Used by the CLI and the local process manager for other purposes.
RESERVED_ENV_KEYS = frozenset({CONFIG_ENV_VAR, f"{ENV_PREFIX}STARTUP_SOCKET"})


@dataclass(frozen=True)
class SystemdConfig:
    unit_dir: Path = Path("/lib/systemd/system")
    systemctl_bin: str = "systemctl"


@dataclass(frozen=True)
class NginxConfig:
    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    snippets_dir: Path = Path("/etc/nginx/snippets")
    nginx_bin: str = "nginx"


@dataclass(frozen=True)
class AcmeConfig:
    """Where acme.sh lives; ``bin`` defaults to ``<home>/acme.sh``."""

    home: Path = Path("/etc/letsencrypt")
    bin: Path | None = None


_SECTIONS: dict[str, type] = {
    "systemd": SystemdConfig,
    "nginx": NginxConfig,
    "acme": AcmeConfig,
}


@dataclass(frozen=True)
class AppConfig:
    """Resolved settings for ghostctl."""

    config_file: Path
    global_dir: Path = Path("~/.ghost").expanduser()
    logs_dir: Path | None = None
    templates_dir: Path | None = None
    start_timeout: float = 60.0
    keep_versions: int = 5
    npm_package_name: str = "ghost"
    npm_bin: str = "npm"
    node_bin: str = "node"
    mysql_bin: str = "mysql"
    system_user: str = "ghost"
    systemd: SystemdConfig = field(default_factory=SystemdConfig)
    nginx: NginxConfig = field(default_factory=NginxConfig)
    acme: AcmeConfig = field(default_factory=AcmeConfig)

    def to_dict(self) -> dict[str, object]:
        """Return the settings with paths as strings, ready for JSON."""
        return _plain(asdict(self))  # type: ignore[return-value]


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Merge every settings source into an :class:`AppConfig`."""
    environ = os.environ if env is None else env
    path = Path(config_file or environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILE).expanduser()

    merged: dict[str, Any] = {}
    for layer in (_read_settings_file(path), _from_environment(environ), dict(overrides or {})):
        _merge(merged, layer)
    merged.pop("config_file", None)
    return _build(path, merged)


def _read_settings_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse settings file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"Settings file {path} must contain a mapping at the top level.")
    return dict(data)


def _from_environment(environ: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for key, raw in environ.items():
        if not key.startswith(ENV_PREFIX) or key in RESERVED_ENV_KEYS:
            continue
        path = [part.lower() for part in key[len(ENV_PREFIX):].split("__") if part]
        if not path:
            continue
        node = values
        for part in path[:-1]:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise ConfigError(f"Environment override {key} conflicts with a plain value.")
            node = child
        node[path[-1]] = _parse_scalar(raw)
    return values


def _parse_scalar(raw: str) -> object:
    try:
        return yaml.safe_load(raw.strip())
    except yaml.YAMLError:
        return raw.strip()


def _merge(target: dict[str, Any], layer: Mapping[str, Any]) -> None:
    for key, value in layer.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        elif isinstance(value, Mapping):
            target[key] = {}
            _merge(target[key], value)
        else:
            target[key] = value


def _build(config_file: Path, raw: Mapping[str, Any]) -> AppConfig:
    known = {item.name for item in fields(AppConfig)} - {"config_file"}
    unknown = sorted(str(key) for key in raw if key not in known)
    if unknown:
        raise ConfigError(f"Unknown settings keys: {', '.join(unknown)}.")

    values: dict[str, Any] = {}
    for item in fields(AppConfig):
        if item.name == "config_file" or raw.get(item.name) is None:
            continue
        value = raw[item.name]
        if item.name in _SECTIONS:
            values[item.name] = _section(item.name, value)
        elif item.name == "start_timeout":
            values[item.name] = _positive_float(value, item.name)
        elif item.name == "keep_versions":
            values[item.name] = _integer(value, item.name)
        else:
            values[item.name] = _coerce(item.type, value, item.name)

    config = AppConfig(config_file=config_file, **values)
    if config.keep_versions < 1:
        raise ConfigError("keep_versions must be at least 1.", config_key="keep_versions")
    if config.logs_dir is None:
        config = replace(config, logs_dir=config.global_dir / "logs")
    if config.acme.bin is None:
        config = replace(config, acme=replace(config.acme, bin=config.acme.home / "acme.sh"))
    return config


def _section(name: str, value: object) -> Any:
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {name} to be a mapping. Got {type(value).__name__}.")
    cls = _SECTIONS[name]
    allowed = {item.name: item for item in fields(cls)}
    unknown = sorted(str(key) for key in value if key not in allowed)
    if unknown:
        raise ConfigError(f"Unknown {name} settings keys: {', '.join(unknown)}.")
    return cls(
        **{
            key: _coerce(allowed[key].type, item, f"{name}.{key}")
            for key, item in value.items()
            if item is not None
        }
    )


def _coerce(annotation: object, value: object, label: str) -> object:
    if str(annotation).startswith("Path"):
        if not isinstance(value, (str, os.PathLike)):
            raise ConfigError(f"Expected {label} to be a path. Got {value!r}.")
        return Path(value).expanduser()
    return str(value)


def _integer(value: object, label: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    try:
        return value if isinstance(value, int) else int(str(value), 0)
    except ValueError as exc:
        raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc


def _positive_float(value: object, label: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    if number <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {number}.", config_key=label)
    return number


def _plain(value: object) -> object:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    return value


__all__ = [
    "AcmeConfig",
    "AppConfig",
    "NginxConfig",
    "SystemdConfig",
    "load_config",
]
