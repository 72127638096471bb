"""Options that write the instance's application config.

Each option is resolved from, in order: an explicit command-line value, the
value already in the config (kept as is), an interactive prompt, a default.
"""
from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from ..errors import ConfigError
from ..instance import ENVIRONMENTS, config_file_name
from ..ports import DEFAULT_BASE_PORT, find_free_port
from ..store import ConfigStore

if TYPE_CHECKING:
    from .models import RunContext, TaskHandle

DATABASE_CLIENTS = ("mysql", "sqlite3")


@dataclass(frozen=True, slots=True)
class ConfigOption:
    """One configurable key and how to obtain its value."""

    name: str
    key: str
    description: str
    default: Callable[[RunContext], Any] | None = None
    prompt: str | None = None
    password: bool = False
    applies: Callable[[RunContext], bool] | None = None
    transform: Callable[[RunContext, Any], Any] | None = None

    def is_applicable(self, ctx: RunContext) -> bool:
        """Return whether the option is relevant for this instance."""
        return self.applies is None or self.applies(ctx)


def _is_local(ctx: RunContext) -> bool:
    return ctx.local or ctx.system.development


def _uses_mysql(ctx: RunContext) -> bool:
    return ctx.instance.config.get("database.client") == "mysql"


def _uses_sqlite(ctx: RunContext) -> bool:
    return ctx.instance.config.get("database.client") == "sqlite3"


def validate_url(value: Any, *, key: str = "url") -> str:
    """Return *value* when it is an absolute http(s) URL, else raise ``ConfigError``."""
    text = str(value).strip()
    parsed = urlparse(text)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        raise ConfigError(
            f"Invalid URL '{text}'; it must start with http:// or https:// and include a host.",
            config_key=key,
            config_value=text,
        )
    try:
        parsed.port  # noqa: B018 - raises ValueError for out-of-range ports
    except ValueError as exc:
        raise ConfigError(
            f"Invalid port in URL '{text}'.", config_key=key, config_value=text
        ) from exc
    return text


def validate_port(value: Any, *, key: str = "server.port") -> int:
    """Return *value* as a TCP port number, else raise ``ConfigError``."""
    try:
        port = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(
            f"Port '{value}' is not a number.", config_key=key, config_value=value
        ) from exc
    if not 1 <= port <= 65535:
        raise ConfigError(
            f"Port {port} is out of range (1-65535).",
            config_key=key,
            config_value=value,
        )
    return port


def _validate_client(value: Any) -> str:
    client = str(value).strip()
    if client not in DATABASE_CLIENTS:
        raise ConfigError(
            f"Unsupported database client '{client}'; use one of {', '.join(DATABASE_CLIENTS)}.",
            config_key="database.client",
            config_value=client,
        )
    return client


def reserved_ports(ctx: RunContext) -> set[int]:
    """Return ports configured by other registered instances."""
    ports: set[int] = set()
    for entry in ctx.system.registry().values():
        cwd = entry.get("cwd") if isinstance(entry, Mapping) else None
        if not cwd or Path(cwd) == ctx.instance.dir:
            continue
        for environment in ENVIRONMENTS:
            path = Path(cwd) / config_file_name(environment)
            if not ConfigStore.exists(path):
                continue
            port = ConfigStore(path).get("server.port")
            if isinstance(port, int):
                ports.add(port)
    return ports


def _default_port(ctx: RunContext) -> int:
    return find_free_port(DEFAULT_BASE_PORT, reserved=reserved_ports(ctx))


def _default_process(ctx: RunContext) -> str:
    return "local" if _is_local(ctx) else "systemd"


def _default_client(ctx: RunContext) -> str:
    return "sqlite3" if _is_local(ctx) else "mysql"


def _default_db_path(ctx: RunContext) -> str:
    filename = "ghost-local.db" if ctx.system.development else "ghost.db"
    return str(ctx.instance.dir / "content" / "data" / filename)


def _default_db_name(ctx: RunContext) -> str:
    suffix = "dev" if ctx.system.development else "prod"
    return f"{ctx.instance.name.replace('-', '_')}_{suffix}"


OPTIONS: tuple[ConfigOption, ...] = (
    ConfigOption(
        name="url",
        key="url",
        description="Site/Blog URL",
        default=lambda ctx: f"http://localhost:{DEFAULT_BASE_PORT}",
        prompt="Enter your blog URL:",
        transform=lambda ctx, value: validate_url(value),
    ),
    ConfigOption(
        name="admin-url",
        key="admin.url",
        description="Root of the admin client, when served from a different host",
        transform=lambda ctx, value: validate_url(value, key="admin.url"),
    ),
    ConfigOption(
        name="port",
        key="server.port",
        description="Port Ghost should listen on",
        default=_default_port,
        transform=lambda ctx, value: validate_port(value),
    ),
    ConfigOption(
        name="ip",
        key="server.host",
        description="IP Ghost should listen on",
        default=lambda ctx: "127.0.0.1",
    ),
    ConfigOption(
        name="db",
        key="database.client",
        description="Type of database Ghost should use",
        default=_default_client,
        transform=lambda ctx, value: _validate_client(value),
    ),
    ConfigOption(
        name="dbpath",
        key="database.connection.filename",
        description="Database file location (sqlite3 only)",
        default=_default_db_path,
        applies=_uses_sqlite,
    ),
    ConfigOption(
        name="dbhost",
        key="database.connection.host",
        description="Database host",
        default=lambda ctx: "localhost",
        prompt="Enter your MySQL hostname:",
        applies=_uses_mysql,
    ),
    ConfigOption(
        name="dbuser",
        key="database.connection.user",
        description="Database username",
        prompt="Enter your MySQL username:",
        applies=_uses_mysql,
    ),
    ConfigOption(
        name="dbpass",
        key="database.connection.password",
        description="Database password",
        default=lambda ctx: "",
        prompt="Enter your MySQL password:",
        password=True,
        applies=_uses_mysql,
    ),
    ConfigOption(
        name="dbname",
        key="database.connection.database",
        description="Database name",
        default=_default_db_name,
        prompt="Enter your Ghost database name:",
        applies=_uses_mysql,
    ),
    ConfigOption(
        name="mail",
        key="mail.transport",
        description="Mail transport, e.g. SMTP, Sendmail or Direct",
        default=lambda ctx: "Direct",
    ),
    ConfigOption(
        name="process",
        key="process",
        description="Type of process manager to run Ghost with",
        default=_default_process,
    ),
)

DEFAULT_LOG_TRANSPORTS = ("file", "stdout")


def option_names() -> list[str]:
    """Return the names accepted as ``--<name>`` options."""
    return [option.name for option in OPTIONS]


def options_given(argv: Mapping[str, Any]) -> bool:
    """Return True when any configure option was passed explicitly."""
    return any(argv.get(option.name) is not None for option in OPTIONS)


def _resolve(option: ConfigOption, ctx: RunContext) -> Any:
    explicit = ctx.argv.get(option.name)
    if explicit is not None:
        return explicit
    config = ctx.instance.config
    if config.has(option.key):
        return None
    default = option.default(ctx) if option.default is not None else None
    if option.prompt and ctx.ui.allow_prompt:
        default_text = None if default is None else str(default)
        return ctx.ui.prompt(option.prompt, default=default_text, password=option.password)
    return default


async def configure(ctx: RunContext, handle: TaskHandle | None = None) -> None:
    """Apply every applicable option to the active config and save it."""
    config = ctx.instance.config
    for option in OPTIONS:
        if not option.is_applicable(ctx):
            continue
        value = _resolve(option, ctx)
        if value is None:
            continue
        if option.transform is not None:
            value = option.transform(ctx, value)
        config.set(option.key, value)

    if not config.has("logging.transports"):
        config.set("logging.transports", list(DEFAULT_LOG_TRANSPORTS))
    if not config.has("paths.contentPath"):
        config.set("paths.contentPath", str(ctx.instance.dir / "content"))
    config.save()


async def skip_configure(ctx: RunContext) -> bool | str:
    """Skip when a config already exists and no option was passed."""
    if ctx.instance.has_config() and not options_given(ctx.argv):
        return "Configuration already exists"
    return False


__all__ = [
    "OPTIONS",
    "ConfigOption",
    "configure",
    "option_names",
    "options_given",
    "reserved_ports",
    "skip_configure",
    "validate_port",
    "validate_url",
]
