"""Typer-powered command line interface for ``ghostctl``.

Every command resolves a :class:`RuntimeContext`, wraps its work in an
operation-log scope and runs the async core through :func:`_execute`, which
turns :class:`~ghostctl.errors.CliError` into a rendered message and exit
code 1.
"""
from __future__ import annotations

import asyncio
import json
import os
import textwrap
from collections.abc import Callable, Coroutine, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, NoReturn, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, load_config
from .doctor import (
    PROBE_CATEGORY_VALUES,
    DoctorEngine,
    DoctorReport,
    ProbeContext,
    ProbeStatus,
    collect_probes,
    serialize_report,
)
from .errors import CliError, ConfigError, SystemRequirementError
from .exit_codes import ExitCode
from .ghost_log import follow, format_line, log_file_path, read_last_lines
from .instance import CLI_CONFIG_FILE, Instance
from .logging import OperationScope, StructuredLogger, configure_console_logging
from .process.runner import run_ghost
from .signals import cleanup_on_exit
from .system import System
from .tasks.configure import configure
from .tasks.install import run_install
from .tasks.migrations import run_cli_migrations
from .tasks.models import RunContext
from .tasks.setup import run_setup
from .tasks.uninstall import run_uninstall
from .tasks.update import run_update
from .ui import UI

console = Console()

T = TypeVar("T")

DISABLE_STEP_PREFIX = "--no-setup-"
LOCAL_URL = "http://localhost:2368/"
LOCAL_PNAME = "ghost-local"
ROOT_ALLOWED_COMMANDS = frozenset({"doctor", "ls", "version"})

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to ghostctl's YAML settings file.",
)
URL_OPTION = typer.Option(None, "--url", help="Site/Blog URL.")
ADMIN_URL_OPTION = typer.Option(None, "--admin-url", help="Root of the admin client.")
PORT_OPTION = typer.Option(None, "--port", help="Port Ghost should listen on.")
IP_OPTION = typer.Option(None, "--ip", help="IP Ghost should listen on.")
DB_OPTION = typer.Option(None, "--db", help="Database client (mysql or sqlite3).")
DBPATH_OPTION = typer.Option(None, "--dbpath", help="Database file location (sqlite3 only).")
DBHOST_OPTION = typer.Option(None, "--dbhost", help="Database host.")
DBUSER_OPTION = typer.Option(None, "--dbuser", help="Database username.")
DBPASS_OPTION = typer.Option(None, "--dbpass", help="Database password.")
DBNAME_OPTION = typer.Option(None, "--dbname", help="Database name.")
MAIL_OPTION = typer.Option(None, "--mail", help="Mail transport, e.g. SMTP, Sendmail or Direct.")
PROCESS_OPTION = typer.Option(None, "--process", help="Process manager to run Ghost with.")
SSLEMAIL_OPTION = typer.Option(None, "--sslemail", help="Email used for the Let's Encrypt account.")
LOCAL_OPTION = typer.Option(False, "--local", help="Use local (development) defaults.")
NO_START_OPTION = typer.Option(False, "--no-start", help="Do not start Ghost afterwards.")
NO_MIGRATE_OPTION = typer.Option(False, "--no-migrate", help="Skip the database migration step.")
STAGES_OPTION = typer.Option(
    None, "--stages", help="Comma-separated steps to run; may be repeated."
)
PNAME_OPTION = typer.Option(None, "--pname", help="Name to register the instance under.")
NAME_ARGUMENT = typer.Argument(
    None, help="Registered instance name (defaults to the working directory)."
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Install, configure and run Ghost instances.

        Run commands from inside an installation directory or point at one
        with --dir.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    settings: AppConfig
    logger: StructuredLogger
    ui: UI
    system: System
    directory: Path
    cleanups: list[Callable[[], None]] = field(default_factory=list)

    def cleanup(self) -> None:
        """Run registered cleanup callbacks, most recent first."""
        while self.cleanups:
            self.cleanups.pop()()

    def instance(self) -> Instance:
        """Return the instance rooted at the working directory."""
        return self.system.get_instance(self.directory)

    def run_context(self, instance: Instance, argv: dict[str, Any] | None = None) -> RunContext:
        """Build the shared context handed to task runs."""
        return RunContext(ui=self.ui, system=self.system, instance=instance, argv=dict(argv or {}))


def _ensure_runtime(
    ctx: typer.Context,
    *,
    config_file: Path | None = None,
    verbose: bool = False,
    development: bool = False,
    prompt: bool = True,
    directory: Path | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    configure_console_logging(verbose)
    ui = UI(verbose=verbose, allow_prompt=prompt, console=console)
    try:
        settings = load_config(config_file=config_file)
    except ConfigError as exc:
        ui.error(exc)
        raise typer.Exit(code=ExitCode.ERROR) from exc
    system = System(ui, settings)
    system.set_environment(development, set_node_env=development)
    runtime = RuntimeContext(
        settings=settings,
        logger=StructuredLogger(settings.logs_dir),
        ui=ui,
        system=system,
        directory=(directory or Path.cwd()).expanduser().resolve(),
    )
    ctx.obj = runtime
    return runtime


def _check_root_user(ui: UI, command: str | None) -> None:
    if command is None or command in ROOT_ALLOWED_COMMANDS or os.geteuid() != 0:
        return
    ui.error(
        SystemRequirementError(
            "Can't run command as 'root' user.",
            help=(
                "Create a regular user with sudo privileges and run ghostctl as that user; "
                "commands that need root use sudo themselves."
            ),
        )
    )
    raise typer.Exit(code=ExitCode.ERROR)


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Show verbose output."),
    development: bool = typer.Option(
        False, "--development", "-D", help="Run in development mode."
    ),
    prompt: bool = typer.Option(
        True, "--prompt/--no-prompt", help="Allow interactive prompts."
    ),
    directory: Path | None = typer.Option(
        None,
        "--dir",
        "-d",
        file_okay=False,
        help="Ghost installation directory (defaults to the current directory).",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    _ensure_runtime(
        ctx,
        config_file=config_file,
        verbose=verbose,
        development=development,
        prompt=prompt,
        directory=directory,
    )
    _check_root_user(_get_runtime(ctx).ui, ctx.invoked_subcommand)
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _command_error(op: OperationScope, message: str, *, rc: int = ExitCode.ERROR) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, rc=rc)
    raise typer.Exit(code=rc)


def _execute(
    runtime: RuntimeContext,
    op: OperationScope,
    work: Callable[[], Coroutine[Any, Any, T]],
) -> T:
    """Run *work* on a fresh event loop, rendering failures for the operator."""
    try:
        with cleanup_on_exit(runtime.cleanup):
            return asyncio.run(work())
    except typer.Exit:
        raise
    except CliError as exc:
        runtime.ui.error(exc, runtime.system)
        op.error(exc.message, rc=ExitCode.ERROR)
        raise typer.Exit(code=ExitCode.ERROR) from exc
    except Exception as exc:  # noqa: BLE001 - any other failure still exits 1
        runtime.ui.error(exc, runtime.system)
        op.error(str(exc) or type(exc).__name__, rc=ExitCode.ERROR)
        raise typer.Exit(code=ExitCode.ERROR) from exc


def _require_install(instance: Instance, command: str) -> None:
    if not (instance.dir / CLI_CONFIG_FILE).exists():
        raise SystemRequirementError(
            "Working directory is not a recognisable Ghost installation.",
            help=(
                f"Run `ghostctl {command}` again from within a Ghost install directory "
                "or pass --dir."
            ),
        )


def _resolve_instance(runtime: RuntimeContext, name: str | None, command: str) -> Instance:
    """Return the instance called *name*, or the one in the working directory."""
    if name is None:
        instance = runtime.instance()
        _require_install(instance, command)
        return instance
    found = runtime.system.get_instance_by_name(name)
    if found is None:
        raise SystemRequirementError(
            f"Ghost instance '{name}' does not exist",
            help="Run `ghostctl ls` to see the registered instances.",
        )
    return found


def _configure_argv(
    *,
    url: str | None,
    admin_url: str | None,
    port: int | None,
    ip: str | None,
    db: str | None,
    dbpath: str | None,
    dbhost: str | None,
    dbuser: str | None,
    dbpass: str | None,
    dbname: str | None,
    mail: str | None,
    process: str | None,
) -> dict[str, Any]:
    values = {
        "url": url,
        "admin-url": admin_url,
        "port": port,
        "ip": ip,
        "db": db,
        "dbpath": dbpath,
        "dbhost": dbhost,
        "dbuser": dbuser,
        "dbpass": dbpass,
        "dbname": dbname,
        "mail": mail,
        "process": process,
    }
    return {key: value for key, value in values.items() if value is not None}


def _apply_local_defaults(argv: dict[str, Any]) -> None:
    argv.setdefault("url", LOCAL_URL)
    argv.setdefault("pname", LOCAL_PNAME)
    argv["process"] = "local"


def _split_stages(values: Sequence[str] | None) -> list[str]:
    return [part.strip() for value in values or [] for part in value.split(",") if part.strip()]


def _parse_disabled_steps(extra_args: Sequence[str]) -> list[str]:
    disabled: list[str] = []
    for arg in extra_args:
        if not arg.startswith(DISABLE_STEP_PREFIX) or len(arg) == len(DISABLE_STEP_PREFIX):
            raise CliError(f"Unknown option: {arg}", help="See `ghostctl setup --help`.")
        disabled.append(arg[len(DISABLE_STEP_PREFIX):])
    return disabled


# ---------------------------------------------------------------------------
# install / setup
# ---------------------------------------------------------------------------


@app.command()
def install(
    ctx: typer.Context,
    version: str | None = typer.Argument(
        None, help="Ghost version to install, or 'local' for a development install."
    ),
    no_setup: bool = typer.Option(False, "--no-setup", help="Only install, do not run setup."),
    local: bool = LOCAL_OPTION,
    no_start: bool = NO_START_OPTION,
    url: str | None = URL_OPTION,
    admin_url: str | None = ADMIN_URL_OPTION,
    port: int | None = PORT_OPTION,
    ip: str | None = IP_OPTION,
    db: str | None = DB_OPTION,
    dbpath: str | None = DBPATH_OPTION,
    dbhost: str | None = DBHOST_OPTION,
    dbuser: str | None = DBUSER_OPTION,
    dbpass: str | None = DBPASS_OPTION,
    dbname: str | None = DBNAME_OPTION,
    mail: str | None = MAIL_OPTION,
    process: str | None = PROCESS_OPTION,
    sslemail: str | None = SSLEMAIL_OPTION,
    pname: str | None = PNAME_OPTION,
) -> None:
    """Install a brand new instance of Ghost."""
    runtime = _get_runtime(ctx)
    if version == "local":
        local = True
        version = None
    argv = _configure_argv(
        url=url, admin_url=admin_url, port=port, ip=ip, db=db, dbpath=dbpath,
        dbhost=dbhost, dbuser=dbuser, dbpass=dbpass, dbname=dbname, mail=mail, process=process,
    )
    argv.update({"version": version, "local": local, "sslemail": sslemail})
    if pname:
        argv["pname"] = pname
    if no_start:
        argv["start"] = False
    if local:
        _apply_local_defaults(argv)
        runtime.system.set_environment(True, set_node_env=True)
        argv.setdefault("start", True)

    with runtime.logger.operation(
        "install",
        args={"version": version, "local": local, "setup": not no_setup},
        target={"kind": "instance", "dir": runtime.directory},
    ) as op:
        async def _work() -> None:
            instance = runtime.instance()
            run_ctx = runtime.run_context(instance, argv)
            await run_install(run_ctx)
            op.add_step("install", detail=run_ctx.state.get("version"))
            if no_setup:
                return
            report = await run_setup(run_ctx)
            for result in report.results:
                op.add_step(result.id, status=result.status.value, detail=result.reason)

        _execute(runtime, op, _work)
        op.success("Ghost installed.", changed=1)


@app.command(context_settings={"allow_extra_args": True, "ignore_unknown_options": True})
def setup(
    ctx: typer.Context,
    stages: list[str] | None = typer.Argument(
        None, help="Run only these steps, e.g. `ghostctl setup nginx ssl`."
    ),
    stage_options: list[str] | None = STAGES_OPTION,
    local: bool = LOCAL_OPTION,
    no_start: bool = NO_START_OPTION,
    no_migrate: bool = NO_MIGRATE_OPTION,
    url: str | None = URL_OPTION,
    admin_url: str | None = ADMIN_URL_OPTION,
    port: int | None = PORT_OPTION,
    ip: str | None = IP_OPTION,
    db: str | None = DB_OPTION,
    dbpath: str | None = DBPATH_OPTION,
    dbhost: str | None = DBHOST_OPTION,
    dbuser: str | None = DBUSER_OPTION,
    dbpass: str | None = DBPASS_OPTION,
    dbname: str | None = DBNAME_OPTION,
    mail: str | None = MAIL_OPTION,
    process: str | None = PROCESS_OPTION,
    sslemail: str | None = SSLEMAIL_OPTION,
    pname: str | None = PNAME_OPTION,
) -> None:
    """Set up an installation of Ghost.

    Individual steps can be turned off with --no-setup-<step>, for example
    --no-setup-ssl.
    """
    runtime = _get_runtime(ctx)
    argv = _configure_argv(
        url=url, admin_url=admin_url, port=port, ip=ip, db=db, dbpath=dbpath,
        dbhost=dbhost, dbuser=dbuser, dbpass=dbpass, dbname=dbname, mail=mail, process=process,
    )
    argv.update({"local": local, "sslemail": sslemail, "no_migrate": no_migrate})
    if pname:
        argv["pname"] = pname
    if no_start:
        argv["start"] = False
    # Unknown flags reach the variadic argument as positional values.
    selected = [stage for stage in stages or [] if not stage.startswith("-")]
    selected += [stage for stage in _split_stages(stage_options) if stage not in selected]
    extra = [*ctx.args, *(stage for stage in stages or [] if stage.startswith("-"))]

    if local:
        _apply_local_defaults(argv)
        runtime.system.set_environment(True, set_node_env=True)

    with runtime.logger.operation(
        "setup",
        args={"stages": selected, "local": local, "extra": extra},
        target={"kind": "instance", "dir": runtime.directory},
    ) as op:
        async def _work() -> None:
            disabled = _parse_disabled_steps(extra)
            instance = runtime.instance()
            _require_install(instance, "setup")
            instance.check_environment()
            report = await run_setup(
                runtime.run_context(instance, argv),
                stages=selected or None,
                disabled=disabled,
            )
            for result in report.results:
                op.add_step(result.id, status=result.status.value, detail=result.reason)

        _execute(runtime, op, _work)
        op.success("Setup complete.", changed=1)


# ---------------------------------------------------------------------------
# start / stop / restart
# ---------------------------------------------------------------------------


@app.command()
def start(
    ctx: typer.Context,
    name: str | None = NAME_ARGUMENT,
    enable: bool = typer.Option(
        True, "--enable/--no-enable", help="Also start Ghost on boot where supported."
    ),
) -> None:
    """Start an instance of Ghost."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "start",
        args={"name": name, "enable": enable},
        target={"kind": "instance", "dir": runtime.directory, "name": name},
    ) as op:
        async def _work() -> bool:
            instance = _resolve_instance(runtime, name, "start")
            if await instance.is_running():
                runtime.ui.log(
                    "Ghost is already running! For more information, run `ghostctl ls`", "green"
                )
                return False
            instance.check_environment()
            await runtime.ui.run(instance.start(enable=enable), "Starting Ghost")
            url = instance.config.get("url")
            if url:
                admin = f"{str(url).rstrip('/')}/ghost/"
                runtime.ui.log(f"Your admin interface is located at {admin}", "green")
            return True

        started = _execute(runtime, op, _work)
        op.success("Ghost started." if started else "Ghost already running.", changed=int(started))


@app.command()
def stop(
    ctx: typer.Context,
    name: str | None = NAME_ARGUMENT,
    all_instances: bool = typer.Option(False, "--all", help="Stop every running instance."),
    disable: bool = typer.Option(False, "--disable", help="Also stop Ghost starting on boot."),
) -> None:
    """Stop an instance of Ghost."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "stop",
        args={"name": name, "all": all_instances, "disable": disable},
        target={
            "kind": "instance",
            "dir": None if all_instances else runtime.directory,
            "name": name,
        },
    ) as op:
        async def _stop_one(instance: Instance) -> bool:
            if not await instance.is_running():
                runtime.ui.log(f"Ghost ({instance.name}) is already stopped.", "yellow")
                return False
            instance.load_running_environment(set_node_env=True)
            title = f"Stopping Ghost ({instance.name})"
            await runtime.ui.run(instance.stop(disable=disable), title)
            return True

        async def _work() -> int:
            if all_instances:
                stopped = 0
                for instance in await runtime.system.get_all_instances(running_only=True):
                    stopped += int(await _stop_one(instance))
                return stopped
            instance = _resolve_instance(runtime, name, "stop")
            return int(await _stop_one(instance))

        stopped = _execute(runtime, op, _work)
        op.success(f"Stopped {stopped} instance(s).", changed=stopped)


@app.command()
def restart(ctx: typer.Context, name: str | None = NAME_ARGUMENT) -> None:
    """Restart an instance of Ghost."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "restart",
        args={"name": name},
        target={"kind": "instance", "dir": runtime.directory, "name": name},
    ) as op:
        async def _work() -> None:
            instance = _resolve_instance(runtime, name, "restart")
            if not await instance.is_running():
                runtime.ui.log("Ghost instance is not running! Starting...", "yellow")
                instance.check_environment()
                await runtime.ui.run(instance.start(), "Starting Ghost")
                return
            instance.load_running_environment(set_node_env=True)
            await runtime.ui.run(instance.restart(), "Restarting Ghost")

        _execute(runtime, op, _work)
        op.success("Ghost restarted.", changed=1)


# ---------------------------------------------------------------------------
# update / uninstall
# ---------------------------------------------------------------------------


@app.command()
def update(
    ctx: typer.Context,
    version: str | None = typer.Argument(None, help="Version to update to (default: latest)."),
    force: bool = typer.Option(False, "--force", "-f", help="Reinstall or downgrade if needed."),
    rollback: bool = typer.Option(False, "--rollback", help="Roll back to the previous version."),
    no_restart: bool = typer.Option(False, "--no-restart", help="Do not restart Ghost."),
) -> None:
    """Update a Ghost instance."""
    runtime = _get_runtime(ctx)
    argv: dict[str, Any] = {"version": version, "force": force, "rollback": rollback}
    if no_restart:
        argv["restart"] = False
    with runtime.logger.operation(
        "update", args=argv, target={"kind": "instance", "dir": runtime.directory}
    ) as op:
        async def _work() -> str | None:
            instance = runtime.instance()
            _require_install(instance, "update")
            run_ctx = runtime.run_context(instance, argv)
            report = await run_update(run_ctx)
            if report is None:
                return None
            return instance.version

        installed = _execute(runtime, op, _work)
        if installed is None:
            op.success("Already up to date.")
        else:
            op.success(f"Active version is now {installed}.", changed=1)


@app.command()
def uninstall(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Do not ask for confirmation."),
) -> None:
    """Remove a Ghost instance and all of its data."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "uninstall", args={"force": force}, target={"kind": "instance", "dir": runtime.directory}
    ) as op:
        async def _work() -> bool:
            instance = runtime.instance()
            _require_install(instance, "uninstall")
            if not force:
                runtime.ui.log(
                    "WARNING: Running this command will delete all of your themes, images, "
                    "data, any files related to this Ghost instance, "
                    "and the contents of this folder!",
                    "yellow",
                )
                if not runtime.ui.confirm("Are you sure you want to do this?", default=False):
                    return False
            instance.check_environment()
            await run_uninstall(runtime.run_context(instance, {"force": force}))
            return True

        removed = _execute(runtime, op, _work)
        if removed:
            op.success("Ghost uninstalled.", changed=1)
        else:
            op.warning("Uninstall cancelled by the operator.")


# ---------------------------------------------------------------------------
# ls / log / config / migrate
# ---------------------------------------------------------------------------


@app.command("ls")
def list_instances(ctx: typer.Context) -> None:
    """View running Ghost processes."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("ls", target={"kind": "instance", "scope": "registry"}) as op:
        async def _work() -> list[Any]:
            instances = await runtime.system.get_all_instances()
            return [await instance.summary() for instance in instances]

        summaries = _execute(runtime, op, _work)
        if not summaries:
            runtime.ui.log("No installed Ghost instances found", "cyan")
            op.success("No instances.")
            return

        table = Table(show_header=True, header_style="bold magenta")
        for column in ("Name", "Location", "Version", "Status", "URL", "Port", "Process Manager"):
            table.add_column(column)
        for summary in summaries:
            status = f"running ({summary.environment})" if summary.running else "stopped"
            table.add_row(
                summary.name,
                str(summary.dir),
                summary.version or "",
                status,
                summary.url or "n/a",
                "n/a" if summary.port is None else str(summary.port),
                summary.process or "n/a",
            )
        console.print(table)
        op.success(f"Listed {len(summaries)} instance(s).")


@app.command()
def log(
    ctx: typer.Context,
    name: str | None = NAME_ARGUMENT,
    number: int = typer.Option(20, "--number", "-n", help="Number of lines to view."),
    follow_log: bool = typer.Option(False, "--follow", "-f", help="Follow the log file."),
    error: bool = typer.Option(False, "--error", "-e", help="Only show the error log."),
) -> None:
    """View the logs of a Ghost instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "log",
        args={"name": name, "number": number, "follow": follow_log, "error": error},
        target={"kind": "instance", "name": name},
    ) as op:
        async def _work() -> None:
            instance = _resolve_instance(runtime, name, "log")
            if not await instance.is_running():
                instance.check_environment()
            path = log_file_path(instance, error=error)
            if not path.exists():
                if follow_log:
                    runtime.ui.log(
                        "Log file has not been created yet, "
                        "`--follow` only works on existing files",
                        "yellow",
                    )
                return
            for line in read_last_lines(path, number):
                console.print(format_line(line))
            if follow_log:
                await follow(path, lambda line: console.print(format_line(line)))

        _execute(runtime, op, _work)


@app.command("config")
def config_command(
    ctx: typer.Context,
    key: str | None = typer.Argument(None, help="Config key, e.g. server.port."),
    value: str | None = typer.Argument(None, help="New value for the key."),
    url: str | None = URL_OPTION,
    admin_url: str | None = ADMIN_URL_OPTION,
    port: int | None = PORT_OPTION,
    ip: str | None = IP_OPTION,
    db: str | None = DB_OPTION,
    dbpath: str | None = DBPATH_OPTION,
    dbhost: str | None = DBHOST_OPTION,
    dbuser: str | None = DBUSER_OPTION,
    dbpass: str | None = DBPASS_OPTION,
    dbname: str | None = DBNAME_OPTION,
    mail: str | None = MAIL_OPTION,
    process: str | None = PROCESS_OPTION,
) -> None:
    """Get, set or interactively configure Ghost's config."""
    runtime = _get_runtime(ctx)
    argv = _configure_argv(
        url=url, admin_url=admin_url, port=port, ip=ip, db=db, dbpath=dbpath,
        dbhost=dbhost, dbuser=dbuser, dbpass=dbpass, dbname=dbname, mail=mail, process=process,
    )
    with runtime.logger.operation(
        "config",
        args={"key": key, "set": value is not None},
        target={"kind": "instance", "dir": runtime.directory},
    ) as op:
        async def _work() -> str | None:
            instance = runtime.instance()
            _require_install(instance, "config")
            instance.check_environment()
            config = instance.config
            if key is None:
                await configure(runtime.run_context(instance, argv))
                return None
            if value is None:
                current = config.get(key)
                if current is not None:
                    console.print(current if isinstance(current, str) else json.dumps(current))
                return None
            config.set(key, _coerce_config_value(value)).save()
            return key

        changed = _execute(runtime, op, _work)
        if changed:
            runtime.ui.success(f"Set {changed}.")
            op.success(f"Updated {changed}.", changed=1)


def _coerce_config_value(raw: str) -> Any:
    if raw in ("true", "false"):
        return raw == "true"
    if raw.isdigit():
        return int(raw)
    return raw


@app.command()
def migrate(ctx: typer.Context) -> None:
    """Run pending ghostctl migrations for an instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "migrate", target={"kind": "instance", "dir": runtime.directory}
    ) as op:
        async def _work() -> int:
            instance = runtime.instance()
            _require_install(instance, "migrate")
            instance.check_environment()
            return await run_cli_migrations(runtime.run_context(instance))

        count = _execute(runtime, op, _work)
        if count:
            runtime.ui.success(f"Ran {count} migration(s).")
        else:
            runtime.ui.log("No migrations needed.", "cyan")
        op.success(f"Ran {count} migration(s).", changed=count)


# ---------------------------------------------------------------------------
# doctor / version / run
# ---------------------------------------------------------------------------


_PROBE_STATUS_STYLE = {
    ProbeStatus.GREEN: "[green]OK[/green]",
    ProbeStatus.YELLOW: "[yellow]WARN[/yellow]",
    ProbeStatus.RED: "[red]FAIL[/red]",
}


def _render_doctor_report(report: DoctorReport) -> None:
    """Render a doctor report in a human-friendly format."""
    for result in report.results:
        console.print(
            f"{_PROBE_STATUS_STYLE[result.status]} [{result.category}] "
            f"{result.id}: {result.message}",
            highlight=False,
        )
        if result.remediation:
            console.print(f"  remediation: {result.remediation}")
    totals = report.summary.totals
    console.print(
        f"Totals: green={totals.get(ProbeStatus.GREEN, 0)} "
        f"warn={totals.get(ProbeStatus.YELLOW, 0)} "
        f"red={totals.get(ProbeStatus.RED, 0)}"
    )


@app.command()
def doctor(
    ctx: typer.Context,
    categories: list[str] | None = typer.Argument(
        None, help=f"Only run these categories ({', '.join(PROBE_CATEGORY_VALUES)})."
    ),
    json_output: bool = typer.Option(False, "--json", help="Emit the report as JSON."),
) -> None:
    """Check the system for any potential hiccups."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "doctor",
        args={"categories": categories or [], "json": json_output},
        target={"kind": "system", "scope": "health"},
    ) as op:
        try:
            probes = collect_probes(categories or ())
        except ValueError as exc:
            _command_error(op, str(exc))
        instance = runtime.instance()
        context = ProbeContext(
            system=runtime.system,
            instance=instance if (instance.dir / CLI_CONFIG_FILE).exists() else None,
        )
        report = DoctorEngine(context).run(probes)
        payload = serialize_report(report)
        if json_output:
            console.print_json(data=payload)
        else:
            _render_doctor_report(report)

        if report.summary.exit_code == ExitCode.OK:
            if report.summary.status is ProbeStatus.YELLOW:
                op.warning("Doctor completed with warnings.", context={"report": payload})
            else:
                op.success("All checks passed.", context={"report": payload})
            return
        if not json_output:
            console.print("[red]Doctor found problems that need attention.[/red]")
        op.error(
            "Doctor found failing checks.",
            rc=report.summary.exit_code,
            context={"report": payload},
        )
        raise typer.Exit(code=report.summary.exit_code)


@app.command()
def version(ctx: typer.Context) -> None:
    """Print the ghostctl version and the installed Ghost version."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("version", target={"kind": "meta", "scope": "version"}) as op:
        console.print(f"ghostctl version: {__version__}")
        instance = runtime.instance()
        if (instance.dir / CLI_CONFIG_FILE).exists() and instance.version:
            console.print(f"Ghost version: {instance.version} (at {instance.dir})")
        op.success("Reported versions.")


@app.command(hidden=True)
def run(ctx: typer.Context) -> None:
    """Run Ghost in the foreground; used by the process managers."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "run", target={"kind": "instance", "dir": runtime.directory}
    ) as op:
        async def _work() -> int:
            instance = runtime.instance()
            _require_install(instance, "run")

            def _register(child: asyncio.subprocess.Process) -> None:
                def _terminate() -> None:
                    if child.returncode is None:
                        child.terminate()

                runtime.cleanups.append(_terminate)

            return await run_ghost(instance, on_spawn=_register)

        code = _execute(runtime, op, _work)
        if code != ExitCode.OK:
            op.error(f"Ghost exited with code {code}.", rc=code)
            raise typer.Exit(code=code)
        op.success("Ghost exited.")


def main() -> None:
    """Invoke the Typer application."""
    app()


__all__ = ["RuntimeContext", "app", "main"]
