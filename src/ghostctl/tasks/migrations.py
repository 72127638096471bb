"""Database migrations and version-gated ghostctl migrations."""
from __future__ import annotations

import os
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from packaging.version import InvalidVersion, Version

from .. import __version__, shell
from ..errors import ConfigError, ProcessError, SystemRequirementError
from ..service_accounts import owned_by
from .models import RunContext, SkipCheck, Step, StepTask, TaskHandle

if TYPE_CHECKING:
    from ..system import System

KNEX_MIGRATOR = "knex-migrator-migrate"


@dataclass(frozen=True, slots=True)
class Migration:
    """A one-time fix applied when upgrading from a ghostctl older than ``before``."""

    title: str
    task: StepTask
    before: str | None = None
    skip: SkipCheck | None = None

    def is_needed(self, cli_version: str | None) -> bool:
        """Return True when an instance last touched by *cli_version* needs this."""
        if self.before is None:
            return True
        try:
            return Version(cli_version or "0") < Version(self.before)
        except InvalidVersion:
            return True


async def _ensure_settings_folder(ctx: RunContext, handle: TaskHandle) -> None:
    content = ctx.instance.dir / "content"
    settings = content / "settings"
    if settings.exists():
        handle.skip("content/settings already exists")
    user = ctx.system.settings.system_user
    if owned_by(content, user):
        await ctx.ui.sudo(["mkdir", "-p", str(settings)])
        await ctx.ui.sudo(["chown", f"{user}:{user}", str(settings)])
    else:
        settings.mkdir(parents=True, exist_ok=True)


def core_migrations() -> list[Migration]:
    """Return ghostctl's own migrations."""
    return [
        Migration(
            title="Create content/settings directory",
            task=_ensure_settings_folder,
            before="1.0.0",
        )
    ]


async def collect_migrations(system: System) -> list[Migration]:
    """Return core migrations followed by each extension's, in discovery order."""
    migrations = core_migrations()
    for contributed in await system.hook("migrations"):
        migrations.extend(contributed or ())
    return migrations


def needed_migrations(cli_version: str | None, migrations: Iterable[Migration]) -> list[Migration]:
    """Return the migrations an instance last touched by *cli_version* still needs."""
    return [migration for migration in migrations if migration.is_needed(cli_version)]


def migration_steps(migrations: Sequence[Migration]) -> list[Step]:
    """Wrap *migrations* as runner steps."""
    return [
        Step(
            id=f"migration-{index}",
            name=migration.title,
            title=migration.title,
            task=migration.task,
            skip=migration.skip,
        )
        for index, migration in enumerate(migrations, start=1)
    ]


async def run_cli_migrations(ctx: RunContext) -> int:
    """Run pending ghostctl migrations and record the current version."""
    from .engine import TaskRunner

    pending = needed_migrations(ctx.instance.cli_version, await collect_migrations(ctx.system))
    if pending:
        await TaskRunner(ctx.ui, prompt=False).run(migration_steps(pending), ctx)
    ctx.instance.cli_version = __version__
    return len(pending)


# Database migrations -----------------------------------------------------
def _major_version(version: str | None) -> int | None:
    try:
        return Version(version).major if version else None
    except InvalidVersion:
        return None


async def skip_database_migrate(ctx: RunContext) -> bool | str:
    """Ghost 2.0 and later migrate their own database on boot."""
    if ctx.argv.get("no_migrate"):
        return "disabled with --no-migrate"
    version = ctx.state.get("version") or ctx.instance.version
    major = _major_version(version)
    if major is None or major >= 2:
        return "Ghost migrates its database on boot"
    return False


async def database_migrate(ctx: RunContext, handle: TaskHandle) -> None:
    """Run ``knex-migrator-migrate --init`` against the active config."""
    current = ctx.instance.dir / "current"
    binary = current / "node_modules" / ".bin" / KNEX_MIGRATOR
    if not binary.exists():
        raise SystemRequirementError(
            f"{KNEX_MIGRATOR} not found in {current}.",
            help="Re-install the Ghost version with `ghostctl update --force`.",
        )
    env = dict(os.environ)
    env["NODE_ENV"] = ctx.system.environment
    try:
        await shell.run(
            [str(binary), "--init", "--mgpath", str(current)],
            cwd=ctx.instance.dir,
            env=env,
        )
    except ProcessError as exc:
        raise _migration_error(exc, ctx.system.environment) from exc


def _migration_error(exc: ProcessError, environment: str) -> Exception:
    output = f"{exc.stdout}\n{exc.stderr}"
    if "ER_ACCESS_DENIED_ERROR" in output:
        return ConfigError(
            "Ghost could not connect to MySQL; the credentials were rejected.",
            config_key="database.connection.user",
            environment=environment,
        )
    if "ENOTFOUND" in output or "ECONNREFUSED" in output:
        return ConfigError(
            "Ghost could not reach the MySQL server.",
            config_key="database.connection.host",
            environment=environment,
        )
    return exc


def database_migrate_step() -> Step:
    """Return the ``migrate`` step descriptor."""
    return Step(
        id="migrate",
        name="database migrations",
        title="Running database migrations",
        task=database_migrate,
        skip=skip_database_migrate,
    )


__all__ = [
    "Migration",
    "collect_migrations",
    "core_migrations",
    "database_migrate_step",
    "migration_steps",
    "needed_migrations",
    "run_cli_migrations",
]
