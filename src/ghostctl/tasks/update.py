"""Update and rollback of an installed instance."""
from __future__ import annotations

import logging
import os
from pathlib import Path

from .. import __version__
from ..errors import ApplicationError, CliError, StepFailure
from ..providers.version_installer import VersionInstaller
from .engine import TaskRunner
from .migrations import (
    collect_migrations,
    database_migrate_step,
    needed_migrations,
    run_cli_migrations,
)
from .models import RunContext, RunReport, Step, TaskHandle

LOGGER = logging.getLogger(__name__)


def version_installer(ctx: RunContext) -> VersionInstaller:
    """Return the installer targeting the instance's ``versions`` directory."""
    settings = ctx.system.settings
    return VersionInstaller(
        versions_dir=ctx.instance.dir / "versions",
        package_name=settings.npm_package_name,
        npm_bin=settings.npm_bin,
    )


def link_current(directory: Path, version: str) -> Path:
    """Atomically point ``<directory>/current`` at ``versions/<version>``."""
    current = Path(directory) / "current"
    tmp_link = Path(directory) / ".current.tmp"
    tmp_link.unlink(missing_ok=True)
    os.symlink(Path("versions") / version, tmp_link)
    os.replace(tmp_link, current)
    return current


def _rollback(ctx: RunContext) -> bool:
    return bool(ctx.argv.get("rollback"))


async def _skip_download(ctx: RunContext) -> bool | str:
    if _rollback(ctx):
        return "Rolling back to an installed version"
    installer = version_installer(ctx)
    if installer.is_installed(ctx.state["version"]) and not ctx.argv.get("force"):
        return "Version already installed."
    return False


async def _download(ctx: RunContext, handle: TaskHandle) -> None:
    await version_installer(ctx).install(ctx.state["version"])


async def _skip_stop(ctx: RunContext) -> bool | str:
    if not await ctx.instance.is_running():
        return "Ghost is not running"
    return False


async def _stop(ctx: RunContext, handle: TaskHandle) -> None:
    ctx.instance.load_running_environment(set_node_env=True)
    await ctx.instance.stop()
    ctx.state["was_running"] = True


async def _link(ctx: RunContext, handle: TaskHandle) -> None:
    instance = ctx.instance
    version = ctx.state["version"]
    link_current(instance.dir, version)
    instance.previous_version = None if _rollback(ctx) else instance.version
    instance.version = version


async def _skip_cli_migrations(ctx: RunContext) -> bool | str:
    if _rollback(ctx):
        return "Rolling back"
    pending = needed_migrations(ctx.instance.cli_version, await collect_migrations(ctx.system))
    if not pending:
        return "No ghostctl migrations pending"
    return False


async def _cli_migrations(ctx: RunContext, handle: TaskHandle) -> None:
    await run_cli_migrations(ctx)


async def _skip_restart(ctx: RunContext) -> bool | str:
    if ctx.argv.get("restart") is False:
        return "disabled with --no-restart"
    return False


async def _restart(ctx: RunContext, handle: TaskHandle) -> None:
    await ctx.instance.start()


async def _skip_remove_old(ctx: RunContext) -> bool | str:
    if _rollback(ctx):
        return "Rolling back"
    return False


async def _remove_old(ctx: RunContext, handle: TaskHandle) -> None:
    instance = ctx.instance
    removed = version_installer(ctx).remove_old_versions(
        ctx.system.settings.keep_versions,
        protect=(instance.version, instance.previous_version),
    )
    if not removed:
        handle.skip("No old versions to remove")
    ctx.ui.log_verbose(f"Removed versions: {', '.join(removed)}")


def build_update_steps() -> list[Step]:
    """Return the ordered update steps."""
    return [
        Step(
            id="download",
            name="Ghost",
            title="Downloading and updating Ghost",
            task=_download,
            skip=_skip_download,
        ),
        Step(id="stop", name="Ghost", title="Stopping Ghost", task=_stop, skip=_skip_stop),
        Step(
            id="link",
            name="Ghost",
            title="Linking latest Ghost and recording versions",
            task=_link,
        ),
        Step(
            id="cli-migrations",
            name="ghostctl migrations",
            title="Running ghostctl migrations",
            task=_cli_migrations,
            skip=_skip_cli_migrations,
        ),
        database_migrate_step(),
        Step(
            id="restart",
            name="Ghost",
            title="Restarting Ghost",
            task=_restart,
            skip=_skip_restart,
        ),
        Step(
            id="remove-old",
            name="old versions",
            title="Removing old Ghost versions",
            task=_remove_old,
            skip=_skip_remove_old,
        ),
    ]


def should_offer_rollback(error: StepFailure, *, rollback: bool) -> bool:
    """Only failures reported by Ghost itself, outside a rollback, warrant one."""
    return not rollback and isinstance(error.cause, ApplicationError)


async def run_update(ctx: RunContext) -> RunReport | None:
    """Update (or roll back) the instance; ``None`` means it was already current.

    When Ghost itself fails during the update the operator is offered an
    automatic rollback to the previous version.
    """
    instance = ctx.instance
    instance.check_environment()
    rollback = _rollback(ctx)

    if rollback:
        if not instance.previous_version:
            raise CliError(
                "No previous version found",
                help="Rollback is only possible after a successful update.",
            )
        version = instance.previous_version
    else:
        version = await version_installer(ctx).resolve_version(
            ctx.argv.get("version"),
            active=instance.version,
            force=bool(ctx.argv.get("force")),
        )
        if version is None:
            ctx.ui.log("All up to date!", "cyan")
            return None

    ctx.state["version"] = version
    ctx.ui.log(
        f"{'Rolling back' if rollback else 'Updating'} from {instance.version} to {version}",
        "cyan",
    )

    try:
        report = await TaskRunner(ctx.ui, prompt=False).run(build_update_steps(), ctx)
    except StepFailure as exc:
        if not should_offer_rollback(exc, rollback=rollback):
            raise
        ctx.ui.error(exc, ctx.system)
        if not ctx.ui.confirm(
            "Ghost failed to start after the update. "
            "Do you want to roll back to the previous version?",
            default=True,
        ):
            raise
        LOGGER.debug("Rolling back after failed update to %s.", version)
        rollback_ctx = RunContext(
            ui=ctx.ui,
            system=ctx.system,
            instance=instance,
            argv={**ctx.argv, "rollback": True, "force": False, "version": None},
        )
        return await run_update(rollback_ctx)

    instance.cli_version = __version__
    return report


__all__ = [
    "build_update_steps",
    "link_current",
    "run_update",
    "should_offer_rollback",
    "version_installer",
]
