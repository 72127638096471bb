"""Fresh installation of Ghost into an empty directory."""
from __future__ import annotations

from pathlib import Path

from .. import __version__
from ..errors import SystemRequirementError
from ..node_runtime import detect_node_version
from .engine import TaskRunner
from .models import RunContext, RunReport, Step, TaskHandle
from .update import link_current, version_installer

# Left behind by common tools; they do not make a directory "in use".
IGNORED_ENTRIES = frozenset({".DS_Store", "Thumbs.db", ".ghost-cli"})


def ensure_empty_directory(directory: Path) -> None:
    """Raise unless *directory* is missing or empty."""
    path = Path(directory)
    if not path.exists():
        return
    if any(entry.name not in IGNORED_ENTRIES for entry in path.iterdir()):
        raise SystemRequirementError(
            "Current directory is not empty, Ghost cannot be installed here.",
            help="Run `ghostctl install` from an empty directory or pass --dir.",
        )


async def _check_node(ctx: RunContext, handle: TaskHandle) -> None:
    info = detect_node_version(ctx.system.settings.node_bin)
    if info is None:
        raise SystemRequirementError(
            "Node.js was not found.",
            help="Install a supported Node.js release and make sure `node` is on PATH.",
        )
    ctx.state["node_version"] = info.version


async def _resolve(ctx: RunContext, handle: TaskHandle) -> None:
    version = await version_installer(ctx).resolve_version(ctx.argv.get("version"), force=True)
    ctx.state["version"] = version
    handle.title = f"Resolved Ghost v{version}"


async def _prepare_directory(ctx: RunContext, handle: TaskHandle) -> None:
    directory = ctx.instance.dir
    for child in ("versions", "content", "system/files"):
        (directory / child).mkdir(parents=True, exist_ok=True)


async def _download(ctx: RunContext, handle: TaskHandle) -> None:
    await version_installer(ctx).install(ctx.state["version"])


async def _finish(ctx: RunContext, handle: TaskHandle) -> None:
    instance = ctx.instance
    version = ctx.state["version"]
    link_current(instance.dir, version)
    instance.version = version
    instance.cli_version = __version__
    node_version = ctx.state.get("node_version")
    if node_version:
        instance.node_version = node_version


def build_install_steps() -> list[Step]:
    """Return the ordered install steps."""
    return [
        Step(id="node", name="Node.js", title="Checking Node.js", task=_check_node),
        Step(
            id="resolve",
            name="Ghost version",
            title="Checking for latest Ghost version",
            task=_resolve,
        ),
        Step(
            id="directory",
            name="install directory",
            title="Setting up install directory",
            task=_prepare_directory,
        ),
        Step(id="download", name="Ghost", title="Downloading and installing Ghost", task=_download),
        Step(id="finish", name="install", title="Finishing install process", task=_finish),
    ]


async def run_install(ctx: RunContext) -> RunReport:
    """Install the requested (or latest) version into the instance directory."""
    ensure_empty_directory(ctx.instance.dir)
    ctx.instance.dir.mkdir(parents=True, exist_ok=True)
    return await TaskRunner(ctx.ui, prompt=False).run(build_install_steps(), ctx)


__all__ = ["build_install_steps", "ensure_empty_directory", "run_install"]
