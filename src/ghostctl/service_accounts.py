"""The system user Ghost runs as under systemd.

Planning is separate from applying so the ``linux-user`` step can report
warnings and skip cleanly when the host already matches.
"""
from __future__ import annotations

import grp
import logging
import os
import pwd
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from . import shell

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ServiceAccountSpec:
    """The user (and group) ``content/`` should belong to."""

    name: str = "ghost"
    group: str | None = "ghost"
    system: bool = True
    home: Path | None = None
    shell: str | None = None

    @property
    def owner(self) -> str:
        """Return the ``user[:group]`` argument for chown."""
        return f"{self.name}:{self.group}" if self.group else self.name


@dataclass(slots=True)
class ServiceAccountStatus:
    user_exists: bool
    group_exists: bool
    uid: int | None = None
    gid: int | None = None
    primary_group: str | None = None


@dataclass(slots=True)
class ServiceAccountAction:
    kind: Literal["create-user", "chown"]
    description: str
    command: list[str]


@dataclass(slots=True)
class ServiceAccountPlan:
    spec: ServiceAccountSpec
    status: ServiceAccountStatus
    actions: list[ServiceAccountAction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def satisfied(self) -> bool:
        """Return True when the host already matches the spec."""
        return not self.actions


def _group_name(gid: int) -> str | None:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return None


def _group_exists(name: str | None) -> bool:
    if not name:
        return False
    try:
        grp.getgrnam(name)
    except KeyError:
        return False
    return True


def inspect_service_account(spec: ServiceAccountSpec) -> ServiceAccountStatus:
    """Look *spec* up in the passwd and group databases."""
    group_exists = _group_exists(spec.group)
    try:
        entry = pwd.getpwnam(spec.name)
    except KeyError:
        return ServiceAccountStatus(user_exists=False, group_exists=group_exists)
    return ServiceAccountStatus(
        user_exists=True,
        group_exists=group_exists,
        uid=entry.pw_uid,
        gid=entry.pw_gid,
        primary_group=_group_name(entry.pw_gid),
    )


def user_exists(name: str) -> bool:
    try:
        pwd.getpwnam(name)
    except KeyError:
        return False
    return True


def owned_by(path: Path, name: str) -> bool:
    """Return True when *path* exists and belongs to the user *name*."""
    try:
        return Path(path).stat().st_uid == pwd.getpwnam(name).pw_uid
    except (KeyError, OSError):
        return False


def should_use_ghost_user(content_dir: Path, name: str = "ghost") -> bool:
    """Return True when Ghost should be launched as *name* through sudo.

    That is the case on Linux when *name* exists, owns *content_dir* (by user
    or group) and is not the user running ghostctl.
    """
    if not sys.platform.startswith("linux"):
        return False
    try:
        entry = pwd.getpwnam(name)
    except KeyError:
        return False
    try:
        stats = Path(content_dir).lstat()
    except FileNotFoundError:
        return False
    if stats.st_uid != entry.pw_uid and stats.st_gid != entry.pw_gid:
        return False
    return os.getuid() != entry.pw_uid


def _useradd(spec: ServiceAccountSpec, status: ServiceAccountStatus) -> list[str]:
    command = ["useradd"]
    if spec.system:
        command.append("--system")
    if spec.group:
        command += ["--gid", spec.group] if status.group_exists else ["--user-group"]
    command += ["--home-dir", str(spec.home)] if spec.home else ["--no-create-home"]
    if spec.shell:
        command += ["--shell", spec.shell]
    return [*command, spec.name]


def plan_service_account(
    spec: ServiceAccountSpec,
    *,
    content_dir: Path | None = None,
) -> ServiceAccountPlan:
    """Work out what must change for *spec*, including ownership of *content_dir*."""
    status = inspect_service_account(spec)
    plan = ServiceAccountPlan(spec=spec, status=status)

    if not status.user_exists:
        plan.actions.append(
            ServiceAccountAction(
                "create-user", f"Create service user '{spec.name}'.", _useradd(spec, status)
            )
        )
    elif spec.group and status.primary_group not in (None, spec.group):
        plan.warnings.append(
            f"User '{spec.name}' primary group is '{status.primary_group}', "
            f"expected '{spec.group}'."
        )

    content = Path(content_dir) if content_dir is not None else None
    if content is not None and content.exists():
        if not (status.user_exists and owned_by(content, spec.name)):
            plan.actions.append(
                ServiceAccountAction(
                    "chown",
                    f"Give '{spec.name}' ownership of {content}.",
                    ["chown", "-R", spec.owner, str(content)],
                )
            )
    return plan


async def apply_service_account_plan(plan: ServiceAccountPlan) -> None:
    """Run the plan's commands with elevation, in order."""
    for action in plan.actions:
        LOGGER.info("%s", action.description)
        await shell.run(action.command, elevated=True)


__all__ = [
    "ServiceAccountAction",
    "ServiceAccountPlan",
    "ServiceAccountSpec",
    "ServiceAccountStatus",
    "apply_service_account_plan",
    "inspect_service_account",
    "owned_by",
    "plan_service_account",
    "should_use_ghost_user",
    "user_exists",
]
