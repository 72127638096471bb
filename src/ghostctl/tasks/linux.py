"""The ``linux-user`` setup step."""
from __future__ import annotations

import sys

from ..service_accounts import (
    ServiceAccountSpec,
    apply_service_account_plan,
    owned_by,
    plan_service_account,
    user_exists,
)
from .models import RunContext, Step, TaskHandle


def _account_spec(ctx: RunContext) -> ServiceAccountSpec:
    user = ctx.system.settings.system_user
    return ServiceAccountSpec(name=user, group=user)


def linux_user_enabled(ctx: RunContext) -> bool:
    """Only systemd-managed, non-local installs on Linux need the service user."""
    return (
        not ctx.local
        and sys.platform.startswith("linux")
        and ctx.instance.config.get("process") == "systemd"
    )


async def skip_linux_user(ctx: RunContext) -> bool | str:
    """Skip when the user exists and already owns ``content/``."""
    spec = _account_spec(ctx)
    content = ctx.instance.dir / "content"
    if user_exists(spec.name) and (not content.exists() or owned_by(content, spec.name)):
        return f"'{spec.name}' user already set up"
    return False


async def setup_linux_user(ctx: RunContext, handle: TaskHandle) -> None:
    """Create the service user and hand ``content/`` over to it."""
    plan = plan_service_account(_account_spec(ctx), content_dir=ctx.instance.dir / "content")
    for warning in plan.warnings:
        ctx.ui.log(warning, "yellow")
    if plan.satisfied:
        handle.skip("Nothing to do")
    await apply_service_account_plan(plan)


def linux_user_step() -> Step:
    """Return the ``linux-user`` step descriptor."""
    return Step(
        id="linux-user",
        name='"ghost" system user',
        title='Setting up "ghost" system user',
        task=setup_linux_user,
        enabled=linux_user_enabled,
        skip=skip_linux_user,
        optional=True,
    )


__all__ = ["linux_user_enabled", "linux_user_step", "setup_linux_user", "skip_linux_user"]
