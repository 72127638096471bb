"""MySQL extension: replace a root database login with a dedicated user."""
from __future__ import annotations

import os
import secrets
from collections.abc import Sequence
from typing import Any

from .. import shell
from ..errors import ProcessError, SystemRequirementError
from ..extension import Extension
from ..tasks.models import RunContext, Step, TaskHandle

USER_EXISTS_ERROR = "ERROR 1396"
MAX_USER_ATTEMPTS = 5
LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})


def _quote(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def _identifier(value: str) -> str:
    return "`" + value.replace("`", "``") + "`"


class MySQLExtension(Extension):
    """Contributes the ``mysql`` and ``mysql-permissions`` steps.

    Both belong to the ``mysql`` stage: the grant step persists the password
    the first step generated, so one never runs selected without the other.
    """

    extension_id = "mysql"

    def setup(self) -> Sequence[Step]:
        """Return the user-creation and grant steps."""
        return [
            Step(
                id="mysql",
                name='"ghost" mysql user',
                title="Creating a dedicated MySQL user",
                task=self._create_user,
                enabled=self._enabled,
                skip=self._skip_create,
                optional=True,
            ),
            Step(
                id="mysql-permissions",
                name="MySQL permissions",
                title="Granting MySQL permissions",
                task=self._grant_permissions,
                enabled=self._enabled,
                skip=self._skip_grant,
                depends_on=("mysql",),
                stage="mysql",
            ),
        ]

    def _enabled(self, ctx: RunContext) -> bool:
        return not ctx.local and ctx.instance.config.get("database.client") == "mysql"

    async def _skip_create(self, ctx: RunContext) -> bool | str:
        if ctx.instance.config.get("database.connection.user") != "root":
            return "MySQL user is not root"
        return False

    async def _skip_grant(self, ctx: RunContext) -> bool | str:
        if "mysql" not in ctx.state:
            return "No MySQL user was created"
        return False

    def _connection(self, ctx: RunContext) -> dict[str, Any]:
        connection = ctx.instance.config.get("database.connection", {}) or {}
        return dict(connection)

    async def query(self, connection: dict[str, Any], statement: str) -> str:
        """Run one SQL *statement* as the configured login and return stdout."""
        args = [
            self.system.settings.mysql_bin,
            "--batch",
            "--skip-column-names",
            "--host",
            str(connection.get("host", "localhost")),
            "--user",
            str(connection.get("user", "root")),
        ]
        if connection.get("port"):
            args.extend(["--port", str(connection["port"])])
        if connection.get("socketPath"):
            args.extend(["--socket", str(connection["socketPath"])])
        args.extend(["--execute", statement])
        env = dict(os.environ)
        env["MYSQL_PWD"] = str(connection.get("password", ""))
        result = await shell.run(args, env=env)
        return result.stdout

    async def _check_connection(self, connection: dict[str, Any]) -> None:
        try:
            await self.query(connection, "SELECT 1")
        except ProcessError as exc:
            host = connection.get("host", "localhost")
            port = connection.get("port", 3306)
            raise SystemRequirementError(
                f"Could not connect to MySQL: {exc.message}",
                context={"host": f"{host}:{port}"},
                help=(
                    "Check the MySQL settings with `ghostctl config` "
                    "and run `ghostctl setup mysql` again."
                ),
            ) from exc

    def _user_host(self, connection: dict[str, Any]) -> str:
        host = str(connection.get("host", "localhost"))
        return "localhost" if host in LOCAL_HOSTS else "%"

    async def _create_user(self, ctx: RunContext, handle: TaskHandle) -> None:
        connection = self._connection(ctx)
        await self._check_connection(connection)
        host = self._user_host(connection)
        password = secrets.token_hex(10)

        for _attempt in range(MAX_USER_ATTEMPTS):
            username = f"ghost-{secrets.randbelow(1000)}"
            statement = (
                f"CREATE USER {_quote(username)}@{_quote(host)} "
                f"IDENTIFIED BY {_quote(password)};"
            )
            try:
                await self.query(connection, statement)
            except ProcessError as exc:
                if USER_EXISTS_ERROR in f"{exc.stdout}\n{exc.stderr}":
                    ctx.ui.log_verbose(
                        f"MySQL user {username} already exists, picking another name."
                    )
                    continue
                raise SystemRequirementError(
                    f"Unable to create a MySQL user: {exc.message}"
                ) from exc
            ctx.state["mysql"] = {"username": username, "password": password, "host": host}
            ctx.ui.log_verbose(f"MySQL: created user {username}.", "green")
            return
        raise SystemRequirementError("Unable to pick a free name for the MySQL user.")

    async def _grant_permissions(self, ctx: RunContext, handle: TaskHandle) -> None:
        connection = self._connection(ctx)
        created = ctx.state["mysql"]
        database = str(connection.get("database", ""))
        grantee = f"{_quote(created['username'])}@{_quote(created['host'])}"
        try:
            await self.query(
                connection, f"GRANT ALL PRIVILEGES ON {_identifier(database)}.* TO {grantee};"
            )
            await self.query(connection, "FLUSH PRIVILEGES;")
        except ProcessError as exc:
            raise SystemRequirementError(
                f"Unable to grant permissions to {created['username']}: {exc.message}"
            ) from exc

        ctx.instance.config.set(
            {
                "database": {
                    "connection": {
                        "user": created["username"],
                        "password": created["password"],
                    }
                }
            }
        ).save()


__all__ = ["MySQLExtension"]
