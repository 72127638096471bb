"""Exception taxonomy shared by commands, steps and process managers.

Every error meant for the operator derives from :class:`CliError` so the
command guard can render a clean message instead of a traceback. The
``log_to_file`` flag decides whether a debug log is written for the failure;
configuration and environment problems are the operator's to fix and are not
logged.
"""
from __future__ import annotations

from collections.abc import Mapping, Sequence


class CliError(RuntimeError):
    """Generic tool-level failure with a user-facing message."""

    log_to_file = True

    def __init__(
        self,
        message: str,
        *,
        context: Mapping[str, object] | None = None,
        help: str | None = None,  # noqa: A002 - mirrors the CLI wording
    ) -> None:
        """Store the message plus optional diagnostic context and remediation hint."""
        super().__init__(message)
        self.message = message
        self.context: dict[str, object] = dict(context or {})
        self.help = help

    @property
    def kind(self) -> str:
        """Return a short label used as the heading of rendered errors."""
        return "Error"

    def details(self) -> list[str]:
        """Return extra lines shown in verbose mode."""
        return [f"{key}: {value}" for key, value in self.context.items()]

    def render(self, verbose: bool = False) -> str:
        """Return the operator-facing representation of the error."""
        lines = [f"{self.kind}: {self.message}"]
        if verbose:
            lines.extend(self.details())
        if self.help:
            lines.append("")
            lines.append(self.help)
        return "\n".join(lines)


class ConfigError(CliError):
    """A persisted configuration value is missing or invalid."""

    log_to_file = False

    def __init__(
        self,
        message: str,
        *,
        config_key: str | None = None,
        config_value: object | None = None,
        environment: str | None = None,
        help: str | None = None,  # noqa: A002
    ) -> None:
        """Record the offending key so the rendered hint can point at it."""
        if help is None and config_key:
            help = f"Run `ghostctl config {config_key} <new value>` to fix it."
        super().__init__(message, help=help)
        self.config_key = config_key
        self.config_value = config_value
        self.environment = environment

    @property
    def kind(self) -> str:
        """Return the heading for configuration errors."""
        return "Config Error"

    def details(self) -> list[str]:
        """Include the key, value and environment in verbose output."""
        lines: list[str] = []
        if self.config_key:
            lines.append(f"Key: {self.config_key}")
        if self.config_value is not None:
            lines.append(f"Current value: {self.config_value}")
        if self.environment:
            lines.append(f"Environment: {self.environment}")
        return lines + super().details()


class SystemRequirementError(CliError):
    """An environmental precondition (OS, binary, user, directory) is unmet."""

    log_to_file = False

    @property
    def kind(self) -> str:
        """Return the heading for environment errors."""
        return "System Error"


class ProcessError(CliError):
    """A spawned subprocess failed."""

    def __init__(
        self,
        message: str,
        *,
        cmd: Sequence[str] | None = None,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
        killed: bool = False,
        help: str | None = None,  # noqa: A002
    ) -> None:
        """Capture the command line and its output for diagnostics."""
        super().__init__(message, help=help)
        self.cmd = list(cmd or [])
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.killed = killed

    @property
    def kind(self) -> str:
        """Return the heading for subprocess errors."""
        return "Process Error"

    def details(self) -> list[str]:
        """Include the command and its captured output in verbose output."""
        lines: list[str] = []
        if self.cmd:
            lines.append(f"Command: {' '.join(self.cmd)}")
        if self.returncode is not None:
            lines.append(f"Exit code: {self.returncode}")
        if self.killed:
            lines.append("The process was killed by a signal.")
        if self.stdout.strip():
            lines.append("--- stdout ---")
            lines.append(self.stdout.rstrip())
        if self.stderr.strip():
            lines.append("--- stderr ---")
            lines.append(self.stderr.rstrip())
        return lines + super().details()


class ApplicationError(CliError):
    """The served application reported a failure (for example while booting)."""

    @property
    def kind(self) -> str:
        """Return the heading for application-reported errors."""
        return "Ghost Error"


class SkipSignal(Exception):  # noqa: N818 - it is a signal, not an error
    """Raised by a step to short-circuit itself without failing the run."""

    def __init__(self, reason: str | None = None) -> None:
        """Store the optional reason shown to the operator."""
        super().__init__(reason or "skipped")
        self.reason = reason


class StepFailure(CliError):
    """A step raised; wraps the cause with the step identity."""

    def __init__(
        self,
        step_id: str,
        title: str,
        cause: BaseException,
        *,
        completed: Sequence[str] = (),
        report: object | None = None,
    ) -> None:
        """Wrap *cause* raised while running the step *step_id*."""
        message = str(cause.message if isinstance(cause, CliError) else cause) or repr(cause)
        super().__init__(
            f"{title} failed: {message}",
            help=cause.help if isinstance(cause, CliError) else None,
        )
        self.step_id = step_id
        self.title = title
        self.cause = cause
        self.completed = tuple(completed)
        self.report = report

    @property
    def log_to_file(self) -> bool:  # type: ignore[override]
        """Follow the wrapped error's preference."""
        if isinstance(self.cause, CliError):
            return self.cause.log_to_file
        return True

    @property
    def kind(self) -> str:
        """Reuse the wrapped error's heading."""
        if isinstance(self.cause, CliError):
            return self.cause.kind
        return "Error"

    def details(self) -> list[str]:
        """Show the step id followed by the wrapped error's details."""
        lines = [f"Step: {self.step_id}"]
        if isinstance(self.cause, CliError):
            lines.extend(self.cause.details())
        else:
            lines.append(f"Cause: {self.cause!r}")
        return lines


class AbortRun(StepFailure):
    """A step failed after earlier steps of the same run already completed."""


__all__ = [
    "AbortRun",
    "ApplicationError",
    "CliError",
    "ConfigError",
    "ProcessError",
    "SkipSignal",
    "StepFailure",
    "SystemRequirementError",
]
