"""Terminal interaction: messages, prompts, spinners and step reporting."""
from __future__ import annotations

import logging
import subprocess
import traceback
from collections.abc import Awaitable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

import typer
from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm, Prompt

from . import shell
from .errors import CliError

if TYPE_CHECKING:
    from .system import System

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class UI:
    """Console front-end shared by commands, steps and extensions."""

    def __init__(
        self,
        *,
        verbose: bool = False,
        allow_prompt: bool = True,
        console: Console | None = None,
    ) -> None:
        """Create the UI; prompts fall back to defaults when *allow_prompt* is off."""
        self.verbose = verbose
        self.allow_prompt = allow_prompt
        self.console = console or Console()

    # Messages ----------------------------------------------------------
    def log(self, message: str, style: str | None = None) -> None:
        """Print *message*, optionally styled."""
        text = escape(message)
        self.console.print(f"[{style}]{text}[/{style}]" if style else text)

    def log_verbose(self, message: str, style: str | None = None) -> None:
        """Print *message* only in verbose mode."""
        if self.verbose:
            self.log(message, style)

    def success(self, message: str) -> None:
        """Print a success line."""
        self.console.print(f"[green]+[/green] {escape(message)}")

    def fail(self, message: str) -> None:
        """Print a failure line."""
        self.console.print(f"[red]x[/red] {escape(message)}")

    # Prompts -----------------------------------------------------------
    def confirm(self, question: str, default: bool = True) -> bool:
        """Ask a yes/no question; return *default* when prompting is disabled."""
        if not self.allow_prompt:
            return default
        return Confirm.ask(question, default=default, console=self.console)

    def prompt(
        self,
        question: str,
        *,
        default: str | None = None,
        password: bool = False,
    ) -> str:
        """Ask for a free-form answer.

        Without prompting the default is returned; a question with no default
        cannot be answered and raises :class:`CliError`.
        """
        if not self.allow_prompt:
            if default is None:
                raise CliError(
                    f"A value is required for '{question}' but prompting is disabled.",
                    help="Pass the value as a command-line option.",
                )
            return default
        if default is None:
            return Prompt.ask(question, password=password, console=self.console)
        return Prompt.ask(question, default=default, password=password, console=self.console)

    def choose(self, question: str, choices: Sequence[str], default: str) -> str:
        """Ask the operator to pick one of *choices*."""
        if not self.allow_prompt:
            return default
        return Prompt.ask(question, choices=list(choices), default=default, console=self.console)

    def edit(self, contents: str, *, extension: str = ".txt") -> str:
        """Open *contents* in the operator's editor and return the result."""
        edited = typer.edit(contents, extension=extension)
        return contents if edited is None else edited

    # Work --------------------------------------------------------------
    async def run(self, work: Awaitable[T], title: str) -> T:
        """Await *work* behind a spinner titled *title*, then report the outcome."""
        try:
            with self.console.status(escape(title)):
                result = await work
        except Exception:
            self.fail(title)
            raise
        self.success(title)
        return result

    async def sudo(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Run *args* with elevated privileges."""
        self.log_verbose(f"+ sudo {' '.join(args)}", "dim")
        return await shell.run(args, cwd=cwd, elevated=True, check=check)

    # Step reporting ----------------------------------------------------
    def step_started(self, title: str) -> None:
        """Announce a step that is about to run."""
        self.console.print(f"[cyan]>[/cyan] {escape(title)}")

    def step_completed(self, title: str) -> None:
        """Report a completed step."""
        self.success(title)

    def step_skipped(self, title: str, reason: str | None = None) -> None:
        """Report a skipped step, with its reason when one was given."""
        suffix = f" {escape(reason)}" if reason else ""
        self.console.print(f"[yellow]\\[skipped][/yellow] {escape(title)}{suffix}")

    def step_failed(self, title: str, error: BaseException) -> None:
        """Report a failed step."""
        message = error.message if isinstance(error, CliError) else str(error)
        self.fail(f"{title}: {message}")

    # Errors ------------------------------------------------------------
    def error(self, error: BaseException, system: System | None = None) -> Path | None:
        """Render *error* for the operator; write a debug log when it asks for one."""
        if isinstance(error, CliError):
            self.console.print(f"[red]{escape(error.render(self.verbose))}[/red]")
            wants_log = error.log_to_file
        else:
            self.console.print(f"[red]An unexpected error occurred: {escape(str(error))}[/red]")
            wants_log = True
        if self.verbose or not isinstance(error, CliError):
            LOGGER.debug("".join(traceback.format_exception(error)))
        if not wants_log or system is None:
            return None
        log_path = system.write_error_log(
            "".join(traceback.format_exception(error))
            + (("\n" + error.render(verbose=True)) if isinstance(error, CliError) else "")
        )
        if log_path is not None:
            self.console.print(f"Additional log info available in: {log_path}")
        return log_path


__all__ = ["UI"]
