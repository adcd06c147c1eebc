"""Console output formatting utilities for jenkins-stages."""

from __future__ import annotations

import os
import traceback
from typing import IO, Optional

from rich.console import Console as RichConsole
from rich.text import Text
from rich.style import Style

ORANGE = "#FF5500"
LIGHT_GRAY = "#7C878E"
CYAN = "#4EC3E0"

INFO_BOLD = Style(bold=True, color=ORANGE)
GRAY = Style(color=LIGHT_GRAY)
SUCCESS = Style(bold=True, color="white", bgcolor="green")
FAILURE = Style(bold=True, color="white", bgcolor="red")
INFO_BOX = Style(bold=True, color="white", bgcolor=ORANGE)

RESULT_STYLES = {
    "SUCCESS": SUCCESS,
    "FAILURE": FAILURE,
    "FAILED": FAILURE,
    "ABORTED": Style(bold=True, color=ORANGE),
}


def result_style(result: Optional[str]) -> Style:
    return RESULT_STYLES.get(result or "", INFO_BOLD)


class Console:
    """Centralized console output formatting."""

    def __init__(
        self,
        verbosity: int = 0,
        debug: bool = False,
        stdout: Optional[IO[str]] = None,
        stderr: Optional[IO[str]] = None,
    ):
        """
        Initialize console formatter.

        Args:
            verbosity: 0 quiet, 1 verbose, 2+ very verbose
            debug: If True, show stack traces for fatal errors
            stdout: Stream for regular output (defaults to sys.stdout)
            stderr: Stream for errors and verbose lines (defaults to sys.stderr)
        """
        self.verbosity = verbosity
        self.debug_mode = debug
        self.out = RichConsole(file=stdout, highlight=False, soft_wrap=True)
        self.err = RichConsole(file=stderr, stderr=stderr is None, highlight=False, soft_wrap=True)
        # the pid tells a re-executed monitor's lines apart from its parent's
        self.prefix = f" →({os.getpid()}) "

    # ------------------------------------------------------------------
    # Verbose logging
    # ------------------------------------------------------------------

    def debug(self, message: str) -> None:
        """Print a verbose line (-v)."""
        if self.verbosity >= 1:
            self.err.print(self.prefix + message, style=GRAY, markup=False)

    def trace(self, message: str) -> None:
        """Print a very verbose line (-vv)."""
        if self.verbosity >= 2:
            self.err.print(self.prefix + message, style=GRAY, markup=False)

    # ------------------------------------------------------------------
    # Plain output
    # ------------------------------------------------------------------

    def print(self, *objects, **kwargs) -> None:
        self.out.print(*objects, **kwargs)

    def print_info(self, message: str, style: Optional[Style] = None) -> None:
        self.out.print(message, style=style, markup=False)

    def print_header(self, title: str) -> None:
        self.out.print(title, style=INFO_BOLD, markup=False)

    def print_muted(self, message: str) -> None:
        self.out.print(message, style=GRAY, markup=False)

    def print_success(self, message: str) -> None:
        self.out.print(message, style=SUCCESS, markup=False)

    def print_banner(self, message: str) -> None:
        self.out.print(f"      {message}      ", style=INFO_BOX, markup=False)

    def print_rule(self, char: str = "═", width: int = 80) -> None:
        self.out.print(char * width, markup=False)

    def print_build_status(self, pipeline: str, build_id: str, name: str, result: Optional[str], verb: str = "status") -> None:
        """One status line per build, as printed by ``status`` and ``monitor``."""
        self.out.print(
            Text.assemble(
                (build_id, INFO_BOLD),
                f": The {verb} for [",
                (name, INFO_BOLD),
                "] on branch [",
                (pipeline, INFO_BOLD),
                "] is [",
                (result or "IN_PROGRESS", result_style(result)),
                "]",
            )
        )

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        self.err.print(f"\nERROR: {title}", style=FAILURE, markup=False)
        self.err.print(message, markup=False)
        if details:
            for detail in details:
                self.err.print(f"  {detail}", markup=False)
        if suggestion:
            self.err.print(f"\n{suggestion}", markup=False)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug_mode:
            self.err.print("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), markup=False)
        else:
            self.err.print(f"Error: {exc}", markup=False)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
