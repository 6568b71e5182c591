"""Console output formatting utilities for stepwise."""

from __future__ import annotations

import sys
import threading
from typing import Optional

from stepwise.events import CommandFinished, CommandStarted, Event, LogLine


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    def print_script_started(
        self,
        name: str,
        description: Optional[str],
        path: str,
    ) -> None:
        """Print script start information."""
        print(f"\nRunning script: {name}")
        if description:
            print(f"Description: {description}")
        print(f"File: {path}")

    def print_command(self, command: str) -> None:
        print(f"\n> {command}")

    def print_command_finished(self, exit_code: Optional[int]) -> None:
        if exit_code not in (None, 0):
            print(f"Exit code: {exit_code}", file=sys.stderr)

    def print_log(self, line: str, is_error: bool = False) -> None:
        print(line, file=sys.stderr if is_error else sys.stdout)

    def print_failure(
        self,
        command: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
    ) -> None:
        """
        Print failure message.

        Args:
            command: Substituted command text
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
        """
        print(f"\nSTEP FAILED: {command}", file=sys.stderr)
        if exit_code is not None:
            print(f"Exit code: {exit_code}", file=sys.stderr)
        if hint:
            print(f"Hint: {hint}", file=sys.stderr)
        print(f"Error: {reason}", file=sys.stderr)

    def print_summary(
        self,
        script: str,
        executed: int,
        skipped: int,
        concurrent_units: int,
        tolerated: list,
    ) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print(f"SCRIPT COMPLETE: {script}")
        print("=" * 40)
        print(f"  Steps run: {executed}")
        if skipped:
            print(f"  Steps skipped: {skipped}")
        if concurrent_units:
            print(f"  Concurrent groups: {concurrent_units}")
        for failure in tolerated:
            print(f"  WARNING (tolerated): {failure}")

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
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


class ConsoleSink:
    """Renders runner events through a Console. Safe to call from worker threads."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or get_console()
        self._lock = threading.Lock()

    def emit(self, event: Event) -> None:
        with self._lock:
            if isinstance(event, CommandStarted):
                self.console.print_command(event.command)
            elif isinstance(event, CommandFinished):
                self.console.print_command_finished(event.exit_code)
            elif isinstance(event, LogLine):
                self.console.print_log(event.line, is_error=event.is_error)


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
