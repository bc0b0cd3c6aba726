"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
from contextlib import contextmanager
from typing import Iterator, Optional


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    # GitHub Actions folds everything between these markers in the log view
    def start_group(self, title: str) -> None:
        print(f"::group::{title}")

    def end_group(self) -> None:
        print("::endgroup::")

    @contextmanager
    def group(self, title: str) -> Iterator[None]:
        self.start_group(title)
        try:
            yield
        finally:
            self.end_group()

    def print_run_started(
        self,
        repository: str,
        mode: str,
        revisions: Optional[str] = None,
    ) -> None:
        """Print run start information."""
        print("\nRUN STARTED")
        print(f"Repository: {repository}")
        print(f"Mode: {mode}")
        if revisions:
            print(f"Revisions: {revisions}")
        print()

    def print_config_event(self, event: str, path: str) -> None:
        """Created / Changed notice for a config file."""
        print(f"{event}: {path}")

    def print_no_config(self, config_name: str, path: str) -> None:
        print(f"Couldn't find {config_name} for file: {path}")

    def print_instance(self, label: str, digest: str) -> None:
        """Print an instance selected for building."""
        print(f"Instance name/version (hash): {label} ({digest})")

    def print_event(self, event_type: str, payload: dict) -> None:
        print(f"EVENT: {event_type}")
        if self.debug:
            for key, value in payload.items():
                print(f"  {key}: {value}")

    def print_results(self, results: dict[str, str]) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        if not results:
            print("  nothing to dispatch")
        for context, status in results.items():
            status_display = status.upper() if status != "ok" else "DISPATCHED"
            print(f"  {context}: {status_display}")

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
