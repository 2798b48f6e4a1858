"""Console output formatting utilities for distci."""

from __future__ import annotations

import sys
import threading
from typing import Dict, List, Optional, Sequence

from ..errors import TestFailure


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, verbose: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            verbose: If True, echo the captured output of every test unit
        """
        self.debug = debug
        self.verbose = verbose
        # queue workers print concurrently
        self._lock = threading.Lock()

    def _emit(self, text: str, file=None) -> None:
        with self._lock:
            print(text, file=file or sys.stdout, flush=True)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit(f"\n{title}\n" + "-" * len(title))

    def print_banner(self, title: str) -> None:
        self._emit("\n" + "=" * 75 + f"\n{title}")

    def print_names(self, title: str, names: Sequence[str]) -> None:
        """Print a titled, indented list of names."""
        body = "\n".join(f"  {n}" for n in names) if names else "  (none)"
        self._emit(f"\n{title}\n{body}")

    # ---- build ----

    def print_phase_started(self, number: int, names: Sequence[str]) -> None:
        self._emit("\n" + "=" * 60 + f"\n\nBuilding phase {number} packages")
        if self.debug:
            self._emit("  " + ", ".join(names))

    def print_package_started(self, name: str, source_dir: str) -> None:
        self._emit("\n" + "-" * 60 + f"\nBUILD: {name}\nDirectory: {source_dir}")

    def print_package_status(self, name: str, status: str) -> None:
        status_display = status.upper() if status != "ok" else "SUCCESS"
        self._emit(f"STATUS: {status_display}")

    def print_phases(self, phases: Sequence[Sequence[str]]) -> None:
        for i, phase in enumerate(phases):
            self.print_names(f"Phase {i + 1}", list(phase))

    # ---- tests ----

    def print_queue_started(self, index: int, count: int) -> None:
        self._emit(f"Executing batch #{index} ({count} tests)")

    def print_test_output(self, title: str, output: str) -> None:
        """Print a unit's output between begin/end markers (verbose only)."""
        if not self.verbose:
            return
        self._emit(
            f"\n------------------ Begin {title} ------------------------\n"
            f"{output}\n"
            f"------------------- End {title} -------------------------\n"
        )

    def print_test_result(self, title: str, exit_code: int) -> None:
        mark = "PASS" if exit_code == 0 else f"FAIL (exit={exit_code})"
        self._emit(f"TEST: {title} ... {mark}")

    def print_pending(self, titles: Sequence[str], elapsed: float) -> None:
        mins, secs = divmod(int(elapsed), 60)
        body = "\n".join(titles)
        self._emit(f"Still Running Tests ({mins}m {secs}s):\n{body}")

    def print_retry_pass(self, number: int, titles: Sequence[str]) -> None:
        self.print_banner(f"Retrying failures (Pass {number})...")
        self._emit("\n".join(titles) + "\n")

    def print_plan(self, queues: Sequence[Sequence]) -> None:
        for i, queue in enumerate(queues):
            self.print_header(f"Queue {i}")
            if not queue:
                self._emit("  (empty)")
            for unit in queue:
                self._emit(f"  {unit.title}\n      {unit.command}")

    def print_unresolved(self, failures: Sequence) -> None:
        self.print_banner("Unresolved failures:")
        if not failures:
            self._emit("  (none)")
        for f in failures:
            line = str(TestFailure(f))
            if f.original_title and f.original_title != f.title:
                line += f"\n\t(from: {f.original_title})"
            self._emit(line)

    # ---- results / errors ----

    def print_results(self, results: Dict[str, str]) -> None:
        """Print final build results summary."""
        self._emit("\n" + "=" * 40 + "\nRESULTS\n" + "=" * 40)
        for name, status in results.items():
            status_display = status.upper() if status != "ok" else "SUCCESS"
            self._emit(f"  {name}: {status_display}")

    def print_warning(self, message: str) -> None:
        self._emit(f"Warning: {message}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[List[str]] = None,
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
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {d}" for d in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit("\n".join(lines), file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            self._emit(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)


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
