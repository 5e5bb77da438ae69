"""Console output formatting utilities for updateflow."""

from __future__ import annotations

import sys
from typing import Optional, Sequence

from updateflow.dag import Wave
from updateflow.model import StepStatus
from updateflow.summary import RunSummary, StepRecord


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, stream=None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            stream: Where normal output goes (defaults to stdout)
        """
        self.debug = debug
        self.stream = stream

    def _out(self, text: str = "") -> None:
        print(text, file=self.stream or sys.stdout)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}")
        self._out("-" * len(title))

    def print_run_started(self, workflow: str, step_count: int, wave_count: int) -> None:
        """Print run start information."""
        self._out("\nRUN STARTED")
        self._out(f"Workflow: {workflow}")
        self._out(f"Steps: {step_count}")
        self._out(f"Waves: {wave_count}")
        self._out()

    def print_plan(self, waves: Sequence[Wave]) -> None:
        """Print the wave plan."""
        self.print_header("PLAN")
        for w in waves:
            self._out(f"  Wave {w.index}: {', '.join(w.step_ids)}")

    def print_step(self, rec: StepRecord) -> None:
        """Print one step line of the summary."""
        if rec.status is StepStatus.SUCCESS:
            cached = " (cached)" if rec.metadata.get("cached") else ""
            self._out(f"  {rec.id}: SUCCESS{cached} [{rec.duration_ms} ms]")
        elif rec.status is StepStatus.SKIPPED:
            self._out(f"  {rec.id}: SKIPPED ({rec.skip_reason})")
        else:
            kind = rec.error.kind if rec.error else "StepFailure"
            self._out(f"  {rec.id}: FAILED {kind} [{rec.duration_ms} ms]")
            if rec.error:
                if self.debug:
                    self._out(f"    Error details: {rec.error.message}")
                else:
                    # first line only outside debug mode
                    first = rec.error.message.split("\n")[0]
                    self._out(f"    Error: {first}")

    def print_summary(self, summary: RunSummary) -> None:
        """Print final results summary."""
        self._out("\n" + "=" * 40)
        self._out("RESULTS")
        self._out("=" * 40)
        for wave in summary.waves:
            self._out(f"Wave {wave.index}")
            for rec in wave.steps:
                self.print_step(rec)
        c = summary.counts
        self._out("-" * 40)
        self._out(f"Status: {summary.status.upper()}  ok={c.ok} failed={c.failed} skipped={c.skipped}")
        if summary.aborted:
            self._out(f"Aborted: {summary.abort_reason}")
        self._out(f"Duration: {summary.duration_ms / 1000:.1f}s")

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
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

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
