"""Console output formatting utilities for relayci."""

from __future__ import annotations

import sys
import threading
from typing import Dict, Optional


class Console:
    """Centralized console output formatting (safe to call from worker threads)."""

    def __init__(self, debug: bool = False, stream=None, err_stream=None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces and step output
            stream: Output stream (defaults to sys.stdout at print time)
            err_stream: Error stream (defaults to sys.stderr at print time)
        """
        self.debug = debug
        self._stream = stream
        self._err_stream = err_stream
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = (self._err_stream or sys.stderr) if err else (self._stream or sys.stdout)
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(self, run_id: str, workflow: str, event: str, job_count: int) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED",
            f"Run: {run_id}",
            f"Workflow: {workflow}",
            f"Event: {event}",
            f"Jobs: {job_count}",
            "",
        )

    def print_run_queued(self, run_id: str, group: str) -> None:
        self._out(f"RUN QUEUED: {run_id} (concurrency group {group})")

    def print_run_cancelled(self, run_id: str, reason: str) -> None:
        self._out(f"RUN CANCELLED: {run_id} ({reason})")

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        self._out(f"JOB STARTED: {name}")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        self._out(f"[{job}] STEP: {name}")

    def print_step_output(self, job: str, output: str) -> None:
        """Print (already redacted) step output in debug mode."""
        if self.debug and output:
            self._out(*(f"[{job}] | {line}" for line in output.rstrip().splitlines()))

    def print_job_finished(self, name: str, status: str) -> None:
        self._out(f"JOB FINISHED: {name} -> {status}")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        is_job: bool = False,
    ) -> None:
        """Job or step failure. Outside debug mode only the first line of `reason` is shown."""
        prefix = "JOB FAILED" if is_job else "STEP FAILED"
        lines = [f"{prefix}: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            # first line only outside debug mode
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            lines.append(f"Error: {error_line}")
        self._out(*lines)

    def print_cache_hit(self, job: str, key: str) -> None:
        self._out(f"[{job}] CACHE: hit ({_short(key)})")

    def print_cache_miss(self, job: str, reason: str) -> None:
        self._out(f"[{job}] CACHE: miss ({reason})")

    def print_cache_saved(self, job: str, key: str) -> None:
        self._out(f"[{job}] CACHE: saved ({_short(key)})")

    def print_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped message."""
        self._out(f"JOB SKIPPED: {name} ({reason})")

    def print_plan(self, levels: list[list[str]]) -> None:
        """Print the execution plan, one stage per line."""
        for idx, level in enumerate(levels, start=1):
            self._out(f"  stage {idx}: {', '.join(level)}")

    def print_results(self, status: str, results: Dict[str, str]) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, f"RESULTS ({status.upper()})", "=" * 40]
        for job, job_status in results.items():
            lines.append(f"  {job}: {job_status.upper()}")
        self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """CLI-level error on stderr: title, message, indented details, then a hint."""
        lines = [f"\nERROR: {title}", message]
        lines.extend(f"  {d}" for d in details or [])
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_warning(self, message: str) -> None:
        self._out(f"WARNING: {message}", err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback

            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__, file=self._err_stream or sys.stderr)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


def _short(key: str) -> str:
    return key[:24] + "..." if len(key) > 24 else key


# Global console instance (initialized by the CLI)
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
