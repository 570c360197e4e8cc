"""Console output formatting utilities for releaseci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Dict, List, Optional

if TYPE_CHECKING:
    from releaseci.model import Release
    from releaseci.runner import PipelineRun
    from releaseci.trigger import TriggerDecision


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        self.warnings: List[str] = []
        # jobs print from worker threads
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_run_started(
        self,
        repository: str,
        workflow: str,
        ref: str,
        job_count: int,
    ) -> None:
        """Print run start information."""
        self._emit(
            "\nRUN STARTED",
            f"Repository: {repository}",
            f"Workflow: {workflow}",
            f"Ref: {ref}",
            f"Jobs: {job_count}",
            "",
        )

    def print_trigger(self, decision: "TriggerDecision") -> None:
        state = "runs" if decision.runs else "does not run"
        lines = [f"TRIGGER: pipeline {state} ({decision.reason})"]
        if decision.should_publish:
            lines.append(f"TRIGGER: release {decision.tag} will be published")
        self._emit(*lines)

    def print_job_start(self, name: str, environment: str) -> None:
        self._emit(f"\nJOB STARTED: {name} ({environment})")

    def print_job_skipped(self, name: str, reason: str) -> None:
        self._emit(f"JOB SKIPPED: {name} ({reason})")

    def print_job_finished(self, name: str, outcome: str) -> None:
        self._emit(f"[{name}] STATUS: {outcome}")

    def print_step(self, job: str, name: str) -> None:
        self._emit(f"[{job}] STEP: {name}")

    def print_step_skipped(self, job: str, name: str, reason: str) -> None:
        self._emit(f"[{job}] STEP SKIPPED: {name} ({reason})")

    def print_step_failed(
        self,
        job: str,
        name: str,
        exit_code: Optional[int],
        output: str = "",
        optional: bool = False,
    ) -> None:
        """Print a failed step; optional steps are reported but tolerated."""
        prefix = "STEP FAILED (optional)" if optional else "STEP FAILED"
        lines = [f"[{job}] {prefix}: {name}"]
        if exit_code is not None:
            lines.append(f"[{job}] Exit code: {exit_code}")
        if output:
            if self.debug:
                lines.extend(f"[{job}]   {line}" for line in output.splitlines())
            else:
                # last line is usually the one that matters
                last = output.strip().splitlines()[-1:] or [""]
                lines.append(f"[{job}] Error: {last[0]}")
        self._emit(*lines)

    def print_job_failure(self, name: str, reason: str) -> None:
        lines = [f"JOB FAILED: {name}"]
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            lines.append(f"Error: {reason.splitlines()[0] if reason else 'Unknown error'}")
        self._emit(*lines)

    def print_cache_hit(self, job: str, purpose: str, key: str) -> None:
        self._emit(f"[{job}] CACHE {purpose}: hit ({_short(key)})")

    def print_cache_miss(self, job: str, purpose: str, key: str) -> None:
        self._emit(f"[{job}] CACHE {purpose}: miss ({_short(key)})")

    def print_cache_saved(self, job: str, purpose: str, key: str, result: str) -> None:
        self._emit(f"[{job}] CACHE {purpose}: save {result} ({_short(key)})")

    def print_plan_job(self, name: str, reason: str) -> None:
        """Print job selection plan."""
        self._emit(f"  {name} ({reason})")

    def print_release(self, release: "Release", assets: Dict[str, str]) -> None:
        lines = [f"\nRELEASE: {release.tag}" + (" (prerelease)" if release.prerelease else "")]
        if release.url:
            lines.append(f"URL: {release.url}")
        for name, status in sorted(assets.items()):
            lines.append(f"  {name}: {status}")
        self._emit(*lines)

    def print_results(self, run: "PipelineRun") -> None:
        """Print final results summary."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        for result in run.results:
            lines.append(f"  {result.name}: {result.outcome.value.upper()}")
        if run.release is not None:
            lines.append(f"  release {run.release.tag}: {len(run.release.files)} asset(s)")
        if run.publish_error:
            lines.append(f"  release: FAILED ({run.publish_error})")
        lines.append(f"PIPELINE: {run.status.upper()}")
        self._emit(*lines)

    def print_warning(self, message: str) -> None:
        with self._lock:
            self.warnings.append(message)
        self._emit(f"WARNING: {message}", err=True)

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
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


def _short(key: str) -> str:
    return key[:48] + "..." if len(key) > 48 else key


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
