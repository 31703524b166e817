"""Console output formatting utilities for defaultci."""

from __future__ import annotations

import sys
from typing import Iterable, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from defaultci.model import Job, PassResult


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    def print_header(self, title: str) -> None:
        """Print a section header."""
        print(f"\n{title}")
        print("-" * len(title))

    def print_pass_started(
        self,
        container: str,
        kind: str,
        script_id: str,
        use_sandbox: bool,
        branch_count: int,
    ) -> None:
        """Print reconciliation pass start information."""
        print("\nPASS STARTED")
        print(f"Container: {container}")
        print(f"Factory: {kind}")
        print(f"Script: {script_id} (sandbox={'on' if use_sandbox else 'off'})")
        print(f"Branches: {branch_count}")
        print()

    def print_failure(
        self,
        name: str,
        reason: str,
        hint: Optional[str] = None,
        is_job: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Branch or job name
            reason: Failure reason/error message
            hint: Optional hint for user
            is_job: If True, print "JOB FAILED", otherwise "BRANCH FAILED"
        """
        prefix = "JOB FAILED" if is_job else "BRANCH FAILED"
        print(f"{prefix}: {name}")
        if hint:
            print(f"Hint: {hint}")
        if self.debug:
            print(f"Error details: {reason}")
        else:
            # first line only outside debug mode
            error_line = reason.split('\n')[0] if reason else "Unknown error"
            print(f"Error: {error_line}")

    def print_results(self, result: "PassResult") -> None:
        """Print final pass summary."""
        print("\n" + "=" * 40)
        print(f"RESULTS (pass #{result.seq})")
        print("=" * 40)
        if result.superseded:
            print("  superseded by a newer scan, nothing applied")
            return
        for branch, status in sorted(result.statuses().items()):
            print(f"  {branch}: {status.upper()}")
        for branch, failure in sorted(result.failures.items()):
            print(f"  {branch}: {failure.kind}: {failure.message}")

    def print_jobs(self, container: str, jobs: Iterable["Job"]) -> None:
        """Print the stored jobs of a container."""
        self.print_header(f"JOBS: {container}")
        any_job = False
        for job in sorted(jobs, key=lambda j: j.branch_name):
            any_job = True
            binding = job.binding
            bound = f"{binding.script_id} (sandbox={'on' if binding.use_sandbox else 'off'})" if binding else "unbound"
            state = "disabled" if job.disabled else "active"
            line = f"  {job.branch_name}: {bound}, {state}, pass #{job.last_materialized_at}"
            if job.missed_passes:
                line += f", missed {job.missed_passes}"
            print(line)
            if job.last_error:
                print(f"    last error: {job.last_error}")
        if not any_job:
            print("  (no jobs)")

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

    def print_agent_started(
        self,
        agent_id: str,
        api: str,
        container: str,
        poll_interval: int,
    ) -> None:
        """Print agent start information."""
        print("\nAGENT STARTED")
        print(f"Agent ID: {agent_id}")
        print(f"API: {api}")
        print(f"Container: {container}")
        print(f"Scanning every: {poll_interval}s")
        print()

    def print_scan_submitted(self, container: str, branch_count: int, status: str) -> None:
        """Print scan submission message."""
        print(f"SCAN SUBMITTED: {container} ({branch_count} branches) -> {status}")

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
