# agent/agent.py
from __future__ import annotations

import signal
import time
from pathlib import Path

from .api_client import APIClient, APIError
from defaultci.scanner import GitScanner, describe
from defaultci.ui.console import get_console


class Agent:
    """Scans a git checkout on an interval and posts each scan to the API."""

    def __init__(
        self,
        api_url: str,
        agent_id: str,
        container: str,
        repo: str | Path = ".",
        poll_interval: int = 60,
        remote: str | None = "origin",
    ):
        """
        Initialize agent.

        Args:
            api_url: Base URL of the API
            agent_id: Identifier for this agent, sent as the scan's caller
            container: Container the scans belong to
            repo: Path to the git checkout to scan
            poll_interval: Seconds between scans
            remote: Remote whose tracking branches are scanned
        """
        self.api_client = APIClient(api_url, agent_id)
        self.container = container
        self.scanner = GitScanner(repo, remote=remote)
        self.poll_interval = poll_interval
        self.running = True

        # Setup signal handlers for graceful shutdown
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        console = get_console()
        console.print_info(f"\nReceived signal {signum}, shutting down gracefully...")
        self.running = False

    def scan_once(self) -> dict:
        branches = describe(self.scanner.scan(self.container))
        response = self.api_client.submit_scan(self.container, branches)
        get_console().print_scan_submitted(
            self.container,
            len(branches),
            str(response.get("status", "unknown")),
        )
        return response

    def run(self) -> None:
        """Run the agent loop."""
        console = get_console()
        console.print_agent_started(
            agent_id=self.api_client.agent_id,
            api=self.api_client.base_url,
            container=self.container,
            poll_interval=self.poll_interval,
        )

        while self.running:
            try:
                self.scan_once()
            except KeyboardInterrupt:
                console.print_info("\nInterrupted by user")
                break
            except APIError as e:
                console.print_error(
                    "API error",
                    str(e),
                    suggestion="Check API connectivity and retry.",
                )
            except Exception as e:
                console.print_exception(e)

            if self.running:
                time.sleep(self.poll_interval)

        console.print_info("Agent stopped.")


def run_agent(
    api_url: str,
    agent_id: str,
    container: str,
    repo: str | Path = ".",
    poll_interval: int = 60,
    remote: str | None = "origin",
) -> None:
    """Run the scan agent loop until interrupted."""
    agent = Agent(api_url, agent_id, container, repo, poll_interval, remote)
    agent.run()
