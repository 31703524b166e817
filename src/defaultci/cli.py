# cli.py
from __future__ import annotations

import socket
import subprocess
import sys
from pathlib import Path

import click

from defaultci.agent.api_client import APIError
from defaultci.driver import ReconciliationDriver
from defaultci.dsl import find_container_files, load_containers, select_container
from defaultci.engine import InMemoryExecutionEngine
from defaultci.errors import ConfigLoadError
from defaultci.policy import list_kinds
from defaultci.registry import DirectoryScriptRegistry, RedisScriptRegistry
from defaultci.scanner import GitScanner
from defaultci.store import DEFAULT_STATE_DIR, StateStore
from defaultci.ui.console import Console, get_console, set_console


def discover_config(config_arg: str | None) -> Path:
    """
    Discover the container definition file from argument or default.

    Raises:
        SystemExit: If no file can be found or several candidates exist
    """
    console = get_console()

    if config_arg:
        config_path = Path(config_arg)
        if not config_path.exists() and config_path.suffix != ".py":
            config_path = Path(str(config_path) + ".py")
        if not config_path.exists():
            console.print_error(
                "Definition file not found",
                f"Could not find container definition file: {config_arg}",
                suggestion="Create a definition file or specify a different path:\n  defaultci reconcile --config my_containers.py",
            )
            sys.exit(1)
        return config_path

    files = find_container_files(".")

    if len(files) == 0:
        console.print_error(
            "No definition file found",
            "Could not find any container definition files.",
            details=[
                "Looked for:",
                "  defaultci_containers.py",
                "  *_containers.py",
            ],
            suggestion="Create a definition file:\n  defaultci_containers.py\n\nOr specify one explicitly:\n  defaultci reconcile --config my_containers.py",
        )
        sys.exit(1)

    if len(files) > 1:
        file_list = "\n".join(f"  {f}" for f in files)
        console.print_error(
            "Multiple definition files found",
            "Found multiple container definition files. Please specify which one to use:",
            details=[file_list],
            suggestion="Specify one explicitly:\n  defaultci reconcile --config defaultci_containers.py",
        )
        sys.exit(1)

    return files[0]


def _load_config(config: str | None, container_name: str | None):
    console = get_console()
    config_path = discover_config(config)
    try:
        configs = load_containers(config_path)
        return select_container(configs, container_name)
    except ConfigLoadError as e:
        console.print_error("Failed to load definitions", e.message, details=[f"path={e.path}"])
        sys.exit(1)
    except KeyError as e:
        console.print_error("Unknown container", str(e.args[0]))
        sys.exit(1)


def _registry(scripts_dir: str | None, redis_url: str | None, state_dir: str):
    if redis_url:
        return RedisScriptRegistry.from_url(redis_url)
    return DirectoryScriptRegistry(scripts_dir or Path(state_dir) / "scripts")


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """defaultci: bind branches without a pipeline file to a central default script."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
def kinds():
    """List the available project factory kinds."""
    console = get_console()
    console.print_header("FACTORY KINDS")
    for kind in list_kinds():
        console.print_info(f"  {kind.name}: {kind.display_name}")


@cli.command()
@click.option("--config", default=None, help="Definition file (defaults to defaultci_containers.py if present)")
@click.option("--container", "container_name", default=None, help="Container to reconcile")
@click.option("--repo", default=".", show_default=True, help="Git checkout to scan")
@click.option("--remote", default="origin", show_default=True, help="Remote whose tracking branches are scanned")
@click.option("--state-dir", default=DEFAULT_STATE_DIR, show_default=True, help="Where job state is kept")
@click.option("--scripts-dir", default=None, help="Script registry directory (defaults to <state-dir>/scripts)")
@click.option("--redis-url", default=None, envvar="DEFAULTCI_REDIS_URL", help="Use a redis script registry instead")
@click.option("--caller", default=None, help="Caller identity for sandboxed script access checks")
@click.option("--workers", default=None, type=int, help="Number of parallel registry lookups")
@click.pass_context
def reconcile(ctx, config, container_name, repo, remote, state_dir, scripts_dir, redis_url, caller, workers):
    """Scan a repository and run one reconciliation pass."""
    console = get_console()
    cfg = _load_config(config, container_name)

    try:
        store = StateStore(state_dir)
        container = store.load(cfg, engine=InMemoryExecutionEngine())
        branches = GitScanner(repo, remote=remote or None).scan(cfg.name)

        console.print_pass_started(
            container=cfg.name,
            kind=cfg.factory_kind,
            script_id=cfg.script_id,
            use_sandbox=cfg.use_sandbox,
            branch_count=len(branches),
        )

        driver = ReconciliationDriver(
            _registry(scripts_dir, redis_url, state_dir),
            max_workers=workers,
        )
        result = driver.reconcile(container, branches, caller=caller)
        store.save(container)

        console.print_results(result)

        if result.failures:
            sys.exit(1)

    except subprocess.CalledProcessError as e:
        console.print_error(
            "Git scan failed",
            f"Could not list branches of {repo}",
            details=[(e.stderr or "").strip() or str(e)],
            suggestion="Check that --repo points at a git checkout.",
        )
        sys.exit(1)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.option("--config", default=None, help="Definition file (defaults to defaultci_containers.py if present)")
@click.option("--container", "container_name", default=None, help="Container to show")
@click.option("--state-dir", default=DEFAULT_STATE_DIR, show_default=True, help="Where job state is kept")
@click.option("--all", "show_all", is_flag=True, default=False, help="Include disabled jobs")
def status(config, container_name, state_dir, show_all):
    """Show the stored jobs of a container."""
    console = get_console()
    cfg = _load_config(config, container_name)
    container = StateStore(state_dir).load(cfg)
    jobs = container.jobs.values() if show_all else container.active_jobs()
    console.print_jobs(container.name, jobs)


@cli.command()
@click.option("--config", default=None, help="Definition file (defaults to defaultci_containers.py if present)")
@click.option("--container", "container_name", default=None, help="Container to prune")
@click.option("--state-dir", default=DEFAULT_STATE_DIR, show_default=True, help="Where job state is kept")
def prune(config, container_name, state_dir):
    """Delete the disabled jobs of a container."""
    console = get_console()
    cfg = _load_config(config, container_name)
    store = StateStore(state_dir)
    container = store.load(cfg)
    # prune never touches the registry
    removed = ReconciliationDriver(registry=None).prune(container)
    store.save(container)
    if removed:
        console.print_info(f"Pruned {len(removed)} job(s): {', '.join(removed)}")
    else:
        console.print_info("Nothing to prune.")


@cli.command()
@click.option("--api", required=True, help="API base URL (e.g., http://localhost:8000)")
@click.option("--container", "container_name", required=True, help="Container the scan belongs to")
@click.option("--repo", default=".", show_default=True, help="Git checkout to scan")
@click.option("--remote", default="origin", show_default=True, help="Remote whose tracking branches are scanned")
@click.option("--agent-id", default=None, help="Caller identity (defaults to hostname)")
@click.pass_context
def scan(ctx, api, container_name, repo, remote, agent_id):
    """Scan once and submit the result to the control plane."""
    from defaultci.agent.agent import Agent

    console = get_console()
    try:
        agent = Agent(api, agent_id or socket.gethostname(), container_name, repo, remote=remote or None)
        response = agent.scan_once()
        for name, failure in sorted((response.get("failures") or {}).items()):
            console.print_failure(name, str(failure), is_job=True)
        if response.get("failures"):
            sys.exit(1)
    except APIError as e:
        console.print_error(
            "API request failed",
            str(e),
            suggestion=f"Check the API at {api} and verify your request.",
        )
        sys.exit(1)
    except subprocess.CalledProcessError as e:
        console.print_error("Git scan failed", f"Could not list branches of {repo}", details=[str(e)])
        sys.exit(1)


@cli.command()
@click.option("--api", required=True, help="API base URL (e.g., http://localhost:8000)")
@click.option("--container", "container_name", required=True, help="Container the scans belong to")
@click.option("--repo", default=".", show_default=True, help="Git checkout to scan")
@click.option("--remote", default="origin", show_default=True, help="Remote whose tracking branches are scanned")
@click.option("--agent-id", default=None, help="Unique agent identifier (defaults to hostname)")
@click.option("--poll-interval", default=60, type=int, help="Seconds between scans")
@click.pass_context
def agent(ctx, api, container_name, repo, remote, agent_id, poll_interval):
    """Scan on an interval and submit every scan to the control plane."""
    from defaultci.agent.agent import run_agent

    console = get_console()

    if not agent_id:
        agent_id = socket.gethostname()

    try:
        run_agent(api, agent_id, container_name, repo, poll_interval, remote or None)
    except KeyboardInterrupt:
        console.print_info("\nAgent stopped by user")
        sys.exit(0)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


if __name__ == "__main__":
    cli()
