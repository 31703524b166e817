from __future__ import annotations

import textwrap

import pytest
from click.testing import CliRunner
from helpers import branches

from defaultci import cli as cli_module
from defaultci.cli import cli


class _FakeScanner:
    names: list[str] = []

    def __init__(self, repo, *, remote="origin", include_local=True):
        self.repo = repo

    def scan(self, container):
        return branches(*self.names)


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    (tmp_path / "scripts").mkdir()
    (tmp_path / "scripts" / "Jenkinsfile").write_text("pipeline {}", encoding="utf-8")
    (tmp_path / "defaultci_containers.py").write_text(textwrap.dedent("""
        from defaultci import container, containers

        def defaults():
            return containers(
                container("web", orphan_grace_passes=0),
                container("broken", script_id="missing.groovy"),
            )
    """), encoding="utf-8")
    monkeypatch.setattr(cli_module, "GitScanner", _FakeScanner)
    return tmp_path


def _args(workspace, command, container="web"):
    return [
        command,
        "--config", str(workspace / "defaultci_containers.py"),
        "--container", container,
        "--state-dir", str(workspace / "state"),
    ]


def _reconcile(runner, workspace, names, container="web"):
    _FakeScanner.names = names
    return runner.invoke(
        cli,
        _args(workspace, "reconcile", container) + ["--scripts-dir", str(workspace / "scripts")],
    )


def test_kinds_lists_both_factories() -> None:
    result = CliRunner().invoke(cli, ["kinds"])
    assert result.exit_code == 0
    assert "defaults: by default Jenkinsfile" in result.output
    assert "repository-file: by Jenkinsfile" in result.output


def test_reconcile_status_prune(workspace) -> None:
    runner = CliRunner()

    first = _reconcile(runner, workspace, ["main", "feature-1"])
    assert first.exit_code == 0, first.output
    assert "main: CREATED" in first.output
    assert (workspace / "state" / "state.json").exists()

    second = _reconcile(runner, workspace, ["main"])
    assert second.exit_code == 0, second.output
    assert "feature-1: DISABLED" in second.output

    status = runner.invoke(cli, _args(workspace, "status"))
    assert status.exit_code == 0
    assert "main:" in status.output
    assert "feature-1" not in status.output

    everything = runner.invoke(cli, _args(workspace, "status") + ["--all"])
    assert everything.exit_code == 0
    assert "feature-1: Jenkinsfile (sandbox=off), disabled" in everything.output

    pruned = runner.invoke(cli, _args(workspace, "prune"))
    assert pruned.exit_code == 0
    assert "Pruned 1 job(s): feature-1" in pruned.output

    again = runner.invoke(cli, _args(workspace, "prune"))
    assert "Nothing to prune." in again.output


def test_reconcile_exits_non_zero_on_failures(workspace) -> None:
    result = _reconcile(CliRunner(), workspace, ["main"], container="broken")
    assert result.exit_code == 1
    assert "JOB FAILED: main" in result.output


def test_unknown_container(workspace) -> None:
    result = _reconcile(CliRunner(), workspace, ["main"], container="nope")
    assert result.exit_code == 1
    assert "Unknown container" in result.output


def test_missing_definition_file(tmp_path) -> None:
    result = CliRunner().invoke(cli, ["status", "--config", str(tmp_path / "none.py")])
    assert result.exit_code == 1
    assert "Definition file not found" in result.output
