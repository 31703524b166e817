"""
Pytest configuration and shared fixtures.
"""
from __future__ import annotations

import pytest

from defaultci.driver import MultiBranchContainer, ReconciliationDriver
from defaultci.engine import InMemoryExecutionEngine
from defaultci.model import ContainerConfig
from defaultci.registry import InMemoryScriptRegistry
from defaultci.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def quiet_console():
    console = Console(debug=False)
    set_console(console)
    yield console


@pytest.fixture
def registry() -> InMemoryScriptRegistry:
    return InMemoryScriptRegistry({
        "Jenkinsfile": "pipeline { agent any }",
        "shared-lib.groovy": "@Library('shared') _\nbuildPlugin()",
    })


@pytest.fixture
def engine() -> InMemoryExecutionEngine:
    return InMemoryExecutionEngine()


@pytest.fixture
def driver(registry) -> ReconciliationDriver:
    return ReconciliationDriver(registry, max_workers=2)


@pytest.fixture
def make_container(engine):
    def _make(name: str = "web", **overrides) -> MultiBranchContainer:
        return MultiBranchContainer.from_config(ContainerConfig(name=name, **overrides), engine=engine)
    return _make
