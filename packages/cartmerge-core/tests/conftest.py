"""Shared test fixtures: fixture-backed ports and an orchestrator harness."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import pytest

from cartmerge.adapters.fixtures import FixtureSite, FixtureTabs, load_fixture_ports
from cartmerge.config import OrchestratorConfig
from cartmerge.runner.machine import StateMachine
from cartmerge.runner.messaging import MessageRouter
from cartmerge.runner.orchestrator import RunOrchestrator
from cartmerge.runner.state_store import InMemoryStateStore

HOUSEHOLD_DIR = Path(__file__).resolve().parents[3] / "examples" / "household"


@dataclass
class Harness:
    """Everything needed to drive a run against the household fixture."""
    site: FixtureSite
    router: MessageRouter
    tabs: FixtureTabs
    store: InMemoryStateStore
    machine: StateMachine
    orchestrator: RunOrchestrator
    config: OrchestratorConfig

    @property
    def tab_id(self) -> int:
        return self.site.tab.id

    def rebuild(self, advisor=None) -> RunOrchestrator:
        """Simulate a process restart: fresh machine and orchestrator over the same store."""
        self.machine = StateMachine(self.store)
        self.orchestrator = RunOrchestrator(
            self.machine, self.router, self.tabs, self.config, advisor=advisor
        )
        return self.orchestrator


@pytest.fixture
def fast_config() -> OrchestratorConfig:
    return OrchestratorConfig(settle_delay=0, operation_timeout=2, phase_timeout=5)


@pytest.fixture
def make_harness(fast_config):
    """Factory: ``make_harness(config=..., advisor=...)``."""

    def factory(config: OrchestratorConfig | None = None, advisor=None) -> Harness:
        config = config or fast_config
        site, router, tabs = load_fixture_ports(HOUSEHOLD_DIR)
        store = InMemoryStateStore()
        machine = StateMachine(store)
        orchestrator = RunOrchestrator(machine, router, tabs, config, advisor=advisor)
        return Harness(site, router, tabs, store, machine, orchestrator, config)

    return factory


@pytest.fixture
def harness(make_harness) -> Harness:
    return make_harness()
