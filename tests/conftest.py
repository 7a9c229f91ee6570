"""
Pytest configuration and fixtures for pyagenda tests.

Provides a controllable clock, storage backends, a registry of sample
agent types, and pre-wired coordinator/scheduler instances.
"""

import asyncio
from collections import defaultdict
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from pyagenda.config import SchedulerConfig
from pyagenda.core import AgentStrategy, get_current_run
from pyagenda.executor import ExecutionCoordinator, Scheduler
from pyagenda.models import Agent, Priority
from pyagenda.notify import EventQueueNotifier
from pyagenda.registry import AgentRegistry
from pyagenda.storage import InMemoryAgentStore
from pyagenda.storage.sqlite import SqliteAgentStore

START = datetime(2026, 1, 1, 0, 0, 30, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock injected as ``clock=`` into the core."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.now += timedelta(seconds=seconds, **kwargs)
        return self.now


class Recorder:
    """Records what the sample strategies did."""

    def __init__(self):
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.contexts = []
        self.gates: dict[str, asyncio.Event] = defaultdict(asyncio.Event)
        self.started: dict[str, asyncio.Event] = defaultdict(asyncio.Event)
        self.active = 0
        self.peak = 0
        self.all_released = False

    def count(self, agent_id: str) -> int:
        return sum(1 for called_id, _ in self.calls if called_id == agent_id)

    def release(self, agent_id: str) -> None:
        self.gates[agent_id].set()

    def release_all(self) -> None:
        self.all_released = True
        for gate in self.gates.values():
            gate.set()

    def is_released(self, agent_id: str) -> bool:
        return self.all_released or self.gates[agent_id].is_set()

    async def wait_started(self, agent_id: str, timeout: float = 1.0) -> None:
        await asyncio.wait_for(self.started[agent_id].wait(), timeout=timeout)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def registry(recorder: Recorder) -> AgentRegistry:
    """Registry with the sample agent types used across the suite.

    - echo: returns "<prefix> <name>"
    - failing: always raises RuntimeError("boom")
    - blocking: runs until released through the recorder or stopped
    - strict: requires a "topic" key, HIGH priority by default
    """
    registry = AgentRegistry()

    @registry.register_type("echo", default_config=lambda: {"prefix": ">"})
    class EchoAgent(AgentStrategy):
        """Echoes its name."""

        async def execute(self, config, ctx):
            recorder.calls.append((self.agent_id, dict(config)))
            recorder.contexts.append(get_current_run())
            return f"{config['prefix']} {self.agent.name}"

    @registry.register_type("failing")
    class FailingAgent(AgentStrategy):
        async def execute(self, config, ctx):
            recorder.calls.append((self.agent_id, dict(config)))
            raise RuntimeError("boom")

    @registry.register_type("blocking")
    class BlockingAgent(AgentStrategy):
        async def execute(self, config, ctx):
            recorder.calls.append((self.agent_id, dict(config)))
            recorder.active += 1
            recorder.peak = max(recorder.peak, recorder.active)
            recorder.started[self.agent_id].set()
            try:
                while not recorder.is_released(self.agent_id):
                    ctx.raise_if_stopped()
                    await asyncio.sleep(0.001)
                return "released"
            finally:
                recorder.active -= 1

    @registry.register_type(
        "strict",
        validate_config=lambda config: bool(config.get("topic")),
        default_priority=Priority.HIGH,
    )
    class StrictAgent(AgentStrategy):
        async def execute(self, config, ctx):
            recorder.calls.append((self.agent_id, dict(config)))
            return config["topic"]

    return registry


@pytest.fixture
async def store() -> AsyncGenerator[InMemoryAgentStore, None]:
    """Async in-memory store fixture with automatic cleanup."""
    store = InMemoryAgentStore()
    yield store
    await store.reset()


@pytest.fixture
async def sqlite_store() -> AsyncGenerator[SqliteAgentStore, None]:
    """Async SQLite in-memory store fixture with automatic cleanup."""
    store = await SqliteAgentStore.in_memory()
    yield store
    await store.close()


@pytest.fixture
def add_agent(store):
    """Factory saving an agent record into the in-memory store."""

    async def _add(agent_id: str, agent_type: str = "echo", **fields) -> Agent:
        fields.setdefault("name", agent_id.title())
        return await store.save(Agent(id=agent_id, agent_type=agent_type, **fields))

    return _add


@pytest.fixture
def notifier() -> EventQueueNotifier:
    return EventQueueNotifier()


@pytest.fixture
def coordinator(store, registry, notifier, clock) -> ExecutionCoordinator:
    return ExecutionCoordinator(store, registry, notifier=notifier, clock=clock)


@pytest.fixture
async def make_scheduler(store, coordinator, notifier, clock, recorder):
    """Factory building schedulers that are torn down after the test.

    The tick period is one hour so the background loop never fires on
    its own; tests drive dispatch with tick().
    """
    created: list[Scheduler] = []

    def _make(**overrides) -> Scheduler:
        settings = {
            "check_interval": 3600.0,
            "max_concurrent_agents": 5,
            "max_retries": 3,
            "base_backoff_delay_ms": 1000,
            "max_backoff_delay_ms": 10000,
        }
        settings.update(overrides)
        scheduler = Scheduler(
            store,
            coordinator,
            SchedulerConfig(**settings),
            notifier=notifier,
            clock=clock,
        )
        created.append(scheduler)
        return scheduler

    yield _make

    recorder.release_all()
    for scheduler in created:
        await scheduler.stop()
        await scheduler.wait_for_running()


@pytest.fixture
def scheduler(make_scheduler) -> Scheduler:
    return make_scheduler()
