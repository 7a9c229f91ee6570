"""
Pyagenda: scheduling and execution core for autonomous agents

Runs typed agent workloads on cron schedules and on demand, under a
bounded concurrency budget, with exponential backoff on failure and
pause/resume control.

Design Pattern: Façade Pattern
This module provides a simplified interface to the package, hiding the
wiring between storage, registry, coordinator and scheduler.

Example:
    ```python
    import asyncio
    from pyagenda import (
        AgentRegistry,
        AgentStrategy,
        ExecutionCoordinator,
        Scheduler,
        SchedulerConfig,
        SqliteAgentStore,
    )

    registry = AgentRegistry()

    @registry.register_type("digest", default_config=lambda: {"feed": "news"})
    class DigestAgent(AgentStrategy):
        async def execute(self, config, ctx):
            ctx.raise_if_stopped()
            return f"digest of {config['feed']}"

    async def main():
        store = SqliteAgentStore("agents.db")
        await store.connect()

        coordinator = ExecutionCoordinator(store, registry)
        agent = await coordinator.create_agent("digest", "Morning digest")

        scheduler = Scheduler(store, coordinator, SchedulerConfig.from_env())
        handle = await scheduler.start()
        await scheduler.schedule_agent(agent.id, "0 7 * * *", priority="high")

        await asyncio.sleep(3600)
        await handle.shutdown()
        await store.close()

    asyncio.run(main())
    ```
"""

# Models
from pyagenda.models import (
    Agent,
    AgentStatus,
    BackoffPolicy,
    ExecutionSession,
    Priority,
    ScheduledTask,
    TriggerKind,
)

# Errors
from pyagenda.errors import (
    AgentNotFound,
    AlreadyRunning,
    ExecutionFailure,
    ExecutionStopped,
    InvalidConfig,
    InvalidSchedule,
    InvalidState,
    PyagendaError,
    TaskNotFound,
    UnknownAgentType,
)

# Core types
from pyagenda.core import AgentStrategy, RunContext, Trigger, get_current_run

# Registry (Registry + Factory)
from pyagenda.registry import AgentRegistry, AgentTypeDescriptor

# Storage (Adapter pattern)
from pyagenda.storage import AgentStore, InMemoryAgentStore, StorageError
from pyagenda.storage.sqlite import SqliteAgentStore

# Configuration and notifications
from pyagenda.config import SchedulerConfig
from pyagenda.notify import AgentEvent, EventQueueNotifier, Notifier

# Execution
from pyagenda.executor import (
    Completed,
    ExecutionCoordinator,
    ExecutionOutcome,
    Scheduler,
    SchedulerHandle,
    Skipped,
)

# Version
__version__ = "0.1.0"

__all__ = [
    # Models
    "Agent",
    "AgentStatus",
    "BackoffPolicy",
    "ExecutionSession",
    "Priority",
    "ScheduledTask",
    "TriggerKind",

    # Errors
    "PyagendaError",
    "AgentNotFound",
    "AlreadyRunning",
    "ExecutionFailure",
    "ExecutionStopped",
    "InvalidConfig",
    "InvalidSchedule",
    "InvalidState",
    "TaskNotFound",
    "UnknownAgentType",

    # Core types
    "AgentStrategy",
    "RunContext",
    "Trigger",
    "get_current_run",

    # Registry
    "AgentRegistry",
    "AgentTypeDescriptor",

    # Storage
    "AgentStore",
    "StorageError",
    "InMemoryAgentStore",
    "SqliteAgentStore",

    # Configuration and notifications
    "SchedulerConfig",
    "Notifier",
    "EventQueueNotifier",
    "AgentEvent",

    # Execution
    "ExecutionCoordinator",
    "Completed",
    "Skipped",
    "ExecutionOutcome",
    "Scheduler",
    "SchedulerHandle",

    # Metadata
    "__version__",
]
