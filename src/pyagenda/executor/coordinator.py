"""
ExecutionCoordinator - runs one agent execution end to end.

The coordinator owns the RunningSet (agent id -> RunContext). Membership
in that mapping is the only admission control in the system: at most one
execution per agent id may be in flight. Insertion happens synchronously
in ``claim()``, so a caller that checks and claims between two awaits can
never lose a race; removal always happens in a ``finally`` block.

Execution lifecycle:
    1. claim()        - admit the run (AlreadyRunning if the id is taken)
    2. resolve        - strategy from the registry, merged + validated config
    3. mark RUNNING   - record status and last_run_at, open a session
    4. execute        - await strategy.execute(config, ctx)
    5. record         - COMPLETED or ERROR, close the session, notify
    6. release        - drop the id from the RunningSet

The coordinator never retries. Failures surface as ExecutionFailure and
retry policy belongs to the Scheduler.

Example:
    ```python
    coordinator = ExecutionCoordinator(store, registry)
    outcome = await coordinator.start_agent("agent-1", Trigger.manual({"topic": "news"}))
    ```
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from uuid_extensions import uuid7

from pyagenda.core.context import CURRENT_RUN, RunContext, Trigger
from pyagenda.cron import validate_expression
from pyagenda.errors import (
    AgentNotFound,
    AlreadyRunning,
    ExecutionFailure,
    InvalidConfig,
)
from pyagenda.executor.outcome import Completed, ExecutionOutcome, Skipped
from pyagenda.models import Agent, AgentStatus, ExecutionSession
from pyagenda.models.session import STOPPED_MESSAGE
from pyagenda.notify import safe_emit
from pyagenda.registry import RESERVED_KEYS, AgentRegistry
from pyagenda.storage.base import AgentStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ExecutionCoordinator:
    """Executes agents and tracks which ones are in flight."""

    def __init__(
        self,
        store: AgentStore,
        registry: AgentRegistry,
        notifier: Any | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the coordinator.

        Args:
            store: Agent Store holding agent records and sessions
            registry: Resolves agent types to strategies
            notifier: Optional Notifier receiving lifecycle events
            clock: Returns the current time (UTC). Injected by tests.
        """
        self._store = store
        self._registry = registry
        self._notifier = notifier
        self._clock = clock or _utcnow
        self._running: dict[str, RunContext] = {}

    @property
    def store(self) -> AgentStore:
        return self._store

    @property
    def registry(self) -> AgentRegistry:
        return self._registry

    # ========================================================================
    # Admission
    # ========================================================================

    def claim(self, agent_id: str, trigger: Trigger | None = None) -> RunContext:
        """Admit a run for ``agent_id`` and return its RunContext.

        Synchronous on purpose: the check and the insertion happen without
        an intervening await.

        Raises:
            AlreadyRunning: If the agent is already in the RunningSet
        """
        if agent_id in self._running:
            raise AlreadyRunning(agent_id)

        ctx = RunContext(agent_id, trigger)
        ctx.started_at = self._clock()
        self._running[agent_id] = ctx
        return ctx

    def _release(self, ctx: RunContext) -> None:
        # A stopped run may already have been replaced by a fresh claim
        if self._running.get(ctx.agent_id) is ctx:
            del self._running[ctx.agent_id]

    def is_running(self, agent_id: str) -> bool:
        return agent_id in self._running

    @property
    def running_count(self) -> int:
        return len(self._running)

    def running_agents(self) -> list[dict[str, Any]]:
        """Snapshot of every in-flight execution."""
        now = self._clock()
        return [
            {
                "agent_id": ctx.agent_id,
                "job_id": ctx.job_id,
                "trigger": ctx.trigger.kind.value,
                "started_at": ctx.started_at,
                "elapsed_ms": ctx.elapsed_ms(now),
                "session_id": ctx.session_id,
                "stop_requested": ctx.stop_requested,
            }
            for ctx in self._running.values()
        ]

    # ========================================================================
    # Execution
    # ========================================================================

    async def start_agent(
        self, agent_id: str, trigger: Trigger | None = None
    ) -> ExecutionOutcome:
        """Run an agent once and wait for it to finish.

        Returns:
            Completed on success, Skipped if the agent was already running.

        Raises:
            AgentNotFound: If the agent does not exist
            UnknownAgentType: If no implementation is registered for its type
            InvalidConfig: If the merged configuration is rejected
            ExecutionFailure: If the strategy raised (original as __cause__)
        """
        try:
            ctx = self.claim(agent_id, trigger)
        except AlreadyRunning:
            logger.warning(f"Agent {agent_id} is already running, skipping start request")
            return Skipped(agent_id)

        return await self.run_claimed(ctx)

    async def run_claimed(self, ctx: RunContext) -> Completed:
        """Execute a run previously admitted with claim().

        The RunContext is released on every exit path.
        """
        token = CURRENT_RUN.set(ctx)
        try:
            return await self._execute(ctx)
        finally:
            CURRENT_RUN.reset(token)
            self._release(ctx)

    async def _execute(self, ctx: RunContext) -> Completed:
        agent_id = ctx.agent_id

        agent = await self._store.find(agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)

        strategy = self._registry.create_instance(agent.agent_type, self._store, agent)
        config = self._registry.execution_config(
            agent.agent_type, agent.configuration, ctx.trigger.overrides
        )
        if not self._registry.validate_config(agent.agent_type, config):
            raise InvalidConfig(agent.agent_type)

        ctx.strategy = strategy
        started_at = ctx.started_at

        await self._store.update_status(agent_id, AgentStatus.RUNNING, last_run_at=started_at)
        session = await self._store.start_session(agent_id, started_at, ctx.trigger.kind)
        ctx.session_id = session.id

        logger.info(f"Starting agent {agent_id} ({agent.agent_type}, trigger={ctx.trigger.kind})")
        await safe_emit(self._notifier, "agent_started", agent_id)

        try:
            result = await strategy.execute(config, ctx)
        except Exception as e:
            await self._record_failure(ctx, e)
            raise ExecutionFailure(agent_id, e) from e

        duration_ms = ctx.elapsed_ms(self._clock())

        if ctx.stop_requested:
            # stop_agent() already closed the session and marked the agent PAUSED
            logger.info(f"Agent {agent_id} finished after a stop request")
            return Completed(agent_id, result, duration_ms)

        await self._store.update_status(agent_id, AgentStatus.COMPLETED)
        await self._store.finish_session(
            session.id,
            self._clock(),
            success=True,
            output_summary=ExecutionSession.summarize(result),
        )
        logger.info(f"Agent {agent_id} completed in {duration_ms}ms")
        await safe_emit(self._notifier, "agent_completed", agent_id, duration_ms)

        return Completed(agent_id, result, duration_ms)

    async def _record_failure(self, ctx: RunContext, error: Exception) -> None:
        agent_id = ctx.agent_id
        error_message = str(error) or type(error).__name__

        if ctx.stop_requested:
            logger.info(f"Agent {agent_id} stopped: {error_message}")
            return

        logger.error(f"Agent {agent_id} failed: {error_message}")
        await self._store.update_status(agent_id, AgentStatus.ERROR)
        if ctx.session_id is not None:
            await self._store.finish_session(
                ctx.session_id, self._clock(), success=False, error_message=error_message
            )
        await safe_emit(self._notifier, "agent_failed", agent_id, error_message)

    async def stop_agent(self, agent_id: str) -> bool:
        """Request a cooperative stop of a running agent.

        Sets the run's stop token, calls the strategy's stop() hook, marks
        the agent PAUSED and closes its open session as failed.

        Returns:
            False if the agent was not running.
        """
        ctx = self._running.get(agent_id)
        if ctx is None:
            logger.warning(f"Agent {agent_id} is not running")
            return False

        ctx.request_stop()
        if ctx.strategy is not None:
            try:
                await ctx.strategy.stop()
            except Exception as e:
                logger.error(f"Stop hook for agent {agent_id} raised: {e}")

        self._release(ctx)

        await self._store.update_status(agent_id, AgentStatus.PAUSED)
        session = await self._store.latest_session(agent_id)
        if session is not None and session.is_open:
            await self._store.finish_session(
                session.id, self._clock(), success=False, error_message=STOPPED_MESSAGE
            )

        logger.info(f"Stopped agent {agent_id}")
        await safe_emit(self._notifier, "agent_paused", agent_id)
        return True

    # ========================================================================
    # Queries
    # ========================================================================

    async def get_agent_status(self, agent_id: str) -> dict[str, Any]:
        """Persisted status combined with live execution state.

        Raises:
            AgentNotFound: If the agent does not exist
        """
        agent = await self._store.find(agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)

        ctx = self._running.get(agent_id)
        return {
            "agent_id": agent.id,
            "name": agent.name,
            "agent_type": agent.agent_type,
            "status": agent.status.value,
            "is_running": ctx is not None,
            "running_since": ctx.started_at if ctx else None,
            "last_run_at": agent.last_run_at,
            "next_run_at": agent.next_run_at,
            "latest_session": await self._store.latest_session(agent_id),
        }

    async def execution_history(self, agent_id: str, limit: int = 10) -> list[ExecutionSession]:
        """Most recent execution sessions, newest first."""
        return await self._store.list_sessions(agent_id, limit=limit)

    # ========================================================================
    # Agent records
    # ========================================================================

    async def create_agent(
        self,
        agent_type: str,
        name: str,
        configuration: dict[str, Any] | None = None,
        description: str | None = None,
        schedule_expression: str | None = None,
        agent_id: str | None = None,
    ) -> Agent:
        """Create and persist an agent with its type's defaults applied.

        The schedule expression is stored but not enabled; use
        Scheduler.schedule_agent() to start scheduling.

        Raises:
            UnknownAgentType: If the type is not registered
            InvalidConfig: If the merged configuration is rejected
            InvalidSchedule: If the schedule expression does not parse
        """
        self._registry.require(agent_type)
        config = self._registry.merge_config(agent_type, configuration)
        if not self._registry.validate_config(agent_type, config):
            raise InvalidConfig(agent_type)
        if schedule_expression is not None:
            validate_expression(schedule_expression)

        now = self._clock()
        agent = Agent(
            id=agent_id or str(uuid7()),
            agent_type=agent_type,
            name=name,
            schedule_expression=schedule_expression,
            configuration=config,
            description=description,
            created_at=now,
            updated_at=now,
        )
        stored = await self._store.save(agent)
        logger.info(f"Created agent {stored.id} ({agent_type})")
        return stored

    async def update_agent_configuration(
        self, agent_id: str, configuration: dict[str, Any]
    ) -> dict[str, Any]:
        """Replace an agent's configuration.

        Type defaults are applied underneath the new values. Scheduler-owned
        keys (priority, paused) are carried over unless given explicitly.

        Returns:
            The configuration that was persisted.

        Raises:
            AgentNotFound: If the agent does not exist
            InvalidConfig: If the configuration is rejected
        """
        agent = await self._store.find(agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)

        carried = {k: v for k, v in agent.configuration.items() if k in RESERVED_KEYS}
        config = self._registry.merge_config(agent.agent_type, carried, configuration)
        if not self._registry.validate_config(agent.agent_type, config):
            raise InvalidConfig(agent.agent_type)

        await self._store.update_config(agent_id, config)
        logger.info(f"Updated configuration for agent {agent_id}")
        return config

    def __repr__(self) -> str:
        return f"ExecutionCoordinator(running={list(self._running)!r})"
