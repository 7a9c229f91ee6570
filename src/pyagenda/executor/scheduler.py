"""
Scheduler - periodic priority dispatch of scheduled agents.

The Scheduler owns one ScheduledTask per scheduled agent. On every tick
it picks the due tasks that may run, hands them to the
ExecutionCoordinator under a global concurrency ceiling, and folds each
execution's outcome back into retry/backoff bookkeeping.

Task states:
    Pending -> Ready -> Executing -> Pending   (success, next cron occurrence)
                                  -> Backoff   (failure within the retry budget)
    Backoff -> Pending once backoff_until has elapsed
    Paused is an overlay: a paused task is never Ready.

Design: Single event loop, no locks
    All bookkeeping between two awaits runs uninterrupted. A tick decides,
    claims and spawns in one synchronous stretch, so two ticks can never
    admit the same agent and the ceiling cannot be overshot.

Example:
    ```python
    scheduler = Scheduler(store, coordinator, SchedulerConfig.from_env())
    handle = await scheduler.start()

    await scheduler.schedule_agent("agent-1", "*/5 * * * *", priority="high")

    await handle.shutdown()
    ```
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from typing import Any

from pyagenda.config import SchedulerConfig
from pyagenda.core.context import RunContext, Trigger
from pyagenda.cron import next_occurrence, validate_expression
from pyagenda.errors import (
    AgentNotFound,
    ExecutionFailure,
    ExecutionStopped,
    InvalidConfig,
    InvalidSchedule,
    InvalidState,
    TaskNotFound,
)
from pyagenda.executor.coordinator import ExecutionCoordinator
from pyagenda.executor.outcome import ExecutionOutcome
from pyagenda.models import Agent, AgentStatus, Priority, ScheduledTask
from pyagenda.notify import safe_emit
from pyagenda.storage.base import AgentStore, StorageError

logger = logging.getLogger(__name__)


def _log_task_error(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error(f"Background execution task failed: {task.exception()!r}")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Scheduler:
    """Owns the scheduled task set and the dispatch loop.

    One Scheduler per process. Construct it explicitly and pass it to
    whatever needs it (HTTP handlers, CLI commands); there is no global
    instance.
    """

    def __init__(
        self,
        store: AgentStore,
        coordinator: ExecutionCoordinator,
        config: SchedulerConfig | None = None,
        notifier: Any | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the scheduler.

        Args:
            store: Agent Store (usually the coordinator's)
            coordinator: Runs the executions and owns the RunningSet
            config: Scheduler configuration, defaults to SchedulerConfig()
            notifier: Optional Notifier for pause/resume and status events
            clock: Returns the current time (UTC). Injected by tests.
        """
        self._store = store
        self._coordinator = coordinator
        self._config = config or SchedulerConfig()
        self._notifier = notifier
        self._clock = clock or _utcnow
        self._policy = self._config.backoff_policy()

        self._tasks: dict[str, ScheduledTask] = {}
        self._missed: set[str] = set()
        self._background_tasks: set[asyncio.Task] = set()
        self._loop_task: asyncio.Task | None = None
        self._shutdown_event = asyncio.Event()
        self._running = False

    @classmethod
    async def create(
        cls,
        store: AgentStore,
        coordinator: ExecutionCoordinator,
        config: SchedulerConfig | None = None,
        notifier: Any | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> Scheduler:
        """Build a scheduler and start it when ``config.auto_start`` is set."""
        scheduler = cls(store, coordinator, config, notifier, clock)
        if scheduler._config.auto_start:
            await scheduler.start()
        return scheduler

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self) -> SchedulerHandle:
        """Load scheduled agents, run one tick, then start the periodic loop.

        Returns a SchedulerHandle immediately after the first tick.
        """
        if self._running and self._loop_task is not None:
            logger.warning("Scheduler is already running")
            return SchedulerHandle(self, self._loop_task)

        self._running = True
        self._shutdown_event.clear()

        await self._load_scheduled_agents()
        await self.tick()

        self._loop_task = asyncio.create_task(self._run())
        logger.info(
            f"Scheduler started: {len(self._tasks)} tasks, "
            f"max_concurrent={self._config.max_concurrent_agents}, "
            f"check_interval={self._config.check_interval}s"
        )
        return SchedulerHandle(self, self._loop_task)

    async def _run(self) -> None:
        try:
            while self._running:
                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(), timeout=self._config.check_interval
                    )
                except TimeoutError:
                    await self.tick()
                    continue
                break
        finally:
            logger.info("Scheduler loop stopped")

    async def stop(self, wait: bool = True) -> None:
        """Stop dispatching and tear down the task set.

        Args:
            wait: Also wait for in-flight executions to finish
        """
        if not self._running:
            return

        logger.info("Scheduler stopping...")
        self._running = False
        self._shutdown_event.set()

        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        if wait:
            await self.wait_for_running()

        self._tasks.clear()
        self._missed.clear()
        logger.info("Scheduler stopped")

    async def wait_for_running(self) -> None:
        """Wait until every execution spawned by the scheduler has finished."""
        while True:
            pending = [task for task in self._background_tasks if not task.done()]
            if not pending:
                return
            logger.debug(f"Waiting for {len(pending)} executions")
            await asyncio.gather(*pending, return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        task.add_done_callback(_log_task_error)
        return task

    # ========================================================================
    # Startup reconciliation
    # ========================================================================

    async def _load_scheduled_agents(self) -> None:
        now = self._clock()
        agents = await self._store.find_scheduled()

        for agent in agents:
            try:
                task = await self._build_task(agent, now)
            except InvalidSchedule as e:
                logger.error(f"Skipping agent {agent.id}: {e}")
                continue

            if task is None:
                continue

            self._tasks[agent.id] = task
            logger.debug(f"Loaded {task}")

        logger.info(f"Loaded {len(self._tasks)} scheduled agents")

    async def _build_task(self, agent: Agent, now: datetime) -> ScheduledTask | None:
        if not self._coordinator.registry.has(agent.agent_type):
            logger.warning(
                f"Skipping agent {agent.id}: no implementation for type {agent.agent_type}"
            )
            return None

        expression = agent.schedule_expression
        validate_expression(expression)

        if agent.status == AgentStatus.RUNNING and not self._coordinator.is_running(agent.id):
            # Left over from a process that died mid-execution
            logger.warning(f"Agent {agent.id} was marked running at startup, resetting to idle")
            await self._store.update_status(agent.id, AgentStatus.IDLE)

        next_run = agent.next_run_at
        if next_run is not None and next_run < now:
            if self._config.run_missed_on_startup:
                logger.info(f"Agent {agent.id} missed its run at {next_run.isoformat()}")
                self._missed.add(agent.id)
            else:
                next_run = None

        if next_run is None:
            next_run = next_occurrence(expression, now)
            await self._store.update_next_run(agent.id, next_run)
            agent.next_run_at = next_run

        paused = bool(agent.configuration.get("paused", False))
        return ScheduledTask(
            agent_id=agent.id,
            agent=agent,
            next_run_time=next_run,
            priority=self._priority_for(agent),
            paused=paused,
            paused_at=now if paused else None,
        )

    def _priority_for(self, agent: Agent) -> Priority:
        descriptor = self._coordinator.registry.resolve(agent.agent_type)
        default = descriptor.default_priority if descriptor else Priority.NORMAL
        return Priority.parse(agent.configuration.get("priority"), default)

    # ========================================================================
    # Dispatch
    # ========================================================================

    async def tick(self) -> list[str]:
        """Run one dispatch pass.

        Errors (typically store failures) are logged and end the pass
        early; the next tick starts from scratch.

        Returns:
            Ids of the agents dispatched by this pass.
        """
        dispatched: list[str] = []
        try:
            await self._dispatch(self._clock(), dispatched)
        except Exception as e:
            logger.error(f"Scheduler tick failed: {e}")
        else:
            await safe_emit(self._notifier, "scheduler_status", self.get_stats())
        return dispatched

    async def _dispatch(self, now: datetime, dispatched: list[str]) -> None:
        coordinator = self._coordinator

        ordered = sorted(self._tasks.values(), key=ScheduledTask.sort_key)
        ready = [
            task
            for task in ordered
            if task.is_due(now)
            and not task.is_backed_off(now)
            and not task.paused
            and not coordinator.is_running(task.agent_id)
        ]

        available = max(0, self._config.max_concurrent_agents - coordinator.running_count)
        selected = ready[:available]
        deferred = {task.agent_id for task in ready[available:]}

        if deferred:
            logger.debug(f"Concurrency ceiling reached, deferring {sorted(deferred)}")

        # Claim and spawn without awaiting so admission cannot interleave
        for task in selected:
            if task.agent_id in self._missed:
                self._missed.discard(task.agent_id)
                trigger = Trigger.missed(task.job_id)
            else:
                trigger = Trigger.scheduled(task.job_id)

            ctx = coordinator.claim(task.agent_id, trigger)
            task.last_run_at = now
            self._spawn(self._execute_task(task.agent_id, ctx))
            dispatched.append(task.agent_id)
            logger.debug(f"Dispatched agent {task.agent_id} ({task.priority})")

        for task in list(self._tasks.values()):
            if not task.is_due(now) or task.agent_id in deferred:
                continue
            try:
                next_run = next_occurrence(task.schedule_expression, now)
            except InvalidSchedule as e:
                logger.error(f"Dropping task for agent {task.agent_id}: {e}")
                self._tasks.pop(task.agent_id, None)
                continue
            task.next_run_time = next_run
            task.agent.next_run_at = next_run
            await self._store.update_next_run(task.agent_id, next_run)

    async def _execute_task(self, agent_id: str, ctx: RunContext) -> None:
        try:
            await self._coordinator.run_claimed(ctx)
        except ExecutionFailure as e:
            if isinstance(e.original, ExecutionStopped) or ctx.stop_requested:
                logger.info(f"Scheduled run of agent {agent_id} was stopped")
                return
            await self._handle_failure(agent_id, e.error_message)
        except StorageError as e:
            logger.warning(
                f"Store unavailable during run of agent {agent_id}, retrying next tick: {e}"
            )
        except Exception as e:
            logger.error(f"Scheduled run of agent {agent_id} could not execute: {e}")
            await self._handle_failure(agent_id, str(e) or type(e).__name__)
        else:
            task = self._tasks.get(agent_id)
            if task is not None:
                task.record_success()

    async def _handle_failure(self, agent_id: str, error_message: str) -> None:
        task = self._tasks.get(agent_id)
        if task is None:
            return

        task.retry_count += 1
        task.last_error = error_message

        now = self._clock()
        backoff_until = self._policy.backoff_until(task.retry_count, now)
        if backoff_until is not None:
            task.backoff_until = backoff_until
            logger.warning(
                f"Agent {agent_id} failed (retry {task.retry_count}/{self._policy.max_retries}), "
                f"backing off until {backoff_until.isoformat()}"
            )
            return

        logger.error(
            f"Agent {agent_id} exceeded max retries ({self._policy.max_retries}), unscheduling"
        )
        try:
            await self._store.update_status(agent_id, AgentStatus.ERROR)
            await self.unschedule_agent(agent_id)
        except StorageError as e:
            # Task stays scheduled so the next failure retries the write
            logger.error(f"Could not record exhausted retries for agent {agent_id}: {e}")

    # ========================================================================
    # Scheduling operations
    # ========================================================================

    async def schedule_agent(
        self,
        agent_id: str,
        expression: str,
        priority: Priority | str | int | None = None,
        enabled: bool = True,
    ) -> datetime | None:
        """Schedule (or reschedule) an agent.

        Args:
            agent_id: Agent to schedule
            expression: Cron expression
            priority: Dispatch priority. None keeps the configured priority
                (configuration["priority"], else the type default, else NORMAL).
            enabled: False stores the expression but unschedules the agent

        Returns:
            The next run time, or None when ``enabled`` is False.

        Raises:
            InvalidSchedule: If the expression does not parse
            AgentNotFound: If the agent does not exist
            UnknownAgentType: If the agent's type is not registered
            InvalidConfig: If the agent's configuration is rejected by its type
        """
        validate_expression(expression)

        agent = await self._store.find(agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)
        registry = self._coordinator.registry
        registry.require(agent.agent_type)
        if not registry.validate_config(
            agent.agent_type, registry.merge_config(agent.agent_type, agent.configuration)
        ):
            raise InvalidConfig(agent.agent_type)

        if not enabled:
            self._tasks.pop(agent_id, None)
            self._missed.discard(agent_id)
            await self._store.update_schedule(agent_id, expression, False, None)
            logger.info(f"Stored disabled schedule for agent {agent_id}")
            return None

        now = self._clock()
        next_run = next_occurrence(expression, now)

        config = dict(agent.configuration)
        if priority is not None:
            config["priority"] = Priority.parse(priority).name
        config.pop("paused", None)
        if config != agent.configuration:
            await self._store.update_config(agent_id, config)
        await self._store.update_schedule(agent_id, expression, True, next_run)

        agent.configuration = config
        agent.schedule_expression = expression
        agent.schedule_enabled = True
        agent.next_run_at = next_run

        task = ScheduledTask(
            agent_id=agent_id,
            agent=agent,
            next_run_time=next_run,
            priority=self._priority_for(agent),
        )
        self._tasks[agent_id] = task
        self._missed.discard(agent_id)

        logger.info(
            f"Scheduled agent {agent_id} with {expression!r} "
            f"(priority={task.priority}, next run {next_run.isoformat()})"
        )
        return next_run

    async def unschedule_agent(self, agent_id: str) -> bool:
        """Remove an agent's task and disable its persisted schedule.

        Idempotent. An execution already in flight is not affected.

        Returns:
            True if a task was removed.
        """
        agent = await self._store.find(agent_id)
        if agent is not None and (agent.schedule_enabled or agent.next_run_at is not None):
            await self._store.update_schedule(agent_id, agent.schedule_expression, False, None)

        task = self._tasks.pop(agent_id, None)
        self._missed.discard(agent_id)

        if task is not None:
            logger.info(f"Unscheduled agent {agent_id}")
        return task is not None

    async def pause_job(self, agent_id: str, job_id: str | None = None) -> None:
        """Pause an idle task.

        Raises:
            TaskNotFound: If the agent has no scheduled task
            InvalidState: If the agent is currently executing
        """
        task = self._require_task(agent_id)
        if self._coordinator.is_running(agent_id):
            raise InvalidState(agent_id, f"Cannot pause agent {agent_id} while it is running")

        if task.paused:
            logger.debug(f"Agent {agent_id} is already paused")
            return

        task.paused = True
        task.paused_at = self._clock()
        if job_id:
            task.job_id = job_id

        await self._persist_paused(task, True)
        logger.info(f"Paused job {task.job_id} for agent {agent_id}")
        await safe_emit(self._notifier, "agent_paused", agent_id)

    async def resume_job(self, agent_id: str, job_id: str | None = None) -> None:
        """Resume a paused task, recomputing its next run if it drifted into the past.

        Raises:
            TaskNotFound: If the agent has no scheduled task
            InvalidState: If the task is not paused
        """
        task = self._require_task(agent_id)
        if not task.paused:
            raise InvalidState(agent_id, f"Job for agent {agent_id} is not paused")
        if job_id and job_id != task.job_id:
            logger.warning(
                f"Resuming agent {agent_id} with job id {job_id}, paused as {task.job_id}"
            )

        task.paused = False
        task.paused_at = None

        now = self._clock()
        if task.next_run_time < now:
            task.next_run_time = next_occurrence(task.schedule_expression, now)
            task.agent.next_run_at = task.next_run_time
            await self._store.update_next_run(agent_id, task.next_run_time)

        await self._persist_paused(task, False)
        logger.info(f"Resumed job {task.job_id} for agent {agent_id}")
        await safe_emit(self._notifier, "agent_resumed", agent_id)

    async def _persist_paused(self, task: ScheduledTask, paused: bool) -> None:
        config = dict(task.agent.configuration)
        if paused:
            config["paused"] = True
        else:
            config.pop("paused", None)
        task.agent.configuration = config
        await self._store.update_config(task.agent_id, config)

    def _require_task(self, agent_id: str) -> ScheduledTask:
        task = self._tasks.get(agent_id)
        if task is None:
            raise TaskNotFound(agent_id)
        return task

    async def run_agent_now(
        self, agent_id: str, overrides: dict[str, Any] | None = None
    ) -> ExecutionOutcome:
        """Execute an agent immediately, outside its schedule.

        Does not touch the agent's ScheduledTask. If the agent is already
        running the call is a logged no-op returning Skipped.

        Raises:
            AgentNotFound: If the agent does not exist
            ExecutionFailure: If the strategy raised
        """
        logger.info(f"Running agent {agent_id} now")
        return await self._coordinator.start_agent(agent_id, Trigger.manual(overrides))

    def calculate_next_run_time(self, expression: str, after: datetime | None = None) -> datetime:
        """Next occurrence of ``expression`` after ``after`` (default: now)."""
        return next_occurrence(expression, after or self._clock())

    # ========================================================================
    # Introspection
    # ========================================================================

    def has_task(self, agent_id: str) -> bool:
        return agent_id in self._tasks

    def get_stats(self) -> dict[str, Any]:
        now = self._clock()
        queued = sum(
            1
            for task in self._tasks.values()
            if task.is_due(now)
            and not task.is_backed_off(now)
            and not task.paused
            and not self._coordinator.is_running(task.agent_id)
        )
        return {
            "is_running": self._running,
            "scheduled_jobs_count": len(self._tasks),
            "running_agents_count": self._coordinator.running_count,
            "queue_length": queued,
            "paused_jobs_count": sum(1 for task in self._tasks.values() if task.paused),
            "max_concurrent_agents": self._config.max_concurrent_agents,
        }

    def get_task_details(self) -> list[dict[str, Any]]:
        """Per-task diagnostics in dispatch order."""
        return [
            task.snapshot(self._coordinator.is_running(task.agent_id))
            for task in sorted(self._tasks.values(), key=ScheduledTask.sort_key)
        ]

    def get_paused_jobs(self) -> list[dict[str, Any]]:
        return [
            {
                "agent_id": task.agent_id,
                "agent_name": task.agent.name,
                "job_id": task.job_id,
                "paused_at": task.paused_at,
            }
            for task in self._tasks.values()
            if task.paused
        ]

    def __repr__(self) -> str:
        return f"Scheduler(tasks={len(self._tasks)}, running={self._running})"


class SchedulerHandle:
    """Handle for controlling a started scheduler.

    Usage:
        handle = await scheduler.start()
        await handle.shutdown()
    """

    def __init__(self, scheduler: Scheduler, task: asyncio.Task):
        self._scheduler = scheduler
        self._task = task

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    def is_running(self) -> bool:
        """Return True while the dispatch loop task is alive."""
        return not self._task.done()

    async def shutdown(self, wait: bool = True) -> None:
        """Stop the scheduler and wait for the loop to exit."""
        await self._scheduler.stop(wait=wait)
        logger.info("Scheduler handle closed")

    def abort(self) -> None:
        """Cancel the dispatch loop without waiting for executions."""
        self._scheduler._running = False
        self._task.cancel()
