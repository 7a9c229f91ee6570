"""Task-local run context and cooperative cancellation.

Every execution gets a RunContext. It is the cancellation token handed to
the strategy's ``execute`` call and the RunningSet entry the coordinator
uses for admission control. It is also published through a ContextVar so
code deep in a strategy can reach it without threading it through every
call.

Design: Cooperative Cancellation
    A stop request only sets a flag. Strategies observe it at their own
    safe points (``raise_if_stopped()``, ``stop_requested``). Nothing is
    ever killed from the outside.
"""

from __future__ import annotations

import asyncio
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pyagenda.errors import ExecutionStopped
from pyagenda.models import TriggerKind


@dataclass
class Trigger:
    """Why an execution is starting, plus ad-hoc configuration overrides.

    Overrides take precedence over the stored configuration, which takes
    precedence over the agent type's defaults.
    """

    kind: TriggerKind = TriggerKind.MANUAL
    overrides: dict[str, Any] = field(default_factory=dict)
    job_id: str | None = None

    @classmethod
    def manual(cls, overrides: dict[str, Any] | None = None) -> Trigger:
        return cls(kind=TriggerKind.MANUAL, overrides=dict(overrides or {}))

    @classmethod
    def scheduled(cls, job_id: str | None = None) -> Trigger:
        return cls(kind=TriggerKind.SCHEDULE, job_id=job_id)

    @classmethod
    def missed(cls, job_id: str | None = None) -> Trigger:
        return cls(kind=TriggerKind.MISSED, job_id=job_id)


class RunContext:
    """State of a single in-flight execution.

    Created by ExecutionCoordinator.claim() and discarded when the run
    finishes. Strategies receive it as the second argument of execute().

    Usage:
        ```python
        async def execute(self, config, ctx):
            for item in work:
                ctx.raise_if_stopped()
                await handle(item)
        ```
    """

    def __init__(self, agent_id: str, trigger: Trigger | None = None):
        self.agent_id = agent_id
        self.trigger = trigger or Trigger()
        self.started_at = datetime.now(UTC)
        self.session_id: str | None = None
        self.strategy: Any | None = None
        self._stop_event = asyncio.Event()

    @property
    def job_id(self) -> str:
        return self.trigger.job_id or self.agent_id

    @property
    def stop_requested(self) -> bool:
        """True once stop_agent() was called for this run."""
        return self._stop_event.is_set()

    def request_stop(self) -> None:
        """Signal the strategy to stop at its next checkpoint."""
        self._stop_event.set()

    def raise_if_stopped(self) -> None:
        """Checkpoint helper: raise ExecutionStopped if a stop was requested."""
        if self._stop_event.is_set():
            raise ExecutionStopped(self.agent_id)

    async def wait_stopped(self, timeout: float | None = None) -> bool:
        """Wait until a stop is requested.

        Returns:
            True if stopped, False if the timeout elapsed first.
        """
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    def elapsed_ms(self, now: datetime | None = None) -> int:
        current = now or datetime.now(UTC)
        return int((current - self.started_at).total_seconds() * 1000)

    def __repr__(self) -> str:
        return (
            f"RunContext(agent_id={self.agent_id!r}, trigger={self.trigger.kind}, "
            f"stop_requested={self.stop_requested})"
        )


CURRENT_RUN: ContextVar[RunContext | None] = ContextVar("current_run", default=None)
"""Task-local RunContext for the execution in progress.

Each asyncio task spawned by the scheduler has its own copy, so concurrent
executions never see each other's context.
"""


def get_current_run() -> RunContext | None:
    """Return the RunContext of the execution in progress, or None."""
    return CURRENT_RUN.get()
