"""Notification channel for live agent and scheduler status.

Observers (a websocket push service, a dashboard, a test) implement the
Notifier protocol. Every emission is fire-and-forget: ``safe_emit``
catches and logs whatever a notifier raises so that a missing or broken
listener can never affect scheduling or execution.

Example:
    ```python
    notifier = EventQueueNotifier()
    scheduler = Scheduler(store, coordinator, notifier=notifier)

    event = await notifier.queue.get()
    print(event.kind, event.agent_id, event.data)
    ```
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Notifier(Protocol):
    """Receiver of agent lifecycle and scheduler status events.

    Methods may be plain or async. Implementations only need the methods
    they care about; missing methods are skipped by ``safe_emit``.
    """

    def agent_started(self, agent_id: str) -> Any: ...

    def agent_completed(self, agent_id: str, duration_ms: int) -> Any: ...

    def agent_failed(self, agent_id: str, error_message: str) -> Any: ...

    def agent_paused(self, agent_id: str) -> Any: ...

    def agent_resumed(self, agent_id: str) -> Any: ...

    def scheduler_status(self, stats: dict[str, Any]) -> Any: ...


async def safe_emit(notifier: Any | None, event: str, *args: Any) -> None:
    """Deliver one event, swallowing and logging any failure.

    Args:
        notifier: Notifier instance or None
        event: Method name, e.g. "agent_started"
        *args: Event arguments
    """
    if notifier is None:
        return

    handler = getattr(notifier, event, None)
    if handler is None:
        return

    try:
        result = handler(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.warning(f"Notifier failed to deliver {event}: {e}")


@dataclass
class AgentEvent:
    """A notification captured by EventQueueNotifier."""

    kind: str
    agent_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class EventQueueNotifier:
    """Notifier that pushes AgentEvent records onto an asyncio.Queue.

    When the queue is full the oldest event is dropped so that a slow
    consumer never blocks the scheduler.
    """

    def __init__(self, maxsize: int = 1000):
        self.queue: asyncio.Queue[AgentEvent] = asyncio.Queue(maxsize=maxsize)

    def _put(self, event: AgentEvent) -> None:
        if self.queue.full():
            self.queue.get_nowait()
        self.queue.put_nowait(event)

    def agent_started(self, agent_id: str) -> None:
        self._put(AgentEvent("agent_started", agent_id, {"status": "running"}))

    def agent_completed(self, agent_id: str, duration_ms: int) -> None:
        self._put(
            AgentEvent(
                "agent_completed", agent_id, {"status": "completed", "duration_ms": duration_ms}
            )
        )

    def agent_failed(self, agent_id: str, error_message: str) -> None:
        self._put(AgentEvent("agent_failed", agent_id, {"status": "error", "error": error_message}))

    def agent_paused(self, agent_id: str) -> None:
        self._put(AgentEvent("agent_paused", agent_id, {"status": "paused"}))

    def agent_resumed(self, agent_id: str) -> None:
        self._put(AgentEvent("agent_resumed", agent_id, {"status": "resumed"}))

    def scheduler_status(self, stats: dict[str, Any]) -> None:
        self._put(AgentEvent("scheduler_status", None, dict(stats)))

    def drain(self) -> list[AgentEvent]:
        """Remove and return every queued event."""
        events = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events
