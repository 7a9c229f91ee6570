"""Strategy interface implemented by every agent type.

Design Pattern: Strategy Pattern
The coordinator only knows this interface. Concrete agent behavior
(content generation, analytics, support triage, ...) lives in subclasses
registered with the AgentRegistry.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pyagenda.models import Agent

if TYPE_CHECKING:
    from pyagenda.core.context import RunContext
    from pyagenda.storage.base import AgentStore

logger = logging.getLogger(__name__)


@dataclass
class StrategyEvent:
    """An entry in a strategy's in-memory event log."""

    kind: str
    message: str
    level: str = "info"
    data: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class AgentStrategy(ABC):
    """Base class for executable agent behavior.

    Subclasses implement ``execute``. They should call
    ``ctx.raise_if_stopped()`` (or check ``ctx.stop_requested``) at safe
    points so that a manual stop takes effect.

    Example:
        ```python
        class DigestAgent(AgentStrategy):
            async def execute(self, config, ctx):
                items = await fetch(config["feed"])
                ctx.raise_if_stopped()
                return await summarize(items)
        ```
    """

    def __init__(self, store: AgentStore, agent: Agent):
        self.store = store
        self.agent = agent
        self.events: list[StrategyEvent] = []
        self.stop_requested = False

    @property
    def agent_id(self) -> str:
        return self.agent.id

    @abstractmethod
    async def execute(self, config: dict[str, Any], ctx: RunContext) -> Any:
        """Run the agent once and return its result payload."""

    async def stop(self) -> None:
        """Stop hook called by ExecutionCoordinator.stop_agent().

        The default only records the request. Override to release
        resources or abort outstanding I/O early.
        """
        self.stop_requested = True
        self.log_event("stop_requested", f"Stopping agent {self.agent_id}")

    def log_event(self, kind: str, message: str, data: Any = None, level: str = "info") -> None:
        """Record an event and mirror it to the module logger."""
        self.events.append(StrategyEvent(kind=kind, message=message, level=level, data=data))
        log = getattr(logger, level, logger.info)
        log(f"[{self.agent_id}] {kind}: {message}")
