"""Persisted agent record.

The Agent Store owns this record. The execution core reads it and mutates
only the status, run timestamps and scheduling fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from pyagenda.models.status import AgentStatus


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class Agent:
    """A persisted, typed unit of automatable work.

    Design: Value Object
        Stores hand out copies, so mutating an Agent returned from
        ``find()`` never changes what is persisted. Use the store's update
        operations instead.
    """

    id: str
    """Unique agent identifier."""

    agent_type: str
    """Type tag resolved through the AgentRegistry."""

    name: str = ""
    """Human readable name."""

    status: AgentStatus = AgentStatus.IDLE
    """Current lifecycle status."""

    schedule_expression: str | None = None
    """Cron expression, None when the agent has never been scheduled."""

    schedule_enabled: bool = False
    """Whether the scheduler should load this agent on startup."""

    last_run_at: datetime | None = None
    """When the most recent execution started."""

    next_run_at: datetime | None = None
    """When the scheduler expects to run the agent next."""

    configuration: dict[str, Any] = field(default_factory=dict)
    """Opaque, type-specific configuration."""

    description: str | None = None

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_scheduled(self) -> bool:
        """True when the agent should be picked up by the scheduler."""
        return self.schedule_enabled and bool(self.schedule_expression)

    def copy(self) -> Agent:
        """Return a detached copy (configuration included)."""
        return replace(self, configuration=dict(self.configuration))

    def __repr__(self) -> str:
        return (
            f"Agent(id={self.id!r}, agent_type={self.agent_type!r}, "
            f"status={self.status}, schedule={self.schedule_expression!r}, "
            f"enabled={self.schedule_enabled})"
        )
