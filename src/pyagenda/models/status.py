"""Status enumerations for agent lifecycle and dispatch ordering.

Defines the persisted lifecycle state of an agent, the priority tiers used
to break ties in the ready queue, and the kinds of trigger that can start
an execution.
"""

from __future__ import annotations

from enum import Enum, IntEnum


class AgentStatus(Enum):
    """Persisted lifecycle state of an agent.

    Lifecycle:
        IDLE → RUNNING → COMPLETED/ERROR → RUNNING → ...
        RUNNING → PAUSED (manual stop)

    Only the execution core mutates this value once an agent exists.
    """

    IDLE = "IDLE"
    """Agent was created and has never run."""

    RUNNING = "RUNNING"
    """An execution is in flight."""

    COMPLETED = "COMPLETED"
    """The most recent execution finished successfully."""

    ERROR = "ERROR"
    """The most recent execution failed, or retries were exhausted."""

    PAUSED = "PAUSED"
    """An in-flight execution was stopped manually."""

    @property
    def is_active(self) -> bool:
        """Check if this status represents an execution in flight."""
        return self == AgentStatus.RUNNING

    def __str__(self) -> str:
        return self.value


class Priority(IntEnum):
    """Dispatch priority of a scheduled task.

    Ordering is total: CRITICAL > HIGH > NORMAL > LOW. Priority only breaks
    ties among tasks that are due in the same tick; it never pre-empts an
    execution that is already running.
    """

    LOW = 1
    NORMAL = 2
    HIGH = 3
    CRITICAL = 4

    @classmethod
    def parse(
        cls, value: str | int | Priority | None, default: Priority | None = None
    ) -> Priority:
        """Parse a priority from a name or number.

        Unknown or missing values fall back to ``default`` (NORMAL when
        no default is given).

        Example:
            Priority.parse("high")   # Priority.HIGH
            Priority.parse(4)        # Priority.CRITICAL
            Priority.parse("bogus")  # Priority.NORMAL
        """
        fallback = default if default is not None else cls.NORMAL
        if value is None:
            return fallback
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                return fallback
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            return fallback

    def __str__(self) -> str:
        return self.name


class TriggerKind(Enum):
    """What caused an execution to start."""

    SCHEDULE = "SCHEDULE"
    """Dispatched by the scheduler because the task was due."""

    MISSED = "MISSED"
    """Catch-up run for an occurrence missed while the process was down."""

    MANUAL = "MANUAL"
    """Started on demand, bypassing the schedule."""

    def __str__(self) -> str:
        return self.value
