"""In-memory scheduled task owned by the Scheduler.

A ScheduledTask is transient: it is rebuilt from the Agent Store on startup
and mutated by every dispatch tick and every execution outcome.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pyagenda.models.agent import Agent
from pyagenda.models.status import Priority


@dataclass
class ScheduledTask:
    """The scheduler's view of an agent's next eligible run.

    Invariant: at most one ScheduledTask exists per agent id. Scheduling an
    agent that already has a task replaces it.
    """

    agent_id: str

    agent: Agent
    """Snapshot of the agent record taken when the task was built."""

    next_run_time: datetime

    priority: Priority = Priority.NORMAL

    retry_count: int = 0
    """Consecutive failures. Reset to 0 on any success."""

    last_error: str | None = None

    backoff_until: datetime | None = None
    """Task is ineligible before this instant even when due."""

    paused: bool = False

    paused_at: datetime | None = None

    job_id: str = ""
    """Opaque job identifier used to correlate pause/resume requests.

    Defaults to the agent id.
    """

    last_run_at: datetime | None = None
    """When the scheduler last dispatched this task."""

    def __post_init__(self) -> None:
        if not self.job_id:
            self.job_id = self.agent_id

    @property
    def schedule_expression(self) -> str | None:
        return self.agent.schedule_expression

    def is_due(self, now: datetime) -> bool:
        return self.next_run_time <= now

    def is_backed_off(self, now: datetime) -> bool:
        return self.backoff_until is not None and self.backoff_until > now

    def sort_key(self) -> tuple[int, datetime]:
        """Ordering key: priority descending, then earliest next run."""
        return (-int(self.priority), self.next_run_time)

    def record_success(self) -> None:
        """Clear all failure bookkeeping."""
        self.retry_count = 0
        self.last_error = None
        self.backoff_until = None

    def snapshot(self, is_running: bool) -> dict[str, Any]:
        """Diagnostic view used by Scheduler.get_task_details()."""
        return {
            "agent_id": self.agent_id,
            "agent_name": self.agent.name,
            "job_id": self.job_id,
            "priority": self.priority.name,
            "next_run_time": self.next_run_time,
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "backoff_until": self.backoff_until,
            "last_run_at": self.last_run_at,
            "is_paused": self.paused,
            "paused_at": self.paused_at,
            "is_running": is_running,
        }

    def __repr__(self) -> str:
        return (
            f"ScheduledTask(agent_id={self.agent_id!r}, priority={self.priority}, "
            f"next_run_time={self.next_run_time.isoformat()}, "
            f"retry_count={self.retry_count}, paused={self.paused})"
        )
