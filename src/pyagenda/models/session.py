"""Execution session records.

One ExecutionSession is written per execution attempt so operators can see
the history of an agent, and so a manual stop can close out the run that
was in flight.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pyagenda.models.status import TriggerKind

OUTPUT_SUMMARY_LIMIT = 1000
"""Maximum number of characters kept from an execution result."""

STOPPED_MESSAGE = "Agent execution manually stopped"


@dataclass
class ExecutionSession:
    """A single execution attempt of an agent."""

    id: str
    """Session identifier (uuid7 string, time ordered)."""

    agent_id: str

    started_at: datetime

    trigger: TriggerKind = TriggerKind.MANUAL

    completed_at: datetime | None = None
    """None while the execution is still in flight."""

    success: bool | None = None
    """None while in flight, then True/False."""

    duration_ms: int | None = None

    error_message: str | None = None

    output_summary: str | None = None

    @property
    def is_open(self) -> bool:
        """True while the session has not been closed out."""
        return self.completed_at is None

    @staticmethod
    def summarize(result: object) -> str | None:
        """Build a bounded text summary of an execution result."""
        if result is None:
            return None
        return repr(result)[:OUTPUT_SUMMARY_LIMIT]

    def __repr__(self) -> str:
        return (
            f"ExecutionSession(id={self.id!r}, agent_id={self.agent_id!r}, "
            f"trigger={self.trigger}, success={self.success}, "
            f"duration_ms={self.duration_ms})"
        )
