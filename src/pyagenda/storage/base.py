"""
AgentStore - Abstract interface for agent persistence backends.

Design Pattern: Adapter Pattern
AgentStore defines the target interface that all storage adapters implement.
Different backends (SQLite, Redis, Memory) adapt to this common interface.

Design Principle: Dependency Inversion (SOLID)
The scheduler and coordinator depend on this abstraction, never on a
concrete backend. Tests use InMemoryAgentStore.

The core only needs a narrow slice of what a full persistence layer
offers: look agents up, list the scheduled ones, and write back status,
run timestamps, schedule fields, configuration and execution sessions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from pyagenda.errors import PyagendaError
from pyagenda.models import Agent, AgentStatus, ExecutionSession, TriggerKind


class StorageError(PyagendaError):
    """
    Storage operation failed.

    Raised by adapters for connection problems and for writes that target
    an agent that does not exist.
    """

    pass


class AgentStore(ABC):
    """
    Abstract storage interface for agent records and execution sessions.

    Every read returns detached copies; callers mutate persisted state only
    through the update operations.
    """

    # ========================================================================
    # Agent records
    # ========================================================================

    @abstractmethod
    async def save(self, agent: Agent) -> Agent:
        """
        Insert or replace an agent record.

        Agents are created outside the core; this exists for hosts and tests.

        Returns:
            The stored agent (copy)
        """
        pass

    @abstractmethod
    async def find(self, agent_id: str) -> Agent | None:
        """
        Retrieve an agent by id.

        Returns:
            Agent if found, None otherwise
        """
        pass

    @abstractmethod
    async def find_scheduled(self) -> list[Agent]:
        """
        List agents with scheduling enabled and a non-null expression.

        Returns:
            Scheduled agents (may be empty)
        """
        pass

    @abstractmethod
    async def update_status(
        self,
        agent_id: str,
        status: AgentStatus,
        last_run_at: datetime | None = None,
    ) -> None:
        """
        Set an agent's status, optionally stamping its last run time.

        Raises:
            StorageError: If the agent does not exist
        """
        pass

    @abstractmethod
    async def update_next_run(self, agent_id: str, next_run_at: datetime | None) -> None:
        """
        Persist the next expected run time.

        Raises:
            StorageError: If the agent does not exist
        """
        pass

    @abstractmethod
    async def update_schedule(
        self,
        agent_id: str,
        expression: str | None,
        enabled: bool,
        next_run_at: datetime | None,
    ) -> None:
        """
        Persist schedule expression, enabled flag and next run time together.

        Raises:
            StorageError: If the agent does not exist
        """
        pass

    @abstractmethod
    async def update_config(self, agent_id: str, config: dict[str, Any]) -> None:
        """
        Replace an agent's configuration.

        Raises:
            StorageError: If the agent does not exist
        """
        pass

    # ========================================================================
    # Execution sessions
    # ========================================================================

    @abstractmethod
    async def start_session(
        self,
        agent_id: str,
        started_at: datetime,
        trigger: TriggerKind = TriggerKind.MANUAL,
    ) -> ExecutionSession:
        """
        Open a new execution session for an agent.

        Returns:
            The created session, with a fresh uuid7 id
        """
        pass

    @abstractmethod
    async def finish_session(
        self,
        session_id: str,
        completed_at: datetime,
        success: bool,
        error_message: str | None = None,
        output_summary: str | None = None,
    ) -> ExecutionSession | None:
        """
        Close out a session. Duration is derived from its start time.

        Returns:
            The updated session, or None if the id is unknown
        """
        pass

    @abstractmethod
    async def latest_session(self, agent_id: str) -> ExecutionSession | None:
        """Return the most recently started session for an agent."""
        pass

    @abstractmethod
    async def list_sessions(self, agent_id: str, limit: int = 10) -> list[ExecutionSession]:
        """Return an agent's sessions, newest first."""
        pass

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def reset(self) -> None:
        """Clear all data (for testing)."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass


def session_duration_ms(started_at: datetime, completed_at: datetime) -> int:
    """Milliseconds between two instants, never negative."""
    return max(0, int((completed_at - started_at).total_seconds() * 1000))
