"""In-memory storage implementation for pyagenda.

Design Pattern: Adapter Pattern
InMemoryAgentStore adapts plain dictionaries to the AgentStore interface.

Instance is immediately usable after __init__.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from uuid_extensions import uuid7

from pyagenda.models import Agent, AgentStatus, ExecutionSession, TriggerKind
from pyagenda.storage.base import AgentStore, StorageError, session_duration_ms


class InMemoryAgentStore(AgentStore):
    """In-memory storage for tests and single-process embedding.

    Can be substituted for SqliteAgentStore without changing client code.

    Usage:
        store = InMemoryAgentStore()
        await store.save(Agent(id="a1", agent_type="echo"))
        agent = await store.find("a1")
    """

    def __init__(self):
        # Storage: {agent_id: Agent}
        self._agents: dict[str, Agent] = {}

        # Storage: {session_id: ExecutionSession}, insertion ordered
        self._sessions: dict[str, ExecutionSession] = {}

        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"InMemoryAgentStore(agents={len(self._agents)})"

    async def save(self, agent: Agent) -> Agent:
        async with self._lock:
            stored = agent.copy()
            stored.updated_at = datetime.now(UTC)
            self._agents[agent.id] = stored
            return stored.copy()

    async def find(self, agent_id: str) -> Agent | None:
        agent = self._agents.get(agent_id)
        return agent.copy() if agent is not None else None

    async def find_scheduled(self) -> list[Agent]:
        return [agent.copy() for agent in self._agents.values() if agent.is_scheduled]

    async def update_status(
        self,
        agent_id: str,
        status: AgentStatus,
        last_run_at: datetime | None = None,
    ) -> None:
        async with self._lock:
            agent = self._get_or_raise(agent_id)
            agent.status = status
            if last_run_at is not None:
                agent.last_run_at = last_run_at
            agent.updated_at = datetime.now(UTC)

    async def update_next_run(self, agent_id: str, next_run_at: datetime | None) -> None:
        async with self._lock:
            agent = self._get_or_raise(agent_id)
            agent.next_run_at = next_run_at
            agent.updated_at = datetime.now(UTC)

    async def update_schedule(
        self,
        agent_id: str,
        expression: str | None,
        enabled: bool,
        next_run_at: datetime | None,
    ) -> None:
        async with self._lock:
            agent = self._get_or_raise(agent_id)
            agent.schedule_expression = expression
            agent.schedule_enabled = enabled
            agent.next_run_at = next_run_at
            agent.updated_at = datetime.now(UTC)

    async def update_config(self, agent_id: str, config: dict[str, Any]) -> None:
        async with self._lock:
            agent = self._get_or_raise(agent_id)
            agent.configuration = dict(config)
            agent.updated_at = datetime.now(UTC)

    async def start_session(
        self,
        agent_id: str,
        started_at: datetime,
        trigger: TriggerKind = TriggerKind.MANUAL,
    ) -> ExecutionSession:
        async with self._lock:
            session = ExecutionSession(
                id=str(uuid7()),
                agent_id=agent_id,
                started_at=started_at,
                trigger=trigger,
            )
            self._sessions[session.id] = session
            return replace(session)

    async def finish_session(
        self,
        session_id: str,
        completed_at: datetime,
        success: bool,
        error_message: str | None = None,
        output_summary: str | None = None,
    ) -> ExecutionSession | None:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            session.completed_at = completed_at
            session.success = success
            session.duration_ms = session_duration_ms(session.started_at, completed_at)
            session.error_message = error_message
            session.output_summary = output_summary
            return replace(session)

    async def latest_session(self, agent_id: str) -> ExecutionSession | None:
        sessions = await self.list_sessions(agent_id, limit=1)
        return sessions[0] if sessions else None

    async def list_sessions(self, agent_id: str, limit: int = 10) -> list[ExecutionSession]:
        # Insertion order breaks ties between sessions started in the same instant
        matching = [
            (index, s)
            for index, s in enumerate(self._sessions.values())
            if s.agent_id == agent_id
        ]
        matching.sort(key=lambda item: (item[1].started_at, item[0]), reverse=True)
        return [replace(s) for _, s in matching[:limit]]

    async def reset(self) -> None:
        """Clear all data (for testing).

        After reset, storage is empty but functional.
        """
        async with self._lock:
            self._agents.clear()
            self._sessions.clear()

    def _get_or_raise(self, agent_id: str) -> Agent:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise StorageError(f"Agent not found: agent_id={agent_id}")
        return agent
