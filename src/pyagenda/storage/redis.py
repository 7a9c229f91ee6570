"""Redis-based agent store implementation.

Lets several processes (an API host and a scheduler process, say) share
agent records over the network. The scheduler itself remains a single
process; Redis is only the persistence layer.

Data Structures:
- pyagenda:agent:{agent_id} (HASH): Agent record, configuration as JSON
- pyagenda:agents:scheduled (SET): Ids of agents with scheduling enabled
- pyagenda:session:{session_id} (HASH): Execution session
- pyagenda:sessions:{agent_id} (ZSET): Session ids (score = started_at millis)

Key Features:
- Atomic multi-field writes with MULTI/EXEC pipelines
- Connection pooling via redis-py

Design: Adapter Pattern
Implements the AgentStore interface for Redis.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from uuid_extensions import uuid7

try:
    import redis.asyncio as redis
except ImportError:
    raise ImportError("redis-py is required for RedisAgentStore. Install with: pip install redis")

from pyagenda.models import Agent, AgentStatus, ExecutionSession, TriggerKind
from pyagenda.storage.base import AgentStore, StorageError, session_duration_ms

SCHEDULED_KEY = "pyagenda:agents:scheduled"


def _to_millis(value: datetime | None) -> str:
    """Encode a datetime for a hash field ("" for None)."""
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return str(int(value.timestamp() * 1000))


def _from_millis(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value) / 1000.0, UTC)


class RedisAgentStore(AgentStore):
    """Redis agent store using connection pooling.

    Usage:
        store = RedisAgentStore("redis://localhost:6379")
        await store.connect()

        await store.save(Agent(id="a1", agent_type="echo"))
        agent = await store.find("a1")
    """

    def __init__(self, redis_url: str = "redis://localhost:6379", max_connections: int = 16):
        """Initialize Redis agent store.

        Args:
            redis_url: Redis connection URL
            max_connections: Maximum pool size
        """
        self._redis_url = redis_url
        self._max_connections = max_connections
        self._redis: redis.Redis | None = None

    @classmethod
    def from_client(cls, client: redis.Redis) -> RedisAgentStore:
        """Wrap an already-connected client.

        The client must be created with ``decode_responses=True``.
        """
        store = cls()
        store._redis = client
        return store

    def __repr__(self) -> str:
        return f"RedisAgentStore({self._redis_url})"

    async def connect(self) -> None:
        """Establish Redis connection pool."""
        self._redis = redis.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=self._max_connections,
        )

    async def close(self) -> None:
        """Close Redis connection pool."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _check_connected(self) -> None:
        """Ensure connection established.

        Raises immediately if not connected.
        """
        if self._redis is None:
            raise StorageError("Not connected. Call connect() first.")

    @staticmethod
    def _agent_key(agent_id: str) -> str:
        return f"pyagenda:agent:{agent_id}"

    @staticmethod
    def _session_key(session_id: str) -> str:
        return f"pyagenda:session:{session_id}"

    @staticmethod
    def _sessions_key(agent_id: str) -> str:
        return f"pyagenda:sessions:{agent_id}"

    # ========================================================================
    # Agent records
    # ========================================================================

    async def save(self, agent: Agent) -> Agent:
        self._check_connected()

        stored = agent.copy()
        stored.updated_at = datetime.now(UTC)
        key = self._agent_key(stored.id)

        async with self._redis.pipeline(transaction=True) as pipe:
            await pipe.delete(key)
            await pipe.hset(key, mapping=self._agent_to_mapping(stored))
            if stored.is_scheduled:
                await pipe.sadd(SCHEDULED_KEY, stored.id)
            else:
                await pipe.srem(SCHEDULED_KEY, stored.id)
            await pipe.execute()

        return stored.copy()

    async def find(self, agent_id: str) -> Agent | None:
        self._check_connected()

        data = await self._redis.hgetall(self._agent_key(agent_id))
        if not data:
            return None
        return self._parse_agent(data)

    async def find_scheduled(self) -> list[Agent]:
        self._check_connected()

        agent_ids = sorted(await self._redis.smembers(SCHEDULED_KEY))
        agents = []
        for agent_id in agent_ids:
            agent = await self.find(agent_id)
            if agent is not None and agent.is_scheduled:
                agents.append(agent)
        return agents

    async def update_status(
        self,
        agent_id: str,
        status: AgentStatus,
        last_run_at: datetime | None = None,
    ) -> None:
        fields = {"status": status.value}
        if last_run_at is not None:
            fields["last_run_at"] = _to_millis(last_run_at)
        await self._update(agent_id, fields)

    async def update_next_run(self, agent_id: str, next_run_at: datetime | None) -> None:
        await self._update(agent_id, {"next_run_at": _to_millis(next_run_at)})

    async def update_schedule(
        self,
        agent_id: str,
        expression: str | None,
        enabled: bool,
        next_run_at: datetime | None,
    ) -> None:
        await self._update(
            agent_id,
            {
                "schedule_expression": expression or "",
                "schedule_enabled": "1" if enabled else "0",
                "next_run_at": _to_millis(next_run_at),
            },
            scheduled=enabled and bool(expression),
        )

    async def update_config(self, agent_id: str, config: dict[str, Any]) -> None:
        await self._update(agent_id, {"configuration": json.dumps(config)})

    async def _update(
        self, agent_id: str, fields: dict[str, str], scheduled: bool | None = None
    ) -> None:
        """Write hash fields for an existing agent, stamping updated_at.

        Raises:
            StorageError: If the agent does not exist
        """
        self._check_connected()

        key = self._agent_key(agent_id)
        if not await self._redis.exists(key):
            raise StorageError(f"Agent not found: agent_id={agent_id}")

        fields = {**fields, "updated_at": _to_millis(datetime.now(UTC))}

        async with self._redis.pipeline(transaction=True) as pipe:
            await pipe.hset(key, mapping=fields)
            if scheduled is True:
                await pipe.sadd(SCHEDULED_KEY, agent_id)
            elif scheduled is False:
                await pipe.srem(SCHEDULED_KEY, agent_id)
            await pipe.execute()

    # ========================================================================
    # Execution sessions
    # ========================================================================

    async def start_session(
        self,
        agent_id: str,
        started_at: datetime,
        trigger: TriggerKind = TriggerKind.MANUAL,
    ) -> ExecutionSession:
        self._check_connected()

        session = ExecutionSession(
            id=str(uuid7()),
            agent_id=agent_id,
            started_at=started_at,
            trigger=trigger,
        )

        async with self._redis.pipeline(transaction=True) as pipe:
            await pipe.hset(
                self._session_key(session.id),
                mapping={
                    "id": session.id,
                    "agent_id": agent_id,
                    "trigger": trigger.value,
                    "started_at": _to_millis(started_at),
                },
            )
            await pipe.zadd(
                self._sessions_key(agent_id), {session.id: int(_to_millis(started_at))}
            )
            await pipe.execute()

        return session

    async def finish_session(
        self,
        session_id: str,
        completed_at: datetime,
        success: bool,
        error_message: str | None = None,
        output_summary: str | None = None,
    ) -> ExecutionSession | None:
        self._check_connected()

        key = self._session_key(session_id)
        data = await self._redis.hgetall(key)
        if not data:
            return None

        started_at = _from_millis(data.get("started_at"))
        fields = {
            "completed_at": _to_millis(completed_at),
            "success": "1" if success else "0",
            "duration_ms": str(session_duration_ms(started_at, completed_at)),
            "error_message": error_message or "",
            "output_summary": output_summary or "",
        }
        await self._redis.hset(key, mapping=fields)

        return self._parse_session({**data, **fields})

    async def latest_session(self, agent_id: str) -> ExecutionSession | None:
        sessions = await self.list_sessions(agent_id, limit=1)
        return sessions[0] if sessions else None

    async def list_sessions(self, agent_id: str, limit: int = 10) -> list[ExecutionSession]:
        self._check_connected()

        # Equal scores fall back to member order; uuid7 ids sort by creation time
        session_ids = await self._redis.zrevrange(self._sessions_key(agent_id), 0, limit - 1)

        sessions = []
        for session_id in session_ids:
            data = await self._redis.hgetall(self._session_key(session_id))
            if data:
                sessions.append(self._parse_session(data))
        return sessions

    async def reset(self) -> None:
        """Delete every pyagenda key (for testing)."""
        self._check_connected()

        keys = [key async for key in self._redis.scan_iter(match="pyagenda:*")]
        if keys:
            await self._redis.delete(*keys)

    # ========================================================================
    # Encoding
    # ========================================================================

    @staticmethod
    def _agent_to_mapping(agent: Agent) -> dict[str, str]:
        return {
            "id": agent.id,
            "agent_type": agent.agent_type,
            "name": agent.name,
            "status": agent.status.value,
            "schedule_expression": agent.schedule_expression or "",
            "schedule_enabled": "1" if agent.schedule_enabled else "0",
            "last_run_at": _to_millis(agent.last_run_at),
            "next_run_at": _to_millis(agent.next_run_at),
            "configuration": json.dumps(agent.configuration),
            "description": agent.description or "",
            "created_at": _to_millis(agent.created_at),
            "updated_at": _to_millis(agent.updated_at),
        }

    @staticmethod
    def _parse_agent(data: dict[str, str]) -> Agent:
        try:
            configuration = json.loads(data.get("configuration") or "{}")
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt configuration for agent {data.get('id')}: {e}") from e

        return Agent(
            id=data["id"],
            agent_type=data["agent_type"],
            name=data.get("name", ""),
            status=AgentStatus(data.get("status", AgentStatus.IDLE.value)),
            schedule_expression=data.get("schedule_expression") or None,
            schedule_enabled=data.get("schedule_enabled") == "1",
            last_run_at=_from_millis(data.get("last_run_at")),
            next_run_at=_from_millis(data.get("next_run_at")),
            configuration=configuration,
            description=data.get("description") or None,
            created_at=_from_millis(data.get("created_at")) or datetime.now(UTC),
            updated_at=_from_millis(data.get("updated_at")) or datetime.now(UTC),
        )

    @staticmethod
    def _parse_session(data: dict[str, str]) -> ExecutionSession:
        success = data.get("success")
        duration = data.get("duration_ms")
        return ExecutionSession(
            id=data["id"],
            agent_id=data["agent_id"],
            trigger=TriggerKind(data["trigger"]),
            started_at=_from_millis(data["started_at"]),
            completed_at=_from_millis(data.get("completed_at")),
            success=None if not success else success == "1",
            duration_ms=int(duration) if duration else None,
            error_message=data.get("error_message") or None,
            output_summary=data.get("output_summary") or None,
        )
