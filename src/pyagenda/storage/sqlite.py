"""SQLite-backed storage implementation for pyagenda.

Design Pattern: Adapter Pattern
SqliteAgentStore adapts a SQLite database to the AgentStore interface.

Implementation details:
- aiosqlite for async operations
- WAL mode for concurrent reads
- INTEGER millisecond timestamps (UTC)
- Configuration stored as JSON text
- Index on (schedule_enabled) for startup reconciliation queries
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite
from uuid_extensions import uuid7

from pyagenda.models import Agent, AgentStatus, ExecutionSession, TriggerKind
from pyagenda.storage.base import AgentStore, StorageError, session_duration_ms

_AGENT_COLUMNS = """
    id, agent_type, name, status, schedule_expression, schedule_enabled,
    last_run_at, next_run_at, configuration, description, created_at, updated_at
"""

_SESSION_COLUMNS = """
    id, agent_id, trigger, started_at, completed_at, success,
    duration_ms, error_message, output_summary
"""


def _to_millis(value: datetime | None) -> int | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp() * 1000)


def _from_millis(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000.0, UTC)


class SqliteAgentStore(AgentStore):
    """SQLite-backed durable storage.

    After __init__, the instance is not yet usable. Call connect() first.

    Usage:
        store = SqliteAgentStore("agents.db")
        await store.connect()
        try:
            agent = await store.find("a1")
        finally:
            await store.close()
    """

    def __init__(self, db_path: str):
        """Initialize storage (connection not opened yet).

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()  # Serialize access to shared connection

    @classmethod
    async def in_memory(cls) -> SqliteAgentStore:
        """
        Create an in-memory SQLite store for testing.

        Example:
            store = await SqliteAgentStore.in_memory()
            # Ready to use immediately
        """
        instance = cls(":memory:")
        await instance.connect()
        return instance

    def __repr__(self) -> str:
        if self.db_path == ":memory:":
            return "SqliteAgentStore(in-memory)"
        return f"SqliteAgentStore({self.db_path})"

    async def connect(self) -> None:
        """Open database connection and initialize schema.

        Fixed initialization sequence:
        1. Open connection
        2. Enable WAL mode
        3. Create tables and indexes
        """
        if self._connection is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self.db_path,
            timeout=5.0,
            isolation_level=None,  # Autocommit mode
        )

        # In-memory databases report "memory" and don't support WAL
        cursor = await self._connection.execute("PRAGMA journal_mode=WAL")
        result = await cursor.fetchone()
        await cursor.close()

        if result:
            mode = result[0].upper()
            if mode not in ("WAL", "MEMORY"):
                raise StorageError(f"Failed to enable WAL mode, got: {result[0]}")

        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.execute("PRAGMA busy_timeout=5000")

        await self._create_schema()
        await self._connection.commit()

    async def _create_schema(self) -> None:
        """Create database tables and indexes.

        Schema design:
        - agents table holds the agent record, configuration as JSON text
        - execution_sessions table holds one row per execution attempt
        - UPPERCASE status values matching AgentStatus
        - INTEGER timestamps (milliseconds since epoch, UTC)
        """
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS agents (
                id TEXT PRIMARY KEY,
                agent_type TEXT NOT NULL,
                name TEXT NOT NULL DEFAULT '',
                status TEXT CHECK( status IN (
                    'IDLE','RUNNING','COMPLETED','ERROR','PAUSED'
                ) ) NOT NULL DEFAULT 'IDLE',
                schedule_expression TEXT,
                schedule_enabled INTEGER NOT NULL DEFAULT 0,
                last_run_at INTEGER,
                next_run_at INTEGER,
                configuration TEXT NOT NULL DEFAULT '{}',
                description TEXT,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_agents_scheduled
            ON agents(schedule_enabled, next_run_at)
        """)

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS execution_sessions (
                id TEXT PRIMARY KEY,
                agent_id TEXT NOT NULL,
                trigger TEXT NOT NULL,
                started_at INTEGER NOT NULL,
                completed_at INTEGER,
                success INTEGER,
                duration_ms INTEGER,
                error_message TEXT,
                output_summary TEXT
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_sessions_agent
            ON execution_sessions(agent_id, started_at)
        """)

    # ========================================================================
    # Agent records
    # ========================================================================

    async def save(self, agent: Agent) -> Agent:
        self._check_connected()

        stored = agent.copy()
        stored.updated_at = datetime.now(UTC)

        async with self._lock:
            await self._connection.execute(
                f"""
                INSERT OR REPLACE INTO agents ({_AGENT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    stored.id,
                    stored.agent_type,
                    stored.name,
                    stored.status.value,
                    stored.schedule_expression,
                    1 if stored.schedule_enabled else 0,
                    _to_millis(stored.last_run_at),
                    _to_millis(stored.next_run_at),
                    json.dumps(stored.configuration),
                    stored.description,
                    _to_millis(stored.created_at),
                    _to_millis(stored.updated_at),
                ),
            )
            await self._connection.commit()

        return stored.copy()

    async def find(self, agent_id: str) -> Agent | None:
        self._check_connected()

        async with self._lock:
            cursor = await self._connection.execute(
                f"SELECT {_AGENT_COLUMNS} FROM agents WHERE id = ?",
                (agent_id,),
            )
            row = await cursor.fetchone()
            await cursor.close()

        if row is None:
            return None
        return self._row_to_agent(row)

    async def find_scheduled(self) -> list[Agent]:
        self._check_connected()

        async with self._lock:
            cursor = await self._connection.execute(
                f"""
                SELECT {_AGENT_COLUMNS} FROM agents
                WHERE schedule_enabled = 1 AND schedule_expression IS NOT NULL
                ORDER BY created_at
            """
            )
            rows = await cursor.fetchall()
            await cursor.close()

        return [self._row_to_agent(row) for row in rows]

    async def update_status(
        self,
        agent_id: str,
        status: AgentStatus,
        last_run_at: datetime | None = None,
    ) -> None:
        if last_run_at is None:
            await self._update(agent_id, "status = ?", (status.value,))
        else:
            await self._update(
                agent_id,
                "status = ?, last_run_at = ?",
                (status.value, _to_millis(last_run_at)),
            )

    async def update_next_run(self, agent_id: str, next_run_at: datetime | None) -> None:
        await self._update(agent_id, "next_run_at = ?", (_to_millis(next_run_at),))

    async def update_schedule(
        self,
        agent_id: str,
        expression: str | None,
        enabled: bool,
        next_run_at: datetime | None,
    ) -> None:
        await self._update(
            agent_id,
            "schedule_expression = ?, schedule_enabled = ?, next_run_at = ?",
            (expression, 1 if enabled else 0, _to_millis(next_run_at)),
        )

    async def update_config(self, agent_id: str, config: dict[str, Any]) -> None:
        await self._update(agent_id, "configuration = ?", (json.dumps(config),))

    async def _update(self, agent_id: str, assignments: str, params: tuple) -> None:
        """Apply an UPDATE to one agent row, stamping updated_at.

        Raises:
            StorageError: If no row matched
        """
        self._check_connected()

        async with self._lock:
            cursor = await self._connection.execute(
                f"UPDATE agents SET {assignments}, updated_at = ? WHERE id = ?",
                (*params, _to_millis(datetime.now(UTC)), agent_id),
            )
            rowcount = cursor.rowcount
            await cursor.close()
            await self._connection.commit()

        if rowcount == 0:
            raise StorageError(f"Agent not found: agent_id={agent_id}")

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

        async with self._lock:
            await self._connection.execute(
                """
                INSERT INTO execution_sessions (id, agent_id, trigger, started_at)
                VALUES (?, ?, ?, ?)
            """,
                (session.id, agent_id, trigger.value, _to_millis(started_at)),
            )
            await self._connection.commit()

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

        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT started_at FROM execution_sessions WHERE id = ?",
                (session_id,),
            )
            row = await cursor.fetchone()
            await cursor.close()

            if row is None:
                return None

            duration_ms = session_duration_ms(_from_millis(row[0]), completed_at)

            await self._connection.execute(
                """
                UPDATE execution_sessions
                SET completed_at = ?, success = ?, duration_ms = ?,
                    error_message = ?, output_summary = ?
                WHERE id = ?
            """,
                (
                    _to_millis(completed_at),
                    1 if success else 0,
                    duration_ms,
                    error_message,
                    output_summary,
                    session_id,
                ),
            )
            await self._connection.commit()

            cursor = await self._connection.execute(
                f"SELECT {_SESSION_COLUMNS} FROM execution_sessions WHERE id = ?",
                (session_id,),
            )
            updated = await cursor.fetchone()
            await cursor.close()

        return self._row_to_session(updated)

    async def latest_session(self, agent_id: str) -> ExecutionSession | None:
        sessions = await self.list_sessions(agent_id, limit=1)
        return sessions[0] if sessions else None

    async def list_sessions(self, agent_id: str, limit: int = 10) -> list[ExecutionSession]:
        self._check_connected()

        async with self._lock:
            # rowid breaks ties between sessions started in the same millisecond
            cursor = await self._connection.execute(
                f"""
                SELECT {_SESSION_COLUMNS} FROM execution_sessions
                WHERE agent_id = ?
                ORDER BY started_at DESC, rowid DESC
                LIMIT ?
            """,
                (agent_id, limit),
            )
            rows = await cursor.fetchall()
            await cursor.close()

        return [self._row_to_session(row) for row in rows]

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def reset(self) -> None:
        """Clear all data (for testing/demos).

        After reset, storage is empty but functional.
        """
        self._check_connected()

        async with self._lock:
            await self._connection.execute("DELETE FROM agents")
            await self._connection.execute("DELETE FROM execution_sessions")
            await self._connection.commit()

    async def close(self) -> None:
        """Close storage connection.

        Explicit resource cleanup, not relying on GC.
        """
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    def _check_connected(self) -> None:
        """Guard clause: Ensure connection is open."""
        if self._connection is None:
            raise StorageError("Not connected. Call connect() first.")

    def _row_to_agent(self, row: tuple) -> Agent:
        """Convert database row to Agent.

        Row format (matches _AGENT_COLUMNS):
        0:id, 1:agent_type, 2:name, 3:status, 4:schedule_expression,
        5:schedule_enabled, 6:last_run_at, 7:next_run_at, 8:configuration,
        9:description, 10:created_at, 11:updated_at
        """
        try:
            configuration = json.loads(row[8]) if row[8] else {}
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt configuration for agent {row[0]}: {e}") from e

        return Agent(
            id=row[0],
            agent_type=row[1],
            name=row[2],
            status=AgentStatus(row[3]),
            schedule_expression=row[4],
            schedule_enabled=bool(row[5]),
            last_run_at=_from_millis(row[6]),
            next_run_at=_from_millis(row[7]),
            configuration=configuration,
            description=row[9],
            created_at=_from_millis(row[10]),
            updated_at=_from_millis(row[11]),
        )

    def _row_to_session(self, row: tuple) -> ExecutionSession:
        """Convert database row to ExecutionSession.

        Row format (matches _SESSION_COLUMNS):
        0:id, 1:agent_id, 2:trigger, 3:started_at, 4:completed_at,
        5:success, 6:duration_ms, 7:error_message, 8:output_summary
        """
        return ExecutionSession(
            id=row[0],
            agent_id=row[1],
            trigger=TriggerKind(row[2]),
            started_at=_from_millis(row[3]),
            completed_at=_from_millis(row[4]),
            success=None if row[5] is None else bool(row[5]),
            duration_ms=row[6],
            error_message=row[7],
            output_summary=row[8],
        )
