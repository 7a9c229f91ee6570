"""Storage backends for agent records and execution sessions.

Provides multiple storage implementations behind a common interface:
    - AgentStore: Abstract interface
    - InMemoryAgentStore: In-memory storage for testing
    - SqliteAgentStore: SQLite-backed storage
    - RedisAgentStore: Redis-backed shared storage

Design: Adapter Pattern + Dependency Inversion (SOLID)
    All storage implementations adapt to the AgentStore interface.
    The scheduler and coordinator depend on the abstraction only.
"""

from pyagenda.storage.base import AgentStore, StorageError
from pyagenda.storage.memory import InMemoryAgentStore

# SQLite and Redis adapters pull in their drivers, so import them lazily


def __getattr__(name: str):
    """Lazy import storage implementations with optional drivers."""
    if name == "SqliteAgentStore":
        from pyagenda.storage.sqlite import SqliteAgentStore

        return SqliteAgentStore
    elif name == "RedisAgentStore":
        from pyagenda.storage.redis import RedisAgentStore

        return RedisAgentStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "AgentStore",
    "StorageError",
    "InMemoryAgentStore",
    "SqliteAgentStore",
    "RedisAgentStore",
]
