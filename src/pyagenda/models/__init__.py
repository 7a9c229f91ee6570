"""Core data models for agent scheduling.

Defines the persisted agent record, the scheduler's in-memory task,
execution sessions, status/priority enumerations and the backoff policy.

Design: Dependency-Free Models
These types have no dependencies on storage or executor modules to
prevent circular imports and enable clean layering.
"""

from pyagenda.models.agent import Agent
from pyagenda.models.backoff import BackoffPolicy
from pyagenda.models.session import ExecutionSession
from pyagenda.models.status import AgentStatus, Priority, TriggerKind
from pyagenda.models.task import ScheduledTask

__all__ = [
    "Agent",
    "AgentStatus",
    "BackoffPolicy",
    "ExecutionSession",
    "Priority",
    "ScheduledTask",
    "TriggerKind",
]
