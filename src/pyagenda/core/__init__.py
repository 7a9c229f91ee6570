"""
Core types shared by the registry, coordinator and strategies.

- Trigger: why an execution starts, plus configuration overrides
- RunContext: per-run cancellation token and metadata
- CURRENT_RUN / get_current_run: task-local access to the RunContext
- AgentStrategy: base class for executable agent behavior
"""

from pyagenda.core.context import CURRENT_RUN, RunContext, Trigger, get_current_run
from pyagenda.core.strategy import AgentStrategy, StrategyEvent

__all__ = [
    "AgentStrategy",
    "CURRENT_RUN",
    "RunContext",
    "StrategyEvent",
    "Trigger",
    "get_current_run",
]
