"""
Executor module - runtime engine for agent executions.

This module contains the execution components:
- coordinator: runs one execution end to end and owns the RunningSet
- scheduler: priority dispatch loop with concurrency ceiling and backoff
- outcome: Completed/Skipped results of a start request
"""

from pyagenda.executor.coordinator import ExecutionCoordinator
from pyagenda.executor.outcome import ALREADY_RUNNING, Completed, ExecutionOutcome, Skipped
from pyagenda.executor.scheduler import Scheduler, SchedulerHandle

__all__ = [
    # Coordinator
    "ExecutionCoordinator",
    # Outcomes
    "Completed",
    "Skipped",
    "ExecutionOutcome",
    "ALREADY_RUNNING",
    # Scheduler
    "Scheduler",
    "SchedulerHandle",
]
