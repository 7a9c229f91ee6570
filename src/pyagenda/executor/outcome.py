"""
Execution outcomes returned by ExecutionCoordinator.start_agent().

**Design Pattern**: State Machine using Union types

A start request either runs the agent to completion or is skipped because
the agent is already executing. A failed run is not an outcome: it raises
ExecutionFailure, so callers cannot mistake a failure for a result.

Example:
    ```python
    outcome = await coordinator.start_agent(agent_id)

    match outcome:
        case Completed(result=result, duration_ms=ms):
            print(f"Agent finished in {ms}ms: {result}")
        case Skipped(reason=reason):
            print(f"Not started: {reason}")
    ```
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

__all__ = [
    "Completed",
    "Skipped",
    "ExecutionOutcome",
    "ALREADY_RUNNING",
]

R = TypeVar("R")

ALREADY_RUNNING = "already_running"


@dataclass(frozen=True)
class Completed(Generic[R]):
    """
    The agent ran to completion.

    Attributes:
        agent_id: Agent that was executed
        result: Value returned by the strategy's execute()
        duration_ms: Wall time of the execution in milliseconds
    """

    agent_id: str
    result: R
    duration_ms: int

    def is_success(self) -> bool:
        return True


@dataclass(frozen=True)
class Skipped:
    """
    The start request was a no-op.

    The only reason produced by the coordinator is ``"already_running"``.
    """

    agent_id: str
    reason: str = ALREADY_RUNNING

    def is_success(self) -> bool:
        return False

    def __str__(self) -> str:
        return f"Skipped(agent_id={self.agent_id}, reason={self.reason})"


ExecutionOutcome = Completed | Skipped
"""Either Completed or Skipped."""
