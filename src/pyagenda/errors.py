"""Error taxonomy for the scheduling and execution core.

Every error raised by pyagenda derives from PyagendaError so callers can
catch the whole family at an API boundary. Errors carry the identifiers
needed to act on them (agent id, agent type, expression) as attributes,
not only inside the message.

Recovery policy:
- ExecutionFailure is caught by the Scheduler and turned into backoff.
- InvalidSchedule / UnknownAgentType / AgentNotFound surface synchronously
  from schedule-time calls.
- AlreadyRunning is benign: start requests for a running agent are no-ops.
"""

from __future__ import annotations


class PyagendaError(Exception):
    """Base class for all pyagenda errors."""


class AgentNotFound(PyagendaError):
    """No agent with the given id exists in the Agent Store."""

    def __init__(self, agent_id: str):
        super().__init__(f"Agent with ID {agent_id} not found")
        self.agent_id = agent_id


class AlreadyRunning(PyagendaError):
    """The agent is already executing.

    Not a fault: two start requests racing for the same agent is expected,
    and the loser is simply skipped.
    """

    def __init__(self, agent_id: str):
        super().__init__(f"Agent {agent_id} is already running")
        self.agent_id = agent_id


class InvalidSchedule(PyagendaError):
    """A schedule expression could not be parsed."""

    def __init__(self, expression: str, reason: str | None = None):
        message = f"Invalid cron expression: {expression!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.expression = expression


class UnknownAgentType(PyagendaError):
    """No implementation is registered for an agent type."""

    def __init__(self, agent_type: str):
        super().__init__(f"No implementation registered for agent type: {agent_type}")
        self.agent_type = agent_type


class InvalidConfig(PyagendaError):
    """An agent configuration was rejected by its type's validator."""

    def __init__(self, agent_type: str, reason: str | None = None):
        message = f"Invalid configuration for agent type: {agent_type}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.agent_type = agent_type


class TaskNotFound(PyagendaError):
    """No scheduled task exists for the agent."""

    def __init__(self, agent_id: str):
        super().__init__(f"No scheduled task found for agent {agent_id}")
        self.agent_id = agent_id


class InvalidState(PyagendaError):
    """A pause/resume request does not fit the task's current state."""

    def __init__(self, agent_id: str, message: str):
        super().__init__(message)
        self.agent_id = agent_id


class ExecutionFailure(PyagendaError):
    """A strategy raised while executing.

    The original exception is kept both as ``original`` and as
    ``__cause__`` (raise ... from ...).
    """

    def __init__(self, agent_id: str, original: BaseException):
        super().__init__(f"Agent {agent_id} failed: {original}")
        self.agent_id = agent_id
        self.original = original

    @property
    def error_message(self) -> str:
        """Message of the wrapped error, used for task/session bookkeeping."""
        return str(self.original) or type(self.original).__name__


class ExecutionStopped(PyagendaError):
    """Raised at a strategy checkpoint after a stop was requested."""

    def __init__(self, agent_id: str):
        super().__init__(f"Agent {agent_id} execution stopped by user request")
        self.agent_id = agent_id
