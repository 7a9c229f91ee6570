"""Implementation registry mapping agent types to executable strategies.

The registry is the single seam through which new agent behaviors are
added. The scheduler and coordinator never import a concrete strategy;
they resolve one here by the agent's type tag.

Design Pattern: Registry + Factory
Each agent type is a closed-world variant described by an
AgentTypeDescriptor: a factory for the strategy plus optional
configuration defaults, validation and a typed configuration schema.
Registration is explicit, there is no module-level registry and no
discovery by reflection.

Usage:
    ```python
    registry = AgentRegistry()
    registry.register(
        AgentTypeDescriptor(
            agent_type="content_creator",
            name="Content Creator",
            version="1.0.0",
            factory=ContentCreatorAgent,
            default_config=lambda: {"model": "gpt-4", "temperature": 0.7},
        )
    )

    strategy = registry.create_instance("content_creator", store, agent)
    ```
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from pyagenda.core.strategy import AgentStrategy
from pyagenda.errors import InvalidConfig, UnknownAgentType
from pyagenda.models import Agent, Priority

if TYPE_CHECKING:
    from pyagenda.storage.base import AgentStore

logger = logging.getLogger(__name__)

StrategyFactory = Callable[["AgentStore", Agent], AgentStrategy]

S = TypeVar("S", bound=type[AgentStrategy])

RESERVED_KEYS = frozenset({"priority", "paused"})
"""Configuration keys owned by the scheduler rather than by agent types."""


def strip_reserved(config: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``config`` without the scheduler-owned keys."""
    return {k: v for k, v in config.items() if k not in RESERVED_KEYS}


@dataclass(frozen=True)
class AgentTypeDescriptor:
    """Everything the core needs to know about one agent type."""

    agent_type: str
    """Type tag stored on Agent.agent_type."""

    name: str
    """Display name."""

    version: str
    """Implementation version, informational."""

    factory: StrategyFactory
    """Builds a strategy for a given store handle and agent record."""

    description: str = ""

    validate_config: Callable[[dict[str, Any]], bool] | None = None
    """Optional validator. Types without one accept any configuration."""

    default_config: Callable[[], dict[str, Any]] | None = None
    """Optional supplier of default configuration values."""

    config_schema: type | None = None
    """Optional dataclass describing the type's configuration.

    When set, a merged configuration is only valid if it can construct
    the schema (unknown keys or missing required fields are rejected).
    """

    default_priority: Priority = Priority.NORMAL
    """Priority used when an agent's configuration does not set one."""


class AgentRegistry:
    """Registry of agent type descriptors.

    Example:
        ```python
        registry = AgentRegistry()
        registry.register(descriptor)

        registry.resolve("content_creator")          # descriptor or None
        registry.validate_config("content_creator", {...})
        registry.default_config("content_creator")   # {} if not supplied
        ```
    """

    def __init__(self) -> None:
        self._descriptors: dict[str, AgentTypeDescriptor] = {}

    def register(self, descriptor: AgentTypeDescriptor) -> None:
        """Register an agent type.

        Re-registering a type overwrites the previous descriptor. This is
        logged as a warning and is how tests and hot reloads swap
        implementations.
        """
        if descriptor.agent_type in self._descriptors:
            logger.warning(
                f"Implementation for agent type {descriptor.agent_type} "
                f"is already registered. Overwriting..."
            )

        self._descriptors[descriptor.agent_type] = descriptor
        logger.info(
            f"Registered agent type: {descriptor.name} v{descriptor.version} "
            f"for type {descriptor.agent_type}"
        )

    def register_type(
        self,
        agent_type: str,
        *,
        name: str | None = None,
        version: str = "1.0.0",
        description: str = "",
        validate_config: Callable[[dict[str, Any]], bool] | None = None,
        default_config: Callable[[], dict[str, Any]] | None = None,
        config_schema: type | None = None,
        default_priority: Priority = Priority.NORMAL,
    ) -> Callable[[S], S]:
        """Class decorator registering an AgentStrategy subclass.

        Example:
            ```python
            @registry.register_type("echo", default_config=lambda: {"prefix": ">"})
            class EchoAgent(AgentStrategy):
                async def execute(self, config, ctx):
                    return f"{config['prefix']} {self.agent.name}"
            ```
        """

        def decorator(strategy_class: S) -> S:
            self.register(
                AgentTypeDescriptor(
                    agent_type=agent_type,
                    name=name or strategy_class.__name__,
                    version=version,
                    factory=strategy_class,
                    description=description or (strategy_class.__doc__ or "").strip(),
                    validate_config=validate_config,
                    default_config=default_config,
                    config_schema=config_schema,
                    default_priority=default_priority,
                )
            )
            return strategy_class

        return decorator

    def unregister(self, agent_type: str) -> bool:
        """Remove an agent type. Returns False if it was not registered."""
        return self._descriptors.pop(agent_type, None) is not None

    def resolve(self, agent_type: str) -> AgentTypeDescriptor | None:
        """Get the descriptor for an agent type, or None if unknown."""
        return self._descriptors.get(agent_type)

    def require(self, agent_type: str) -> AgentTypeDescriptor:
        """Get the descriptor for an agent type.

        Raises:
            UnknownAgentType: If no descriptor is registered
        """
        descriptor = self._descriptors.get(agent_type)
        if descriptor is None:
            raise UnknownAgentType(agent_type)
        return descriptor

    def has(self, agent_type: str) -> bool:
        return agent_type in self._descriptors

    def available_types(self) -> list[str]:
        return list(self._descriptors)

    def describe(self) -> list[dict[str, Any]]:
        """List registered types with their metadata and defaults."""
        return [
            {
                "type": d.agent_type,
                "name": d.name,
                "description": d.description,
                "version": d.version,
                "default_config": self.default_config(d.agent_type),
                "default_priority": d.default_priority.name,
            }
            for d in self._descriptors.values()
        ]

    def create_instance(self, agent_type: str, store: AgentStore, agent: Agent) -> AgentStrategy:
        """Build the executable strategy for an agent.

        Raises:
            UnknownAgentType: If no descriptor is registered for ``agent_type``
        """
        descriptor = self.require(agent_type)
        return descriptor.factory(store, agent)

    def validate_config(self, agent_type: str, config: dict[str, Any]) -> bool:
        """Check a configuration against the type's validator and schema.

        Types that supply neither accept every configuration. Unknown types
        are rejected.
        """
        descriptor = self.resolve(agent_type)
        if descriptor is None:
            return False

        if descriptor.config_schema is not None:
            try:
                self._build_schema(descriptor, config)
            except InvalidConfig:
                return False

        if descriptor.validate_config is None:
            return True

        try:
            return bool(descriptor.validate_config(strip_reserved(config)))
        except Exception as e:
            logger.warning(f"Config validator for {agent_type} raised: {e}")
            return False

    def default_config(self, agent_type: str) -> dict[str, Any]:
        """Return the type's default configuration ({} if it supplies none)."""
        descriptor = self.resolve(agent_type)
        if descriptor is None or descriptor.default_config is None:
            return {}
        return dict(descriptor.default_config())

    def merge_config(
        self,
        agent_type: str,
        stored: dict[str, Any] | None,
        overrides: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Merge configuration layers.

        Precedence: overrides > stored > type defaults.
        """
        merged = self.default_config(agent_type)
        merged.update(stored or {})
        merged.update(overrides or {})
        return merged

    def execution_config(
        self,
        agent_type: str,
        stored: dict[str, Any] | None,
        overrides: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Merged configuration as handed to a strategy, without scheduler-owned keys."""
        return strip_reserved(self.merge_config(agent_type, stored, overrides))

    def typed_config(self, agent_type: str, config: dict[str, Any]) -> Any:
        """Build the type's config_schema instance from a configuration dict.

        Returns the dict unchanged for types without a schema.

        Raises:
            UnknownAgentType: If the type is not registered
            InvalidConfig: If the dict does not fit the schema
        """
        descriptor = self.require(agent_type)
        if descriptor.config_schema is None:
            return config
        return self._build_schema(descriptor, config)

    @staticmethod
    def _build_schema(descriptor: AgentTypeDescriptor, config: dict[str, Any]) -> Any:
        schema = descriptor.config_schema
        if dataclasses.is_dataclass(schema):
            # Scheduler bookkeeping keys are not part of any variant's schema
            known = {f.name for f in dataclasses.fields(schema)}
            config = {k: v for k, v in config.items() if k in known or k not in RESERVED_KEYS}
        try:
            return schema(**config)
        except TypeError as e:
            raise InvalidConfig(descriptor.agent_type, str(e)) from e

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, agent_type: object) -> bool:
        return agent_type in self._descriptors

    def __repr__(self) -> str:
        return f"AgentRegistry(types={self.available_types()!r})"
