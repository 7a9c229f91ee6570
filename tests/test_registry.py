"""Tests for the implementation registry."""

import logging
from dataclasses import dataclass

import pytest

from pyagenda.core import AgentStrategy
from pyagenda.errors import InvalidConfig, UnknownAgentType
from pyagenda.models import Agent, Priority
from pyagenda.registry import AgentRegistry, AgentTypeDescriptor, strip_reserved
from pyagenda.storage import InMemoryAgentStore


class NoopAgent(AgentStrategy):
    async def execute(self, config, ctx):
        return None


class OtherAgent(AgentStrategy):
    async def execute(self, config, ctx):
        return "other"


@dataclass
class ContentConfig:
    topic: str
    temperature: float = 0.7


def descriptor(agent_type: str = "noop", factory=NoopAgent, **kwargs) -> AgentTypeDescriptor:
    return AgentTypeDescriptor(
        agent_type=agent_type, name=agent_type.title(), version="1.0.0", factory=factory, **kwargs
    )


def test_register_and_resolve():
    registry = AgentRegistry()
    registry.register(descriptor())

    assert registry.has("noop")
    assert "noop" in registry
    assert len(registry) == 1
    assert registry.resolve("noop").name == "Noop"
    assert registry.resolve("missing") is None
    assert registry.available_types() == ["noop"]


def test_reregistration_overwrites_with_warning(caplog):
    registry = AgentRegistry()
    registry.register(descriptor(factory=NoopAgent))

    with caplog.at_level(logging.WARNING, logger="pyagenda.registry"):
        registry.register(descriptor(factory=OtherAgent))

    assert "already registered" in caplog.text
    assert registry.resolve("noop").factory is OtherAgent
    assert len(registry) == 1


def test_unregister():
    registry = AgentRegistry()
    registry.register(descriptor())
    assert registry.unregister("noop") is True
    assert registry.unregister("noop") is False
    assert not registry.has("noop")


async def test_create_instance_builds_strategy():
    registry = AgentRegistry()
    registry.register(descriptor())
    store = InMemoryAgentStore()
    agent = Agent(id="a1", agent_type="noop")

    strategy = registry.create_instance("noop", store, agent)

    assert isinstance(strategy, NoopAgent)
    assert strategy.agent_id == "a1"
    assert strategy.store is store


def test_create_instance_unknown_type():
    registry = AgentRegistry()
    with pytest.raises(UnknownAgentType) as exc_info:
        registry.create_instance("ghost", InMemoryAgentStore(), Agent(id="a", agent_type="ghost"))
    assert exc_info.value.agent_type == "ghost"


def test_validate_config_is_permissive_without_validator():
    registry = AgentRegistry()
    registry.register(descriptor())
    assert registry.validate_config("noop", {"anything": 1}) is True


def test_validate_config_unknown_type_is_rejected():
    assert AgentRegistry().validate_config("ghost", {}) is False


def test_validate_config_uses_validator():
    registry = AgentRegistry()
    registry.register(descriptor(validate_config=lambda c: c.get("topic") is not None))
    assert registry.validate_config("noop", {"topic": "news"}) is True
    assert registry.validate_config("noop", {}) is False


def test_validator_exception_counts_as_invalid(caplog):
    def explode(config):
        raise KeyError("topic")

    registry = AgentRegistry()
    registry.register(descriptor(validate_config=explode))
    with caplog.at_level(logging.WARNING, logger="pyagenda.registry"):
        assert registry.validate_config("noop", {}) is False
    assert "raised" in caplog.text


def test_default_config():
    registry = AgentRegistry()
    registry.register(descriptor("plain"))
    registry.register(descriptor("tuned", default_config=lambda: {"model": "small", "temp": 0.2}))

    assert registry.default_config("plain") == {}
    assert registry.default_config("tuned") == {"model": "small", "temp": 0.2}
    assert registry.default_config("ghost") == {}


def test_merge_precedence():
    registry = AgentRegistry()
    registry.register(
        descriptor(default_config=lambda: {"model": "small", "temp": 0.2, "lang": "en"})
    )

    merged = registry.merge_config(
        "noop", stored={"model": "large", "temp": 0.5}, overrides={"temp": 0.9}
    )

    assert merged == {"model": "large", "temp": 0.9, "lang": "en"}


def test_default_config_is_a_fresh_dict():
    registry = AgentRegistry()
    defaults = {"model": "small"}
    registry.register(descriptor(default_config=lambda: defaults))

    registry.default_config("noop")["model"] = "changed"
    assert defaults["model"] == "small"


def test_config_schema_validation():
    registry = AgentRegistry()
    registry.register(descriptor(config_schema=ContentConfig))

    assert registry.validate_config("noop", {"topic": "news"}) is True
    assert registry.validate_config("noop", {"topic": "news", "priority": "high"}) is True
    assert registry.validate_config("noop", {}) is False
    assert registry.validate_config("noop", {"topic": "news", "unknown": 1}) is False


def test_typed_config():
    registry = AgentRegistry()
    registry.register(descriptor(config_schema=ContentConfig))
    registry.register(descriptor("untyped"))

    typed = registry.typed_config("noop", {"topic": "news", "paused": True})
    assert typed == ContentConfig(topic="news")
    assert registry.typed_config("untyped", {"a": 1}) == {"a": 1}

    with pytest.raises(InvalidConfig):
        registry.typed_config("noop", {"temperature": 1.0})


def test_register_type_decorator():
    registry = AgentRegistry()

    @registry.register_type("digest", version="2.1.0", default_priority=Priority.HIGH)
    class DigestAgent(AgentStrategy):
        """Summarizes a feed."""

        async def execute(self, config, ctx):
            return "digest"

    described = registry.describe()
    assert registry.resolve("digest").factory is DigestAgent
    assert described == [
        {
            "type": "digest",
            "name": "DigestAgent",
            "description": "Summarizes a feed.",
            "version": "2.1.0",
            "default_config": {},
            "default_priority": "HIGH",
        }
    ]


def test_scheduler_keys_are_hidden_from_validators():
    """priority/paused belong to the scheduler, not to a type's configuration."""
    registry = AgentRegistry()
    registry.register(descriptor(validate_config=lambda c: set(c) <= {"topic"}))

    assert registry.validate_config("noop", {"topic": "news", "priority": "HIGH", "paused": True})
    assert not registry.validate_config("noop", {"topic": "news", "extra": 1})


def test_execution_config_drops_scheduler_keys():
    registry = AgentRegistry()
    registry.register(descriptor(default_config=lambda: {"model": "small"}))

    config = registry.execution_config(
        "noop", stored={"priority": "HIGH", "paused": True}, overrides={"temp": 0.9}
    )

    assert config == {"model": "small", "temp": 0.9}
    assert strip_reserved({"priority": 1, "topic": "t"}) == {"topic": "t"}
