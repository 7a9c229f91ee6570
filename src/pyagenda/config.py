"""Scheduler configuration.

SchedulerConfig is an immutable value passed to the Scheduler at
construction. It can be built directly, adjusted with the ``with_*``
builder helpers (each returns a modified copy), or read from the
environment with ``SchedulerConfig.from_env()``.

Environment variables (all optional):
    SCHEDULER_CHECK_INTERVAL      tick period in seconds
    SCHEDULER_MAX_CONCURRENT      concurrency ceiling
    SCHEDULER_MAX_RETRIES         consecutive failures that still retry
    SCHEDULER_BACKOFF_BASE        first backoff delay in milliseconds
    SCHEDULER_BACKOFF_MAX         backoff ceiling in milliseconds
    AGENT_RUN_MISSED_ON_STARTUP   "true" to replay missed jobs at start
    AGENT_SCHEDULER_AUTO_START    "true" to start from Scheduler.create()
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, replace

from pyagenda.models import BackoffPolicy

_TRUTHY = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True)
class SchedulerConfig:
    """Configuration surface consumed by the Scheduler.

    Example:
        config = SchedulerConfig().with_max_concurrent_agents(2).with_check_interval(5.0)
    """

    check_interval: float = 60.0
    """Seconds between dispatch ticks."""

    max_concurrent_agents: int = 5
    """Global ceiling on simultaneous executions."""

    max_retries: int = 3
    """Consecutive failures that still earn a retry."""

    base_backoff_delay_ms: int = 1000
    """Backoff after the first failure, in milliseconds."""

    max_backoff_delay_ms: int = 300000
    """Upper bound on any backoff delay, in milliseconds."""

    run_missed_on_startup: bool = False
    """Execute tasks whose next run passed while the process was down."""

    auto_start: bool = False
    """Start scheduling as soon as Scheduler.create() builds the scheduler."""

    def __post_init__(self) -> None:
        if self.check_interval <= 0:
            raise ValueError(f"check_interval must be > 0, got {self.check_interval}")
        if self.max_concurrent_agents < 1:
            raise ValueError(
                f"max_concurrent_agents must be >= 1, got {self.max_concurrent_agents}"
            )
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_backoff_delay_ms < 0 or self.max_backoff_delay_ms < 0:
            raise ValueError("backoff delays must be >= 0")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> SchedulerConfig:
        """Build a configuration from environment variables.

        Unset variables keep their defaults. Malformed numbers raise
        ValueError naming the variable.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        def number(name: str, default, convert):
            raw = env.get(name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return convert(raw)
            except ValueError as e:
                raise ValueError(f"{name} must be a number, got {raw!r}") from e

        def flag(name: str, default: bool) -> bool:
            raw = env.get(name)
            if raw is None:
                return default
            return raw.strip().lower() in _TRUTHY

        return cls(
            check_interval=number("SCHEDULER_CHECK_INTERVAL", defaults.check_interval, float),
            max_concurrent_agents=number(
                "SCHEDULER_MAX_CONCURRENT", defaults.max_concurrent_agents, int
            ),
            max_retries=number("SCHEDULER_MAX_RETRIES", defaults.max_retries, int),
            base_backoff_delay_ms=number(
                "SCHEDULER_BACKOFF_BASE", defaults.base_backoff_delay_ms, int
            ),
            max_backoff_delay_ms=number(
                "SCHEDULER_BACKOFF_MAX", defaults.max_backoff_delay_ms, int
            ),
            run_missed_on_startup=flag(
                "AGENT_RUN_MISSED_ON_STARTUP", defaults.run_missed_on_startup
            ),
            auto_start=flag("AGENT_SCHEDULER_AUTO_START", defaults.auto_start),
        )

    def with_check_interval(self, seconds: float) -> SchedulerConfig:
        return replace(self, check_interval=seconds)

    def with_max_concurrent_agents(self, limit: int) -> SchedulerConfig:
        return replace(self, max_concurrent_agents=limit)

    def with_retries(
        self,
        max_retries: int,
        base_backoff_delay_ms: int | None = None,
        max_backoff_delay_ms: int | None = None,
    ) -> SchedulerConfig:
        return replace(
            self,
            max_retries=max_retries,
            base_backoff_delay_ms=(
                self.base_backoff_delay_ms
                if base_backoff_delay_ms is None
                else base_backoff_delay_ms
            ),
            max_backoff_delay_ms=(
                self.max_backoff_delay_ms if max_backoff_delay_ms is None else max_backoff_delay_ms
            ),
        )

    def with_missed_jobs(self, enabled: bool = True) -> SchedulerConfig:
        return replace(self, run_missed_on_startup=enabled)

    def with_auto_start(self, enabled: bool = True) -> SchedulerConfig:
        return replace(self, auto_start=enabled)

    def backoff_policy(self) -> BackoffPolicy:
        """Derive the BackoffPolicy used for failed executions."""
        return BackoffPolicy(
            max_retries=self.max_retries,
            base_delay_ms=self.base_backoff_delay_ms,
            max_delay_ms=self.max_backoff_delay_ms,
        )
