"""Tests for the data models: priorities, tasks, sessions and agent records."""

from datetime import UTC, datetime, timedelta

import pytest

from pyagenda.models import (
    Agent,
    AgentStatus,
    ExecutionSession,
    Priority,
    ScheduledTask,
    TriggerKind,
)
from pyagenda.models.session import OUTPUT_SUMMARY_LIMIT

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def make_task(agent_id: str = "a1", **fields) -> ScheduledTask:
    agent = Agent(id=agent_id, agent_type="echo", schedule_expression="* * * * *")
    fields.setdefault("next_run_time", NOW)
    return ScheduledTask(agent_id=agent_id, agent=agent, **fields)


# ==============================================================================
# Priority
# ==============================================================================


def test_priority_ordering_is_total():
    assert Priority.LOW < Priority.NORMAL < Priority.HIGH < Priority.CRITICAL


@pytest.mark.parametrize(
    "value, expected",
    [
        ("high", Priority.HIGH),
        ("CRITICAL", Priority.CRITICAL),
        (" low ", Priority.LOW),
        (3, Priority.HIGH),
        (Priority.LOW, Priority.LOW),
        (None, Priority.NORMAL),
        ("bogus", Priority.NORMAL),
        (99, Priority.NORMAL),
    ],
)
def test_priority_parse(value, expected):
    assert Priority.parse(value) == expected


def test_priority_parse_uses_given_default():
    assert Priority.parse(None, Priority.HIGH) == Priority.HIGH
    assert Priority.parse("nope", Priority.LOW) == Priority.LOW


# ==============================================================================
# ScheduledTask
# ==============================================================================


def test_task_job_id_defaults_to_agent_id():
    assert make_task("agent-7").job_id == "agent-7"
    assert make_task("agent-7", job_id="job-1").job_id == "job-1"


def test_task_due_and_backoff():
    task = make_task(next_run_time=NOW)
    assert task.is_due(NOW)
    assert not task.is_due(NOW - timedelta(seconds=1))

    task.backoff_until = NOW + timedelta(seconds=5)
    assert task.is_backed_off(NOW)
    assert not task.is_backed_off(NOW + timedelta(seconds=5))


def test_task_sort_key_orders_priority_then_time():
    early_low = make_task("a", priority=Priority.LOW, next_run_time=NOW - timedelta(minutes=5))
    late_high = make_task("b", priority=Priority.HIGH, next_run_time=NOW)
    early_high = make_task("c", priority=Priority.HIGH, next_run_time=NOW - timedelta(minutes=1))

    ordered = sorted([early_low, late_high, early_high], key=ScheduledTask.sort_key)
    assert [t.agent_id for t in ordered] == ["c", "b", "a"]


def test_record_success_clears_failure_state():
    task = make_task(retry_count=2, last_error="boom", backoff_until=NOW)
    task.record_success()
    assert task.retry_count == 0
    assert task.last_error is None
    assert task.backoff_until is None


def test_task_snapshot_fields():
    task = make_task(priority=Priority.CRITICAL, paused=True, paused_at=NOW)
    snapshot = task.snapshot(is_running=False)
    assert snapshot["priority"] == "CRITICAL"
    assert snapshot["is_paused"] is True
    assert snapshot["paused_at"] == NOW
    assert snapshot["is_running"] is False
    assert snapshot["job_id"] == "a1"


# ==============================================================================
# ExecutionSession / Agent
# ==============================================================================


def test_session_summary_is_truncated():
    summary = ExecutionSession.summarize("x" * 5000)
    assert len(summary) == OUTPUT_SUMMARY_LIMIT


def test_session_summary_of_none():
    assert ExecutionSession.summarize(None) is None


def test_session_open_until_completed():
    session = ExecutionSession(id="s1", agent_id="a1", started_at=NOW, trigger=TriggerKind.SCHEDULE)
    assert session.is_open
    session.completed_at = NOW
    assert not session.is_open


def test_agent_copy_is_detached():
    agent = Agent(id="a1", agent_type="echo", configuration={"topic": "news"})
    clone = agent.copy()
    clone.configuration["topic"] = "sports"
    assert agent.configuration["topic"] == "news"


def test_agent_is_scheduled_requires_expression_and_flag():
    assert not Agent(id="a", agent_type="echo", schedule_enabled=True).is_scheduled
    assert not Agent(id="a", agent_type="echo", schedule_expression="* * * * *").is_scheduled
    assert Agent(
        id="a", agent_type="echo", schedule_expression="* * * * *", schedule_enabled=True
    ).is_scheduled


def test_agent_status_is_active():
    assert AgentStatus.RUNNING.is_active
    assert not AgentStatus.PAUSED.is_active
