"""Tests for the notification channel."""

import logging

from pyagenda.notify import EventQueueNotifier, Notifier, safe_emit


class BrokenNotifier:
    def agent_started(self, agent_id):
        raise ConnectionError("socket closed")


class AsyncNotifier:
    def __init__(self):
        self.seen = []

    async def agent_completed(self, agent_id, duration_ms):
        self.seen.append((agent_id, duration_ms))


async def test_safe_emit_without_notifier_is_noop():
    await safe_emit(None, "agent_started", "a1")


async def test_safe_emit_skips_missing_methods():
    await safe_emit(object(), "agent_started", "a1")


async def test_safe_emit_swallows_and_logs_failures(caplog):
    with caplog.at_level(logging.WARNING, logger="pyagenda.notify"):
        await safe_emit(BrokenNotifier(), "agent_started", "a1")
    assert "socket closed" in caplog.text


async def test_safe_emit_awaits_async_handlers():
    notifier = AsyncNotifier()
    await safe_emit(notifier, "agent_completed", "a1", 42)
    assert notifier.seen == [("a1", 42)]


async def test_event_queue_notifier_records_events():
    notifier = EventQueueNotifier()
    await safe_emit(notifier, "agent_started", "a1")
    await safe_emit(notifier, "agent_failed", "a1", "boom")
    await safe_emit(notifier, "scheduler_status", {"scheduled_jobs_count": 2})

    events = notifier.drain()

    assert [e.kind for e in events] == ["agent_started", "agent_failed", "scheduler_status"]
    assert events[1].data == {"status": "error", "error": "boom"}
    assert events[2].agent_id is None
    assert events[2].data["scheduled_jobs_count"] == 2
    assert notifier.queue.empty()


def test_event_queue_notifier_drops_oldest_when_full():
    notifier = EventQueueNotifier(maxsize=2)
    notifier.agent_paused("a1")
    notifier.agent_resumed("a1")
    notifier.agent_paused("a2")

    events = notifier.drain()
    assert [(e.kind, e.agent_id) for e in events] == [
        ("agent_resumed", "a1"),
        ("agent_paused", "a2"),
    ]


def test_event_queue_notifier_satisfies_protocol():
    assert isinstance(EventQueueNotifier(), Notifier)
