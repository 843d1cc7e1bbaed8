"""
test_notifications.py — Tests for the operator notification sinks.
"""

from __future__ import annotations

import sys, os
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import pytest
from loguru import logger

from notifications import NotificationSink, RecentEventSink


@pytest.fixture
def captured():
    """Collect loguru records emitted during the test."""
    records = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


class TestNotificationSink:
    def test_forwards_to_loguru(self, captured):
        NotificationSink().emit("warn", "Swap blocked: cap", {"reason": "cap"})
        record = captured[-1]
        assert record["level"].name == "WARNING"
        assert record["message"] == "Swap blocked: cap"
        assert record["extra"]["reason"] == "cap"

    @pytest.mark.parametrize("level,expected", [
        ("info", "INFO"),
        ("success", "SUCCESS"),
        ("error", "ERROR"),
        ("ERROR", "ERROR"),
        ("mystery", "INFO"),
    ])
    def test_level_mapping(self, captured, level, expected):
        NotificationSink().emit(level, "event")
        assert captured[-1]["level"].name == expected

    def test_emit_never_raises(self):
        class BrokenSink(NotificationSink):
            def _deliver(self, level, message, fields):
                raise RuntimeError("sink offline")

        BrokenSink().emit("error", "still fine")


class TestRecentEventSink:
    def test_keeps_events(self):
        sink = RecentEventSink()
        sink.emit("info", "one", {"n": 1})
        sink.emit("success", "two")
        events = sink.recent()
        assert [e["message"] for e in events] == ["one", "two"]
        assert events[0]["fields"] == {"n": 1}
        assert events[1]["level"] == "success"
        assert events[0]["timestamp"]

    def test_bounded(self):
        sink = RecentEventSink(max_events=3)
        for i in range(5):
            sink.emit("info", f"e{i}")
        assert [e["message"] for e in sink.recent()] == ["e2", "e3", "e4"]

    def test_recent_limit(self):
        sink = RecentEventSink()
        for i in range(5):
            sink.emit("info", f"e{i}")
        assert [e["message"] for e in sink.recent(2)] == ["e3", "e4"]
        assert sink.recent(0) == []
        assert len(sink.recent(None)) == 5

    def test_fields_are_copied(self):
        sink = RecentEventSink()
        fields = {"n": 1}
        sink.emit("info", "event", fields)
        fields["n"] = 2
        assert sink.recent()[0]["fields"] == {"n": 1}

    def test_clear(self):
        sink = RecentEventSink()
        sink.emit("info", "event")
        sink.clear()
        assert sink.recent() == []
