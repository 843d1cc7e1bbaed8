"""
notifications.py — Fire-and-forget operator notifications.

The agent reports decisions, rejections, executions and economy events
through a NotificationSink. Sinks forward to loguru (with the structured
fields bound to the record) and may keep a bounded in-memory tail for status
screens. emit() never raises and never blocks the trading cycle.

Levels follow the agent's event vocabulary: info, success, warn, error.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Optional

from loguru import logger


_LOGURU_LEVELS = {
    "debug": "DEBUG",
    "info": "INFO",
    "success": "SUCCESS",
    "warn": "WARNING",
    "warning": "WARNING",
    "error": "ERROR",
}


class NotificationSink:
    """Forwards every event to loguru."""

    def emit(self, level: str, message: str, fields: Optional[dict[str, Any]] = None) -> None:
        try:
            self._deliver(level, message, dict(fields or {}))
        except Exception as exc:
            # A broken sink must not break the cycle that reported the event.
            logger.opt(exception=exc).debug(f"Notification delivery failed: {message}")

    def _deliver(self, level: str, message: str, fields: dict[str, Any]) -> None:
        loguru_level = _LOGURU_LEVELS.get(level.lower(), "INFO")
        logger.bind(**fields).log(loguru_level, message)


class RecentEventSink(NotificationSink):
    """Loguru forwarding plus a bounded tail of recent events."""

    def __init__(self, max_events: int = 200) -> None:
        self._events: Deque[dict[str, Any]] = deque(maxlen=max_events)

    def _deliver(self, level: str, message: str, fields: dict[str, Any]) -> None:
        self._events.append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "message": message,
            "fields": fields,
        })
        super()._deliver(level, message, fields)

    def recent(self, limit: Optional[int] = 50) -> list[dict[str, Any]]:
        """Oldest first. limit=None returns every kept event."""
        if limit is None:
            return list(self._events)
        if limit <= 0:
            return []
        return list(self._events)[-limit:]

    def clear(self) -> None:
        self._events.clear()
