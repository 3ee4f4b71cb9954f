"""Event Bus — in-process notifications about the evolution pipeline.

The daemon publishes lifecycle and completion events; anything embedding
the daemon (the CLI, a dashboard, a test) can follow along by
subscribing to a topic pattern such as "evolution.*".
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field

from codevolve.types import new_id, utcnow

_logger = logging.getLogger(__name__)

DAEMON_STARTED = "evolution.daemon_started"
DAEMON_STOPPED = "evolution.daemon_stopped"
DAEMON_ERROR = "evolution.daemon_error"
PROPOSAL_COMPLETE = "evolution.complete"

EventHandler = Callable[["Event"], Awaitable[None]]


class Event(BaseModel):
    id: str = Field(default_factory=new_id)
    topic: str
    data: dict[str, Any] = Field(default_factory=dict)
    source: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class EventBus:
    """Fan-out of pipeline events to pattern subscribers, with a bounded history."""

    def __init__(self, history_limit: int = 500) -> None:
        self._subscriptions: list[tuple[str, EventHandler]] = []
        self._history: deque[Event] = deque(maxlen=history_limit)

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        self._subscriptions.append((pattern, handler))

    def unsubscribe(self, pattern: str, handler: EventHandler) -> None:
        try:
            self._subscriptions.remove((pattern, handler))
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def emit(self, topic: str, data: dict | None = None, source: str = "") -> Event:
        """Publish an event. Subscriber failures are logged, never raised."""
        event = Event(topic=topic, data=data or {}, source=source)
        self._history.append(event)

        handlers = [h for pattern, h in self._subscriptions if fnmatch.fnmatch(topic, pattern)]
        if not handlers:
            return event

        results = await asyncio.gather(*(h(event) for h in handlers), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                _logger.warning("Subscriber failed on %s: %s", topic, result)
        return event

    def history(self, topic_filter: str = "*", limit: int = 50) -> list[Event]:
        """Most recent events first, optionally filtered by topic pattern."""
        matching = [e for e in reversed(self._history) if fnmatch.fnmatch(e.topic, topic_filter)]
        return matching[:limit]
