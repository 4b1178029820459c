"""
Event Bus - Explicit publish/subscribe channel.

============================================================
PURPOSE
============================================================
Pipeline and scheduler publish typed events here; collaborators
(broadcast, persistence hooks, metrics) subscribe by event type or to
everything with ``"*"``.

PRINCIPLES:
- Subscribers are registered explicitly and can be removed
- A failing subscriber never affects the publisher or other subscribers
- Recent events are kept in a bounded history

============================================================
"""

import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Union

from core.clock import ClockProtocol, SystemClock


logger = logging.getLogger(__name__)


class EventType(Enum):
    """Named events exposed to collaborators."""
    RUN_START = "run:start"
    RUN_COMPLETE = "run:complete"
    TOKEN_DISCOVERED = "token:discovered"
    TOKEN_PASSED = "token:passed"
    TOKEN_STORED = "token:stored"
    TOKEN_BLACKLISTED = "token:blacklisted"
    TOKEN_UNBLACKLISTED = "token:unblacklisted"
    STAGE_START = "stage:start"
    STAGE_COMPLETE = "stage:complete"
    TOKEN_COMPLETE = "token:complete"
    ALERT = "alert"
    CONFIG_UPDATED = "config:updated"
    STATS_RESET = "stats:reset"


WILDCARD = "*"


@dataclass(frozen=True)
class Event:
    """One published event."""
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": self.type,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


# Sync callbacks run inline; coroutine callbacks are scheduled as tasks
EventCallback = Callable[[Event], Any]


class EventBus:
    """Callback registry with bounded history."""

    def __init__(
        self,
        history_size: int = 1000,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._clock = clock or SystemClock()
        self._callbacks: Dict[str, List[EventCallback]] = {}
        self._history: Deque[Event] = deque(maxlen=history_size)
        self._pending: Set[asyncio.Task] = set()
        self._published = 0
        self._subscriber_errors = 0

    def subscribe(
        self,
        event_type: Union[EventType, str],
        callback: EventCallback,
    ) -> Callable[[], bool]:
        """
        Register a callback.

        Returns:
            A function that removes the subscription
        """
        key = _key(event_type)
        self._callbacks.setdefault(key, []).append(callback)
        return lambda: self.unsubscribe(key, callback)

    def unsubscribe(
        self,
        event_type: Union[EventType, str],
        callback: EventCallback,
    ) -> bool:
        callbacks = self._callbacks.get(_key(event_type), [])
        if callback in callbacks:
            callbacks.remove(callback)
            return True
        return False

    def publish(
        self,
        event_type: Union[EventType, str],
        payload: Optional[Dict[str, Any]] = None,
    ) -> Event:
        """Deliver an event to its subscribers and record it."""
        event = Event(type=_key(event_type), payload=payload or {}, timestamp=self._clock.now())
        self._history.append(event)
        self._published += 1

        targets = list(self._callbacks.get(event.type, ())) + list(self._callbacks.get(WILDCARD, ()))
        for callback in targets:
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    self._track(asyncio.ensure_future(result), event)
            except Exception as e:
                self._subscriber_errors += 1
                logger.error(f"Subscriber error for {event.type}: {e}", exc_info=True)

        return event

    def _track(self, task: asyncio.Future, event: Event) -> None:
        self._pending.add(task)

        def _done(t: asyncio.Future) -> None:
            self._pending.discard(t)
            if t.cancelled():
                return
            error = t.exception()
            if error is not None:
                self._subscriber_errors += 1
                logger.error(f"Async subscriber error for {event.type}: {error}")

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for scheduled async subscribers to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def recent(
        self,
        limit: int = 50,
        event_type: Optional[Union[EventType, str]] = None,
    ) -> List[Event]:
        """Get recent events, newest first."""
        if limit <= 0:
            return []
        events = list(self._history)
        if event_type is not None:
            key = _key(event_type)
            events = [e for e in events if e.type == key]
        return events[-limit:][::-1]

    def stats(self) -> Dict[str, Any]:
        return {
            "published": self._published,
            "subscriber_errors": self._subscriber_errors,
            "subscriptions": sum(len(v) for v in self._callbacks.values()),
            "pending": len(self._pending),
        }


def _key(event_type: Union[EventType, str]) -> str:
    return event_type.value if isinstance(event_type, EventType) else event_type


__all__ = [
    "Event",
    "EventBus",
    "EventCallback",
    "EventType",
    "WILDCARD",
]
