"""Developer event log for the relay.

Keeps the most recent events received from shims, for debugging and
visualization. Subscribers are called synchronously on append; a
failing subscriber is logged and does not affect the others.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional

from agentui.domains.shared import random_token

logger = logging.getLogger(__name__)

EventCallback = Callable[["StoredEvent"], None]


@dataclass(frozen=True)
class StoredEvent:
    """One received event as recorded in the log."""
    id: str
    type: str
    context_ref: Optional[str]
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "contextRef": self.context_ref,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }


class EventLog:
    """Bounded, thread-safe log of received events."""

    def __init__(self, max_events: int = 500) -> None:
        self.max_events = max_events
        self._events: Deque[StoredEvent] = deque(maxlen=max_events)
        self._subscribers: List[EventCallback] = []
        self._lock = threading.Lock()
        self._counter = 0

    def add(self, event_type: str, context_ref: Optional[str], data: Dict[str, Any]) -> StoredEvent:
        with self._lock:
            self._counter += 1
            stored = StoredEvent(
                id=f"evt_{self._counter}_{random_token(6).lower()}",
                type=event_type,
                context_ref=context_ref,
                data=data,
            )
            self._events.append(stored)
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(stored)
            except Exception:
                logger.exception("Event log subscriber failed")
        return stored

    def recent(
        self,
        limit: int = 100,
        context_ref: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> List[StoredEvent]:
        """Most recent first, optionally filtered."""
        with self._lock:
            events = list(self._events)
        events.reverse()
        if context_ref is not None:
            events = [e for e in events if e.context_ref == context_ref]
        if event_type is not None:
            events = [e for e in events if e.type == event_type]
        return events[:max(0, limit)]

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            events = list(self._events)
        contexts: List[str] = []
        for event in events:
            if event.context_ref and event.context_ref not in contexts:
                contexts.append(event.context_ref)
        return {
            "total_events": len(events),
            "capacity": self.max_events,
            "events_by_type": dict(Counter(e.type for e in events)),
            "contexts": contexts,
            "last_event_time": events[-1].timestamp.isoformat() if events else None,
        }

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
