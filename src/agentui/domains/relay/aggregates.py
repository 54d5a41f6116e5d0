"""Aggregates for the Relay Context.

The ContextSession is the aggregate root for everything the relay knows
about one page context. It owns its own lock so contention is per
context; the repository lock only guards the map of sessions.
"""

from __future__ import annotations

import json
import threading
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

from agentui.domains.relay.value_objects import ContextSummary, PendingCommand

REGION_KEYS = (("route", "routes"), ("view", "views"), ("modal", "modals"))


@dataclass
class ContextSession:
    """Relay-side state for one context reference.

    Invariants:
    - ``latest_snapshot`` has the highest version seen since the last
      page reload (version 1 restarts the sequence)
    - a requestId has at most one stored result, and the first one wins
    - a requestId is never both pending and completed
    """
    context_ref: str
    created_at: float
    last_activity: float
    history_size: int = 10
    result_retention: int = 1000

    latest_snapshot: Optional[Dict[str, Any]] = None
    history: Deque[Dict[str, Any]] = field(default_factory=deque)
    focus: Optional[Dict[str, Any]] = None
    route: Optional[Dict[str, Any]] = None
    tab_hidden: bool = False
    observed: Dict[str, List[str]] = field(
        default_factory=lambda: {"routes": [], "views": [], "panels": [], "modals": []}
    )
    pending: "OrderedDict[str, PendingCommand]" = field(default_factory=OrderedDict)
    results: "OrderedDict[str, str]" = field(default_factory=OrderedDict)
    event_times: Deque[float] = field(default_factory=deque)
    event_count: int = 0

    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.history = deque(self.history, maxlen=self.history_size)

    # ------------------------------------------------------------------
    # Activity and rate
    # ------------------------------------------------------------------

    def touch(self, now: float) -> None:
        self.last_activity = now

    def is_idle(self, now: float, ttl: float) -> bool:
        return now - self.last_activity > ttl

    def check_event_rate(self, now: float, limit: int, window: float = 60.0) -> Optional[float]:
        """Count one event; return seconds to wait if the cap is reached."""
        while self.event_times and now - self.event_times[0] >= window:
            self.event_times.popleft()
        if len(self.event_times) >= limit:
            return max(0.0, window - (now - self.event_times[0]))
        self.event_times.append(now)
        self.event_count += 1
        return None

    # ------------------------------------------------------------------
    # Page state
    # ------------------------------------------------------------------

    @property
    def snapshot_version(self) -> Optional[int]:
        if self.latest_snapshot is None:
            return None
        return self.latest_snapshot.get("version")

    def accept_snapshot(self, snapshot: Dict[str, Any]) -> bool:
        """Store ``snapshot`` if it is newer; returns False when dropped.

        Version 1 after a higher version means the page reloaded and a
        fresh shim started counting again, so history restarts.
        """
        version = snapshot["version"]
        current = self.latest_snapshot
        if current is not None:
            if version == 1 and current.get("version", 0) > 1:
                self.history.clear()
            elif version <= current.get("version", 0):
                return False
        self.latest_snapshot = snapshot
        self.history.append(snapshot)
        self._observe(snapshot)
        return True

    def _observe(self, snapshot: Dict[str, Any]) -> None:
        for key, bucket in REGION_KEYS:
            region = snapshot.get(key)
            if isinstance(region, dict):
                self._add_observed(bucket, region.get("typeId"))
        for panel in snapshot.get("panels") or []:
            if isinstance(panel, dict):
                self._add_observed("panels", panel.get("typeId"))

    def _add_observed(self, bucket: str, type_id: Optional[str]) -> None:
        if type_id and type_id not in self.observed[bucket]:
            self.observed[bucket].append(type_id)

    def record_focus(self, event: Dict[str, Any]) -> None:
        self.focus = {
            "focus": event.get("focus"),
            "modal": event.get("modal"),
            "view": event.get("view"),
            "timestamp": event.get("timestamp"),
        }

    def record_route(self, event: Dict[str, Any]) -> None:
        self.route = {
            "url": event.get("url"),
            "routeId": event.get("routeId"),
            "timestamp": event.get("timestamp"),
        }
        route = event.get("route")
        if isinstance(route, dict):
            self._add_observed("routes", route.get("typeId"))

    def record_modal(self, event: Dict[str, Any]) -> None:
        self._add_observed("modals", event.get("modalId"))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @property
    def in_flight(self) -> int:
        return len(self.pending)

    def enqueue(
        self, request_id: str, message: Dict[str, Any], now: float, ttl: float
    ) -> PendingCommand:
        pending = PendingCommand(
            request_id=request_id,
            message=message,
            enqueued_at=now,
            expires_at=now + ttl,
        )
        self.pending[request_id] = pending
        return pending

    def expire_overdue(self, now: float) -> List[PendingCommand]:
        """Move overdue pending commands to failed ``expired`` results."""
        expired = [p for p in self.pending.values() if p.is_expired(now)]
        for command in expired:
            ttl = command.expires_at - command.enqueued_at
            self.store_result({
                "requestId": command.request_id,
                "ok": False,
                "resultingStateVersion": self.snapshot_version or 0,
                "error": f"command expired after {ttl:g}s without a result",
                "errorKind": "expired",
            })
        return expired

    def take_deliverable(self) -> List[Dict[str, Any]]:
        """All unacknowledged commands, in submission order."""
        messages = []
        for command in self.pending.values():
            command.deliveries += 1
            messages.append(command.to_message())
        return messages

    def store_result(self, result: Dict[str, Any]) -> bool:
        """Store the first result for a requestId; later ones are ignored."""
        request_id = result["requestId"]
        if request_id in self.results:
            return False
        self.pending.pop(request_id, None)
        self.results[request_id] = json.dumps(result, sort_keys=True, separators=(",", ":"))
        while len(self.results) > self.result_retention:
            self.results.popitem(last=False)
        return True

    def result_for(self, request_id: str) -> Optional[Dict[str, Any]]:
        stored = self.results.get(request_id)
        return json.loads(stored) if stored is not None else None

    def raw_result_for(self, request_id: str) -> Optional[str]:
        """The stored result exactly as recorded."""
        return self.results.get(request_id)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def summary(self) -> ContextSummary:
        snapshot = self.latest_snapshot or {}
        return ContextSummary(
            context_ref=self.context_ref,
            created_at=self.created_at,
            last_activity=self.last_activity,
            snapshot_version=self.snapshot_version,
            pending_commands=self.in_flight,
            route=snapshot.get("route"),
        )

    def state_dict(self) -> Dict[str, Any]:
        return {
            "contextRef": self.context_ref,
            "snapshot": self.latest_snapshot,
            "focus": self.focus,
            "route": self.route,
            "tabHidden": self.tab_hidden,
            "historyLength": len(self.history),
            "pendingCommands": self.in_flight,
            "lastActivity": self.last_activity,
        }
