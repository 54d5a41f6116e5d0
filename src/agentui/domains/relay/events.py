"""
Domain Events for the Relay bounded context.

Events are handed to the optional ``event_publisher`` callback of the
RelayService so hosts can audit context lifecycle and command delivery.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class ContextCreated:
    """Emitted when the first event for a context reference arrives."""
    context_ref: str
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def event_type(self) -> str:
        return "context.created"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "context_ref": self.context_ref,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ContextReleased:
    """Emitted when a context is destroyed explicitly or swept as idle."""
    context_ref: str
    reason: str  # "destroyed" or "expired"
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def event_type(self) -> str:
        return "context.released"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "context_ref": self.context_ref,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class CommandQueued:
    """Emitted when a command is accepted into a context's queue."""
    context_ref: str
    request_id: str
    command: str
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def event_type(self) -> str:
        return "command.queued"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "context_ref": self.context_ref,
            "request_id": self.request_id,
            "command": self.command,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class CommandCompleted:
    """Emitted when a command's first result is stored.

    ``error_kind`` is ``"expired"`` when the relay gave up waiting.
    """
    context_ref: str
    request_id: str
    ok: bool
    error_kind: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def event_type(self) -> str:
        return "command.completed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "context_ref": self.context_ref,
            "request_id": self.request_id,
            "ok": self.ok,
            "error_kind": self.error_kind,
            "timestamp": self.timestamp.isoformat(),
        }

    def __repr__(self) -> str:
        status = "ok" if self.ok else f"failed:{self.error_kind}"
        return f"CommandCompleted(ctx={self.context_ref}, rid={self.request_id}, {status})"
