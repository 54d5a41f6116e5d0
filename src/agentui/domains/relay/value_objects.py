"""Value Objects for the Relay Context.

Relay failures are a small exception hierarchy; each carries a ``kind``
that the bridge and tool layers put on the wire and map to a status.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


class RelayError(Exception):
    """Base exception for relay failures."""

    kind = "invalid"

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": str(self), "error_kind": self.kind}


class ContextNotFoundError(RelayError):
    """Raised when a context reference is unknown, destroyed or expired."""

    kind = "not_found"

    def __init__(self, context_ref: str) -> None:
        super().__init__(f"context not found: {context_ref}")
        self.context_ref = context_ref


class PolicyRejectedError(RelayError):
    """Raised when a command is not on the context's allow-list."""

    kind = "policy"


class RateLimitedError(RelayError):
    """Raised when a per-context limit is exceeded.

    Attributes:
        retry_after: Seconds the caller should wait before retrying
    """

    kind = "rate_limited"

    def __init__(self, message: str, retry_after: float) -> None:
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retry_after"] = round(self.retry_after, 3)
        return data


class InvalidMessageError(RelayError):
    """Raised when an event or command message is malformed."""

    kind = "invalid"


@dataclass
class PendingCommand:
    """A queued command awaiting acknowledgement from the shim."""
    request_id: str
    message: Dict[str, Any]
    enqueued_at: float
    expires_at: float
    deliveries: int = 0

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_message(self) -> Dict[str, Any]:
        """The command as delivered to the shim."""
        return dict(self.message)


@dataclass(frozen=True)
class ContextSummary:
    """Read-only view of one context for listings."""
    context_ref: str
    created_at: float
    last_activity: float
    snapshot_version: Optional[int]
    pending_commands: int
    route: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contextRef": self.context_ref,
            "createdAt": self.created_at,
            "lastActivity": self.last_activity,
            "snapshotVersion": self.snapshot_version,
            "pendingCommands": self.pending_commands,
            "route": self.route,
        }
