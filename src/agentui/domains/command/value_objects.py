"""Value Objects for the Command Context.

Commands arrive as plain dictionaries from the relay; ``Command.from_message``
validates the envelope and normalizes the command name. Results are
frozen so a memoized result can be replayed without copying.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from agentui.domains.shared import canonical_command_name


class CommandError(Exception):
    """Base exception for command failures; ``kind`` goes on the wire."""

    kind = "handler"

    def __init__(self, message: str, kind: Optional[str] = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class TargetResolutionError(CommandError):
    """Raised when a command's target region or element cannot be found."""

    kind = "resolution"


class CommandTimeoutError(CommandError):
    """Raised when a wait reaches its deadline."""

    kind = "timeout"


class UnknownCommandError(CommandError):
    """Raised for malformed commands or names outside the closed set."""

    kind = "protocol"


class InvalidParametersError(UnknownCommandError):
    """Raised when a known command is missing or misuses a parameter."""


@dataclass(frozen=True)
class Command:
    """An inbound command addressed to one page context."""
    request_id: str
    name: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    context_ref: Optional[str] = None

    @classmethod
    def from_message(cls, message: Mapping[str, Any]) -> "Command":
        """Parse a ``{requestId, command, contextRef?, parameters}`` message.

        Raises:
            UnknownCommandError: If the envelope is malformed or the
                command is not in the closed command set.
        """
        if not isinstance(message, Mapping):
            raise UnknownCommandError("Command message must be an object")
        request_id = message.get("requestId")
        if not isinstance(request_id, str) or not request_id:
            raise UnknownCommandError("Command message requires a non-empty requestId")
        raw_name = message.get("command")
        name = canonical_command_name(raw_name)
        if name is None:
            raise UnknownCommandError(f"Unknown command: {raw_name!r}")
        parameters = message.get("parameters") or {}
        if not isinstance(parameters, Mapping):
            raise UnknownCommandError("Command parameters must be an object")
        return cls(
            request_id=request_id,
            name=name,
            parameters=dict(parameters),
            context_ref=message.get("contextRef"),
        )

    def to_message(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {
            "requestId": self.request_id,
            "command": self.name,
            "parameters": dict(self.parameters),
        }
        if self.context_ref is not None:
            message["contextRef"] = self.context_ref
        return message


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command execution.

    ``resulting_state_version`` names the snapshot that shows the
    command's effect (or the latest snapshot on failure).
    """
    request_id: str
    ok: bool
    resulting_state_version: int
    error: Optional[str] = None
    error_kind: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    @classmethod
    def success(
        cls, request_id: str, version: int, result: Optional[Dict[str, Any]] = None
    ) -> "CommandResult":
        return cls(request_id=request_id, ok=True, resulting_state_version=version, result=result)

    @classmethod
    def failure(cls, request_id: str, version: int, error: CommandError) -> "CommandResult":
        return cls(
            request_id=request_id,
            ok=False,
            resulting_state_version=version,
            error=str(error),
            error_kind=error.kind,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "requestId": self.request_id,
            "ok": self.ok,
            "resultingStateVersion": self.resulting_state_version,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.error_kind is not None:
            data["errorKind"] = self.error_kind
        if self.result is not None:
            data["result"] = self.result
        return data

    def to_message(self, context_ref: Any, timestamp: int) -> Dict[str, Any]:
        """Render as a ``cmd.result`` event message."""
        message: Dict[str, Any] = {
            "contextRef": str(context_ref),
            "type": "cmd.result",
            "timestamp": timestamp,
        }
        message.update(self.to_dict())
        return message
