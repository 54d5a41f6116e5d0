"""Command Bounded Context.

Executes inbound commands from the closed command set against the page
and reports each outcome as a CommandResult.

Key Components:
- CommandExecutor: Domain service with idempotent replay
- CommandHandlers: Handler table (navigate, focus, modal.open, ...)
- ModalController: Reversible modal isolation and focus restore
- Command / CommandResult: Value objects for the wire messages
"""

from agentui.domains.command.modal import ModalController, first_focusable
from agentui.domains.command.services import (
    CommandExecutor,
    CommandHandlers,
    SnapshotPublisher,
)
from agentui.domains.command.value_objects import (
    Command,
    CommandError,
    CommandResult,
    CommandTimeoutError,
    InvalidParametersError,
    TargetResolutionError,
    UnknownCommandError,
)

__all__ = [
    # Value Objects
    "Command",
    "CommandResult",
    # Errors
    "CommandError",
    "CommandTimeoutError",
    "InvalidParametersError",
    "TargetResolutionError",
    "UnknownCommandError",
    # Domain Services
    "CommandExecutor",
    "CommandHandlers",
    "ModalController",
    "SnapshotPublisher",
    "first_focusable",
]
