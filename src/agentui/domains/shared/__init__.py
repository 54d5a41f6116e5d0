"""Shared Kernel - Types shared across bounded contexts."""

from agentui.domains.shared.kernel import (
    COMMAND_NAMES,
    EVENT_TYPES,
    CommandName,
    ContextRef,
    EventType,
    RegionKind,
    RegionKindLiteral,
    RegionRef,
    canonical_command_name,
    now_millis,
    random_token,
)

__all__ = [
    "COMMAND_NAMES",
    "EVENT_TYPES",
    "CommandName",
    "ContextRef",
    "EventType",
    "RegionKind",
    "RegionKindLiteral",
    "RegionRef",
    "canonical_command_name",
    "now_millis",
    "random_token",
]
