"""Emission Bounded Context.

Observes page mutation, focus, field and click activity and forwards
it as protocol messages without flooding the relay.

Key Components:
- EventPipeline: Domain service owning snapshot versions and listeners
- WindowedCoalescer / MinIntervalGate / KeyedDebouncer: rate shaping
- OutboundChannel: ordered fire-and-forget delivery
- StateSnapshot and the other message value objects
"""

from agentui.domains.emission.services import (
    EventPipeline,
    KeyedDebouncer,
    MinIntervalGate,
    OutboundChannel,
    WindowedCoalescer,
    field_type,
    field_value,
    resolve_field_label,
)
from agentui.domains.emission.value_objects import (
    FieldChanged,
    FocusChanged,
    ModalClosed,
    ModalOpened,
    RouteChanged,
    SemanticClick,
    StateSnapshot,
    TabVisibility,
    UIEventMessage,
)

__all__ = [
    # Value Objects
    "FieldChanged",
    "FocusChanged",
    "ModalClosed",
    "ModalOpened",
    "RouteChanged",
    "SemanticClick",
    "StateSnapshot",
    "TabVisibility",
    "UIEventMessage",
    # Domain Services
    "EventPipeline",
    "KeyedDebouncer",
    "MinIntervalGate",
    "OutboundChannel",
    "WindowedCoalescer",
    "field_type",
    "field_value",
    "resolve_field_label",
]
