"""Relay Bounded Context.

Short-lived, per-context state cache and command delivery store that
sits between page shims and agents.

Key Components:
- RelayService: Domain service for events, commands, state and policy
- ContextSession: Aggregate root holding one context's state
- InMemoryContextRepository: Thread-safe session map
- CommandPolicy: Per-context command allow-list
- EventLog: Bounded developer log of received events
- ContextSweeper: Background idle-context eviction
"""

from agentui.domains.relay.aggregates import ContextSession
from agentui.domains.relay.event_log import EventLog, StoredEvent
from agentui.domains.relay.events import (
    CommandCompleted,
    CommandQueued,
    ContextCreated,
    ContextReleased,
)
from agentui.domains.relay.policy import CommandPolicy
from agentui.domains.relay.repository import ContextRepository, InMemoryContextRepository
from agentui.domains.relay.services import ContextSweeper, RelayService
from agentui.domains.relay.value_objects import (
    ContextNotFoundError,
    ContextSummary,
    InvalidMessageError,
    PendingCommand,
    PolicyRejectedError,
    RateLimitedError,
    RelayError,
)

__all__ = [
    # Value Objects
    "ContextSummary",
    "PendingCommand",
    # Errors
    "ContextNotFoundError",
    "InvalidMessageError",
    "PolicyRejectedError",
    "RateLimitedError",
    "RelayError",
    # Aggregates
    "ContextSession",
    # Domain Events
    "CommandCompleted",
    "CommandQueued",
    "ContextCreated",
    "ContextReleased",
    # Repository
    "ContextRepository",
    "InMemoryContextRepository",
    # Services
    "CommandPolicy",
    "ContextSweeper",
    "EventLog",
    "RelayService",
    "StoredEvent",
]
