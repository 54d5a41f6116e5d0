"""Dependency Injection Container for the agent UI relay.

This container wires together the relay-side services:
- Relay Context: RelayService, CommandPolicy, EventLog
- ContextSweeper: background idle-context eviction
- RelayBridge: optional HTTP bridge for out-of-process shims

Usage:
    from agentui.container import get_container

    container = get_container()
    relay = container.relay_service
    container.start_background()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from agentui.models.config_models import RelayConfig

if TYPE_CHECKING:
    from agentui.attach.relay_bridge import RelayBridge
    from agentui.domains.relay import CommandPolicy, ContextSweeper, EventLog, RelayService

logger = logging.getLogger(__name__)

# Singleton container instance
_container: Optional["ServiceContainer"] = None


@dataclass
class ServiceContainer:
    """Simple dependency injection container for relay services.

    Attributes:
        config: Relay limits and bridge settings (from ``AGENTUI_*``
            environment variables unless given explicitly)
    """

    config: RelayConfig = field(default_factory=RelayConfig.from_env)

    _policy: Optional["CommandPolicy"] = field(default=None, repr=False)
    _event_log: Optional["EventLog"] = field(default=None, repr=False)
    _relay_service: Optional["RelayService"] = field(default=None, repr=False)
    _sweeper: Optional["ContextSweeper"] = field(default=None, repr=False)
    _bridge: Optional["RelayBridge"] = field(default=None, repr=False)

    @property
    def policy(self) -> "CommandPolicy":
        """Get the shared command policy."""
        if self._policy is None:
            from agentui.domains.relay import CommandPolicy
            self._policy = CommandPolicy(self.config.allowed_commands)
        return self._policy

    @property
    def event_log(self) -> "EventLog":
        """Get the developer event log."""
        if self._event_log is None:
            from agentui.domains.relay import EventLog
            self._event_log = EventLog(self.config.event_log_size)
        return self._event_log

    @property
    def relay_service(self) -> "RelayService":
        """Get the relay service."""
        if self._relay_service is None:
            from agentui.domains.relay import RelayService
            self._relay_service = RelayService(
                config=self.config,
                policy=self.policy,
                event_log=self.event_log,
            )
        return self._relay_service

    @property
    def sweeper(self) -> "ContextSweeper":
        """Get the idle-context sweeper (not started)."""
        if self._sweeper is None:
            from agentui.domains.relay import ContextSweeper
            self._sweeper = ContextSweeper(self.relay_service)
        return self._sweeper

    def get_bridge(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        token: Optional[str] = None,
    ) -> "RelayBridge":
        """Get or create the HTTP bridge; arguments override the config."""
        if self._bridge is None:
            from agentui.attach.relay_bridge import RelayBridge
            self._bridge = RelayBridge(
                self.relay_service,
                host=host or self.config.bridge_host,
                port=self.config.bridge_port if port is None else port,
                token=token or self.config.bridge_token,
            )
        return self._bridge

    def start_background(self, with_bridge: bool = False) -> None:
        """Start the sweeper and, optionally, the HTTP bridge."""
        if not self.sweeper.is_alive():
            self.sweeper.start()
            logger.info("Context sweeper started (every %ss)", self.sweeper.interval)
        if with_bridge:
            self.get_bridge().start()

    def shutdown(self) -> None:
        """Stop background threads."""
        if self._bridge is not None:
            try:
                self._bridge.stop()
            except Exception as e:
                logger.warning(f"Failed to stop relay bridge: {e}")
        if self._sweeper is not None:
            self._sweeper.stop()


def get_container() -> ServiceContainer:
    """Get the singleton service container.

    Returns:
        The shared ServiceContainer instance
    """
    global _container
    if _container is None:
        _container = ServiceContainer()
    return _container


def reset_container() -> None:
    """Reset the container (for testing).

    Stops background threads and clears the singleton instance so a
    fresh container is created on next get_container() call.
    """
    global _container
    if _container is not None:
        _container.shutdown()
    _container = None
