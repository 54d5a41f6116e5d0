"""Transports connecting a page shim to a relay.

A transport carries three shim-side operations: deliver one event,
fetch pending commands, and release the context on destroy. Failures
raise ``TransportError`` (or a relay error for the in-process
transport); the shim logs them and carries on.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from agentui.attach.client import RelayBridgeClient
from agentui.domains.relay import RelayService

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Raised when a relay call over a transport fails."""

    def __init__(self, message: str, kind: Optional[str] = None) -> None:
        super().__init__(message)
        self.kind = kind


@runtime_checkable
class ShimTransport(Protocol):
    """What the shim needs from a relay connection."""

    async def send_event(self, message: Dict[str, Any]) -> None: ...

    async def poll_commands(self, context_ref: str) -> List[Dict[str, Any]]: ...

    async def close_context(self, context_ref: str) -> None: ...


class RelayTransport:
    """In-process transport calling a RelayService directly."""

    def __init__(self, service: RelayService) -> None:
        self.service = service

    async def send_event(self, message: Dict[str, Any]) -> None:
        self.service.ingest_event(message)

    async def poll_commands(self, context_ref: str) -> List[Dict[str, Any]]:
        return self.service.poll_commands(context_ref)

    async def close_context(self, context_ref: str) -> None:
        self.service.destroy_context(context_ref)


class HttpRelayTransport:
    """JSON-over-HTTP transport talking to a RelayBridge.

    Blocking HTTP calls run in a worker thread so the shim's event loop
    keeps serving timers and listeners.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 7420,
        token: str = "change-me",
        timeout: float = 10.0,
        client: Optional[RelayBridgeClient] = None,
    ) -> None:
        self.client = client or RelayBridgeClient(host, port, token, timeout)

    @staticmethod
    def _check(response: Dict[str, Any]) -> Dict[str, Any]:
        if not response.get("success", False):
            raise TransportError(
                str(response.get("error", "relay call failed")), response.get("error_kind")
            )
        return response

    async def send_event(self, message: Dict[str, Any]) -> None:
        self._check(await asyncio.to_thread(self.client.send_event, message))

    async def poll_commands(self, context_ref: str) -> List[Dict[str, Any]]:
        response = self._check(await asyncio.to_thread(self.client.poll_commands, context_ref))
        return list(response.get("commands") or [])

    async def close_context(self, context_ref: str) -> None:
        response = await asyncio.to_thread(self.client.close_context, context_ref)
        if not response.get("success", False):
            logger.warning("Relay did not release %s: %s", context_ref, response.get("error"))
