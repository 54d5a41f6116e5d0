"""HTTP bridge and client for reaching a relay from other processes."""

from agentui.attach.client import RelayBridgeClient
from agentui.attach.relay_bridge import RelayBridge

__all__ = ["RelayBridge", "RelayBridgeClient"]
