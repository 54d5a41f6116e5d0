"""Agent UI - observation-and-control protocol between web pages and agents."""

from agentui.domains.relay import RelayService  # noqa: F401
from agentui.page import Document, load_html  # noqa: F401
from agentui.shim import PageAgentShim  # noqa: F401
from agentui.transport import HttpRelayTransport, RelayTransport  # noqa: F401

__all__ = [
    "Document",
    "HttpRelayTransport",
    "PageAgentShim",
    "RelayService",
    "RelayTransport",
    "load_html",
]

__version__ = "0.1.0"
