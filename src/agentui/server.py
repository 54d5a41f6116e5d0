"""MCP server exposing the agent UI relay to agents."""

import argparse
import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from agentui.container import get_container
from agentui.domains.relay import RelayError, RelayService
from agentui.domains.shared import CommandName, EventType, random_token

logger = logging.getLogger(__name__)

RESULT_POLL_INTERVAL = 0.05

mcp = FastMCP("Agent UI Relay")


def _relay() -> RelayService:
    return get_container().relay_service


def _error_response(error: RelayError) -> Dict[str, Any]:
    response = error.to_dict()
    logger.info("Relay rejected request (%s): %s", error.kind, error)
    return response


@mcp.tool(
    name="get_ui_state",
    description=(
        "Get the latest UI state snapshot for a page context: active route, view, "
        "modal, focus and visible panels, plus the last focus change and pending "
        "command count."
    ),
)
async def get_ui_state(context_ref: str) -> Dict[str, Any]:
    """Return the relay's cached state for ``context_ref``."""
    try:
        return _relay().get_state(context_ref)
    except RelayError as e:
        return _error_response(e)


@mcp.tool(
    name="send_ui_command",
    description=(
        "Queue a command for a page context. Commands: navigate, focus, modal.open, "
        "modal.close, panel.toggle, click, type, scroll, waitFor. Re-sending the same "
        "request_id never re-executes; it returns the stored status or result. Set "
        "wait_timeout_ms to wait for the result."
    ),
)
async def send_ui_command(
    context_ref: str,
    command: CommandName,
    parameters: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
    wait_timeout_ms: int = 0,
) -> Dict[str, Any]:
    """Submit a command and optionally wait for its result.

    Args:
        context_ref: Target page context
        command: Command name from the closed command set
        parameters: Command parameters, e.g. ``{"modalId": "modal:login"}``
        request_id: Idempotency key; generated when omitted
        wait_timeout_ms: How long to wait for the shim's result (0 = don't wait)
    """
    relay = _relay()
    rid = request_id or f"req_{random_token(12)}"
    try:
        response = relay.submit_command(
            context_ref,
            {"requestId": rid, "command": command, "parameters": parameters or {}},
        )
        if wait_timeout_ms <= 0 or response.get("status") == "completed":
            return response

        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_timeout_ms / 1000.0
        while loop.time() < deadline:
            await asyncio.sleep(RESULT_POLL_INTERVAL)
            status = relay.get_result(context_ref, rid)
            if status.get("status") == "completed":
                return status
        return relay.get_result(context_ref, rid)
    except RelayError as e:
        return _error_response(e)


@mcp.tool(
    name="get_ui_command_result",
    description="Get the status (completed, pending or unknown) and result of a command.",
)
async def get_ui_command_result(context_ref: str, request_id: str) -> Dict[str, Any]:
    try:
        return _relay().get_result(context_ref, request_id)
    except RelayError as e:
        return _error_response(e)


@mcp.tool(
    name="get_ui_capabilities",
    description=(
        "List the route, view, panel and modal type ids observed for a page context "
        "and the commands allowed for it. Metadata only, no page content."
    ),
)
async def get_ui_capabilities(context_ref: str) -> Dict[str, Any]:
    try:
        return _relay().get_capabilities(context_ref)
    except RelayError as e:
        return _error_response(e)


@mcp.tool(
    name="list_ui_contexts",
    description="List live page contexts, most recently active first.",
)
async def list_ui_contexts() -> Dict[str, Any]:
    contexts = _relay().list_contexts()
    return {"success": True, "contexts": contexts, "count": len(contexts)}


@mcp.tool(
    name="get_recent_ui_events",
    description="Return recent UI events received by the relay (most recent first) with log statistics.",
)
async def get_recent_ui_events(
    limit: int = 50,
    context_ref: Optional[str] = None,
    event_type: Optional[EventType] = None,
) -> Dict[str, Any]:
    log = get_container().event_log
    events = log.recent(limit=limit, context_ref=context_ref, event_type=event_type)
    return {
        "success": True,
        "events": [e.to_dict() for e in events],
        "count": len(events),
        "stats": log.stats(),
    }


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Agent UI relay: MCP tools plus an optional HTTP bridge for page shims."
    )
    parser.add_argument(
        "--transport",
        dest="transport",
        choices=["stdio", "http", "sse"],
        help="Transport to use for the MCP server (default: stdio).",
    )
    parser.add_argument(
        "--host",
        dest="host",
        help="Host/interface for HTTP transport (default 127.0.0.1).",
    )
    parser.add_argument(
        "--port",
        dest="port",
        type=int,
        help="Port for HTTP transport (default 8000).",
    )
    parser.add_argument(
        "--path",
        dest="path",
        help="Path for HTTP/streamable endpoints (default '/').",
    )
    parser.add_argument(
        "--bridge",
        dest="bridge",
        action="store_true",
        help="Start the HTTP bridge that page shims post events to.",
    )
    parser.add_argument(
        "--bridge-host",
        dest="bridge_host",
        help="Host/interface for the shim bridge (default AGENTUI_BRIDGE_HOST or 127.0.0.1).",
    )
    parser.add_argument(
        "--bridge-port",
        dest="bridge_port",
        type=int,
        help="Port for the shim bridge (default AGENTUI_BRIDGE_PORT or 7420).",
    )
    parser.add_argument(
        "--bridge-token",
        dest="bridge_token",
        help="Shared token shims must send in X-AgentUI-Token (default AGENTUI_BRIDGE_TOKEN).",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        help="Log level for the MCP server (e.g., INFO, DEBUG).",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Start the relay MCP server, optionally with the shim bridge."""

    parser = _build_arg_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=(args.log_level or "INFO").upper())

    container = get_container()
    if args.bridge:
        container.get_bridge(
            host=args.bridge_host, port=args.bridge_port, token=args.bridge_token
        )
    container.start_background(with_bridge=args.bridge)

    try:
        run_kwargs: Dict[str, Any] = {}

        # Default to stdio when no transport is provided
        transport = args.transport or "stdio"
        run_kwargs["transport"] = transport

        if args.log_level:
            run_kwargs["log_level"] = args.log_level

        # Only pass host/port/path when using HTTP/SSE transports
        if transport != "stdio":
            if args.host:
                run_kwargs["host"] = args.host
            if args.port:
                run_kwargs["port"] = args.port
            if args.path:
                run_kwargs["path"] = args.path

        mcp.run(**run_kwargs)
    except KeyboardInterrupt:
        logger.info("Agent UI relay interrupted by user")
    finally:
        container.shutdown()


if __name__ == "__main__":
    main()
