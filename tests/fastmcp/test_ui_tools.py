"""End-to-end tests for the agent UI MCP tools via the in-memory client."""

from __future__ import annotations

import uuid

import pytest
import pytest_asyncio
from fastmcp import Client
from fastmcp.exceptions import ToolError

from agentui import PageAgentShim, RelayTransport
from agentui.container import get_container
from agentui.domains.shared import ContextRef
from agentui.server import mcp
from tests.utils.builders import result_message, snapshot_message


def _ctx(prefix: str = "ctx_tools") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


@pytest_asyncio.fixture
async def mcp_client():
    async with Client(mcp) as client:
        yield client


@pytest.fixture
def seeded():
    """A context with one snapshot in the container's relay."""
    ref = _ctx()
    get_container().relay_service.ingest_event(snapshot_message(
        ref, 1,
        view={"typeId": "view:cart", "instanceId": "vi_1"},
        panels=[{"typeId": "panel:filters", "instanceId": "pi_1"}],
    ))
    return ref


# ── State and capabilities ───────────────────────────────────────────


class TestStateTools:
    @pytest.mark.asyncio
    async def test_get_ui_state(self, mcp_client, seeded):
        res = await mcp_client.call_tool("get_ui_state", {"context_ref": seeded})
        assert res.data["success"] is True
        assert res.data["snapshot"]["view"]["typeId"] == "view:cart"
        assert res.data["pendingCommands"] == 0

    @pytest.mark.asyncio
    async def test_unknown_context(self, mcp_client):
        res = await mcp_client.call_tool("get_ui_state", {"context_ref": "ctx_nobody"})
        assert res.data["success"] is False
        assert res.data["error_kind"] == "not_found"
        assert res.data["error"] == "context not found: ctx_nobody"

    @pytest.mark.asyncio
    async def test_get_ui_capabilities(self, mcp_client, seeded):
        res = await mcp_client.call_tool("get_ui_capabilities", {"context_ref": seeded})
        assert res.data["views"] == ["view:cart"]
        assert res.data["panels"] == ["panel:filters"]
        assert "modal.open" in res.data["commands"]

    @pytest.mark.asyncio
    async def test_list_ui_contexts(self, mcp_client, seeded):
        res = await mcp_client.call_tool("list_ui_contexts", {})
        assert res.data["count"] == 1
        assert res.data["contexts"][0]["contextRef"] == seeded
        assert res.data["contexts"][0]["snapshotVersion"] == 1

    @pytest.mark.asyncio
    async def test_get_recent_ui_events(self, mcp_client, seeded):
        get_container().relay_service.ingest_event(
            {"contextRef": seeded, "type": "click", "timestamp": 1, "actionId": "buy"}
        )
        res = await mcp_client.call_tool(
            "get_recent_ui_events", {"context_ref": seeded, "event_type": "CLICK"}
        )
        assert res.data["count"] == 1
        assert res.data["events"][0]["data"]["actionId"] == "buy"
        assert res.data["stats"]["total_events"] == 2


# ── Commands ─────────────────────────────────────────────────────────


class TestCommandTools:
    @pytest.mark.asyncio
    async def test_send_without_waiting(self, mcp_client, seeded):
        res = await mcp_client.call_tool(
            "send_ui_command",
            {"context_ref": seeded, "command": "focus", "parameters": {"fieldId": "email"}},
        )
        assert res.data["status"] == "queued"
        assert res.data["requestId"].startswith("req_")
        assert res.data["expiresIn"] == 30.0

    @pytest.mark.asyncio
    async def test_resend_returns_stored_result(self, mcp_client, seeded):
        relay = get_container().relay_service
        args = {"context_ref": seeded, "command": "waitfor", "request_id": "w1",
                "parameters": {"viewId": "view:cart"}}
        first = await mcp_client.call_tool("send_ui_command", args)
        assert first.data["status"] == "queued"
        assert relay.poll_commands(seeded)[0]["command"] == "waitFor"

        relay.ingest_event(result_message(seeded, "w1", result={"waitedMs": 0}))
        again = await mcp_client.call_tool("send_ui_command", args)
        assert again.data["status"] == "completed"
        assert again.data["duplicate"] is True

        res = await mcp_client.call_tool(
            "get_ui_command_result", {"context_ref": seeded, "request_id": "w1"}
        )
        assert res.data["result"]["result"] == {"waitedMs": 0}

    @pytest.mark.asyncio
    async def test_wait_times_out_as_pending(self, mcp_client, seeded):
        res = await mcp_client.call_tool(
            "send_ui_command",
            {"context_ref": seeded, "command": "scroll", "parameters": {"to": "top"},
             "request_id": "s1", "wait_timeout_ms": 120},
        )
        assert res.data["status"] == "pending"

    @pytest.mark.asyncio
    async def test_policy_rejection(self, mcp_client, seeded):
        get_container().policy.set_allowed(["focus"], context_ref=seeded)
        res = await mcp_client.call_tool(
            "send_ui_command", {"context_ref": seeded, "command": "click",
                                "parameters": {"selector": "#buy"}},
        )
        assert res.data["success"] is False
        assert res.data["error_kind"] == "policy"

    @pytest.mark.asyncio
    async def test_unknown_command_name_rejected_by_schema(self, mcp_client, seeded):
        with pytest.raises(ToolError):
            await mcp_client.call_tool(
                "send_ui_command", {"context_ref": seeded, "command": "reboot"}
            )

    @pytest.mark.asyncio
    async def test_round_trip_with_live_shim(self, mcp_client, app_page, fast_config):
        fast_config.command_poll_interval = 0.01
        ref = _ctx("ctx_live")
        shim = PageAgentShim(
            app_page, RelayTransport(get_container().relay_service), fast_config, ContextRef(ref)
        )
        await shim.init()
        try:
            res = await mcp_client.call_tool(
                "send_ui_command",
                {"context_ref": ref, "command": "modal.open",
                 "parameters": {"modalId": "modal:login"}, "wait_timeout_ms": 2000},
            )
            assert res.data["status"] == "completed"
            assert res.data["result"]["ok"] is True
            version = res.data["result"]["resultingStateVersion"]

            state = await mcp_client.call_tool("get_ui_state", {"context_ref": ref})
            snapshot = state.data["snapshot"]
            assert snapshot["version"] >= version
            assert snapshot["modal"]["typeId"] == "modal:login"
            assert snapshot["focus"] == "#username"
        finally:
            await shim.destroy()
