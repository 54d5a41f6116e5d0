"""Tests for CommandExecutor: envelope checks, replay and cancellation."""

import asyncio

import pytest

from agentui.domains.command import (
    Command,
    CommandExecutor,
    CommandHandlers,
    CommandResult,
    UnknownCommandError,
)
from agentui.domains.emission import EventPipeline
from agentui.domains.identity import RegionResolver
from agentui.domains.shared import ContextRef


def _build(document, sent, config, handlers_class=CommandHandlers, memo_size=None):
    resolver = RegionResolver(document)
    resolver.register_all()
    pipeline = EventPipeline(document, resolver, ContextRef("ctx_exec"), sent.append, config)
    pipeline.publish_snapshot()
    handlers = handlers_class(document, resolver, pipeline, config)
    return CommandExecutor(
        handlers, pipeline, memo_size if memo_size is not None else config.result_memo_size
    )


class ExplodingHandlers(CommandHandlers):
    async def click(self, params):
        raise RuntimeError("boom")


# ── Envelope ─────────────────────────────────────────────────────────


class TestCommandEnvelope:
    def test_from_message_normalizes(self):
        command = Command.from_message(
            {"requestId": "r1", "command": "focus", "parameters": {"selector": "#email"}}
        )
        assert command.name == "focus"
        assert command.parameters == {"selector": "#email"}
        assert command.to_message()["requestId"] == "r1"

    @pytest.mark.parametrize(
        "message",
        [
            "not a dict",
            {"command": "focus"},
            {"requestId": "", "command": "focus"},
            {"requestId": "r1", "command": "reboot"},
            {"requestId": "r1", "command": "focus", "parameters": ["x"]},
        ],
    )
    def test_malformed_messages(self, message):
        with pytest.raises(UnknownCommandError):
            Command.from_message(message)

    def test_result_wire_form(self):
        result = CommandResult.success("r9", 4, {"focus": "#email"})
        message = result.to_message("ctx_1", 123)
        assert message == {
            "contextRef": "ctx_1",
            "type": "cmd.result",
            "timestamp": 123,
            "requestId": "r9",
            "ok": True,
            "resultingStateVersion": 4,
            "result": {"focus": "#email"},
        }


# ── Execution ────────────────────────────────────────────────────────


class TestCommandExecutor:
    @pytest.mark.asyncio
    async def test_unknown_command_is_protocol_error(self, app_page, sent, fast_config):
        executor = _build(app_page, sent, fast_config)
        result = await executor.process_message({"requestId": "r1", "command": "explode"})
        assert not result.ok
        assert result.error_kind == "protocol"
        assert result.request_id == "r1"
        assert result.resulting_state_version == 1

    @pytest.mark.asyncio
    async def test_missing_request_id(self, app_page, sent, fast_config):
        result = await _build(app_page, sent, fast_config).process_message({"command": "focus"})
        assert result.request_id == ""
        assert result.error_kind == "protocol"

    @pytest.mark.asyncio
    async def test_success_publishes_snapshot_first(self, app_page, sent, fast_config):
        executor = _build(app_page, sent, fast_config)
        result = await executor.process_message(
            {"requestId": "r1", "command": "focus", "parameters": {"selector": "#email"}}
        )
        assert result.ok
        snapshots = [m for m in sent if m["type"] == "state.snapshot"]
        assert result.resulting_state_version == snapshots[-1]["version"] == 2
        assert snapshots[-1]["focus"] == "#email"

    @pytest.mark.asyncio
    async def test_failure_does_not_publish(self, app_page, sent, fast_config):
        executor = _build(app_page, sent, fast_config)
        result = await executor.process_message(
            {"requestId": "r1", "command": "focus", "parameters": {"selector": "#nope"}}
        )
        assert result.resulting_state_version == 1
        assert len(sent) == 1

    @pytest.mark.asyncio
    async def test_same_request_id_runs_once(self, app_page, sent, fast_config):
        executor = _build(app_page, sent, fast_config)
        focus_events = []
        app_page.get_element_by_id("email").add_event_listener("focus", focus_events.append)
        message = {"requestId": "dup", "command": "focus", "parameters": {"selector": "#email"}}

        first = await executor.process_message(message)
        app_page.get_element_by_id("email").blur()
        second = await executor.process_message(message)

        assert len(focus_events) == 1
        assert second is first
        assert second.to_dict() == first.to_dict()
        assert executor.remembered("dup") is first

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_share_one_run(self, app_page, sent, fast_config):
        executor = _build(app_page, sent, fast_config)
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, lambda: setattr(app_page.get_element_by_id("login"), "hidden", False))
        message = {
            "requestId": "wait-1",
            "command": "waitFor",
            "parameters": {"modalId": "modal:login", "timeoutMs": 500},
        }
        first, second = await asyncio.gather(
            executor.process_message(message), executor.process_message(message)
        )
        assert first.ok and second.ok
        assert first is second
        assert executor.pending_count == 0

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_handler_error(self, app_page, sent, fast_config):
        executor = _build(app_page, sent, fast_config, handlers_class=ExplodingHandlers)
        result = await executor.process_message(
            {"requestId": "r1", "command": "click", "parameters": {"selector": "#checkout"}}
        )
        assert not result.ok
        assert result.error_kind == "handler"
        assert "RuntimeError: boom" in result.error

    @pytest.mark.asyncio
    async def test_memo_is_bounded(self, app_page, sent, fast_config):
        executor = _build(app_page, sent, fast_config, memo_size=2)
        for request_id in ("a", "b", "c"):
            await executor.process_message(
                {"requestId": request_id, "command": "focus", "parameters": {"selector": "#email"}}
            )
        assert executor.remembered("a") is None
        assert executor.remembered("b") is not None
        assert executor.remembered("c") is not None


# ── Cancellation ─────────────────────────────────────────────────────


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_pending_fails_waits(self, app_page, sent, fast_config):
        executor = _build(app_page, sent, fast_config)
        task = asyncio.ensure_future(
            executor.process_message(
                {
                    "requestId": "w1",
                    "command": "waitFor",
                    "parameters": {"selector": "#never", "timeoutMs": 10_000},
                }
            )
        )
        await asyncio.sleep(0.03)
        assert executor.pending_count == 1

        assert executor.cancel_pending() == 1
        result = await asyncio.wait_for(task, timeout=1.0)
        assert not result.ok
        assert result.error_kind == "timeout"
        assert "cancelled" in result.error
        assert executor.pending_count == 0

    @pytest.mark.asyncio
    async def test_commands_after_cancel_pending_are_refused(self, app_page, sent, fast_config):
        executor = _build(app_page, sent, fast_config)
        executor.cancel_pending()
        result = await asyncio.wait_for(
            executor.process_message(
                {
                    "requestId": "late",
                    "command": "waitFor",
                    "parameters": {"selector": "#never", "timeoutMs": 10_000},
                }
            ),
            timeout=0.5,
        )
        assert not result.ok
        assert result.error_kind == "timeout"
        assert "shim destroyed" in result.error

    @pytest.mark.asyncio
    async def test_wait_idle_returns_when_nothing_runs(self, app_page, sent, fast_config):
        executor = _build(app_page, sent, fast_config)
        await asyncio.wait_for(executor.wait_idle(), timeout=0.5)
        assert executor.cancel_pending() == 0

    @pytest.mark.asyncio
    async def test_outer_cancellation_propagates(self, app_page, sent, fast_config):
        executor = _build(app_page, sent, fast_config)
        task = asyncio.ensure_future(
            executor.process_message(
                {
                    "requestId": "w2",
                    "command": "waitFor",
                    "parameters": {"selector": "#never", "timeoutMs": 10_000},
                }
            )
        )
        await asyncio.sleep(0.03)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert executor.remembered("w2") is None
