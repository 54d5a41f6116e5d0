"""Tests for the emission rate shapers and the outbound channel."""

import asyncio
import logging

import pytest

from agentui.domains.emission import (
    KeyedDebouncer,
    MinIntervalGate,
    OutboundChannel,
    WindowedCoalescer,
)


# ── WindowedCoalescer ────────────────────────────────────────────────


class TestWindowedCoalescer:
    @pytest.mark.asyncio
    async def test_triggers_in_window_flush_once_at_boundary(self):
        flushed = []
        coalescer = WindowedCoalescer(0.05, lambda: flushed.append(True), asyncio.get_running_loop())
        for _ in range(10):
            coalescer.trigger()
        assert coalescer.pending
        assert flushed == []
        await asyncio.sleep(0.08)
        assert flushed == [True]
        assert coalescer.flush_count == 1
        assert not coalescer.pending

    @pytest.mark.asyncio
    async def test_new_window_after_flush(self):
        flushed = []
        coalescer = WindowedCoalescer(0.03, lambda: flushed.append(True), asyncio.get_running_loop())
        coalescer.trigger()
        await asyncio.sleep(0.05)
        coalescer.trigger()
        await asyncio.sleep(0.05)
        assert len(flushed) == 2

    @pytest.mark.asyncio
    async def test_cancel(self):
        flushed = []
        coalescer = WindowedCoalescer(0.02, lambda: flushed.append(True), asyncio.get_running_loop())
        coalescer.trigger()
        coalescer.cancel()
        await asyncio.sleep(0.04)
        assert flushed == []


# ── MinIntervalGate ──────────────────────────────────────────────────


class TestMinIntervalGate:
    @pytest.mark.asyncio
    async def test_leading_edge_is_immediate(self):
        emitted = []
        gate = MinIntervalGate(0.05, lambda: emitted.append(True), asyncio.get_running_loop())
        gate.trigger()
        assert emitted == [True]
        assert not gate.pending

    @pytest.mark.asyncio
    async def test_trigger_inside_cap_emits_once_at_trailing_edge(self):
        loop = asyncio.get_running_loop()
        times = []
        gate = MinIntervalGate(0.05, lambda: times.append(loop.time()), loop)
        gate.trigger()
        gate.trigger()
        gate.trigger()
        assert len(times) == 1
        assert gate.pending
        await asyncio.sleep(0.08)
        assert len(times) == 2
        assert times[1] - times[0] >= 0.045

    @pytest.mark.asyncio
    async def test_after_interval_emits_immediately_again(self):
        emitted = []
        gate = MinIntervalGate(0.02, lambda: emitted.append(True), asyncio.get_running_loop())
        gate.trigger()
        await asyncio.sleep(0.04)
        gate.trigger()
        assert len(emitted) == 2


# ── KeyedDebouncer ───────────────────────────────────────────────────


class TestKeyedDebouncer:
    @pytest.mark.asyncio
    async def test_only_last_callback_runs(self):
        calls = []
        debouncer = KeyedDebouncer(0.05, asyncio.get_running_loop())
        for i in range(5):
            debouncer.trigger("email", lambda i=i: calls.append(i))
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.08)
        assert calls == [4]

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        calls = []
        debouncer = KeyedDebouncer(0.03, asyncio.get_running_loop())
        debouncer.trigger("a", lambda: calls.append("a"))
        debouncer.trigger("b", lambda: calls.append("b"))
        assert sorted(debouncer.pending_keys) == ["a", "b"]
        await asyncio.sleep(0.05)
        assert sorted(calls) == ["a", "b"]
        assert debouncer.pending_keys == []

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        calls = []
        debouncer = KeyedDebouncer(0.02, asyncio.get_running_loop())
        debouncer.trigger("a", lambda: calls.append("a"))
        debouncer.cancel_all()
        await asyncio.sleep(0.04)
        assert calls == []


# ── OutboundChannel ──────────────────────────────────────────────────


class TestOutboundChannel:
    @pytest.mark.asyncio
    async def test_delivers_in_order(self):
        received = []

        async def send(message):
            await asyncio.sleep(0)
            received.append(message["n"])

        channel = OutboundChannel(send)
        channel.start()
        for n in range(5):
            channel.put({"type": "click", "n": n})
        await channel.drain()
        assert received == [0, 1, 2, 3, 4]
        assert channel.sent == 5
        await channel.aclose()

    @pytest.mark.asyncio
    async def test_failures_are_logged_and_dropped(self, caplog):
        received = []

        async def send(message):
            if message["n"] == 1:
                raise ConnectionError("relay down")
            received.append(message["n"])

        channel = OutboundChannel(send)
        channel.start()
        with caplog.at_level(logging.WARNING, logger="agentui.domains.emission.services"):
            for n in range(3):
                channel.put({"type": "focus.changed", "n": n})
            await channel.drain()
        assert received == [0, 2]
        assert channel.failed == 1
        assert "relay down" in caplog.text
        await channel.aclose()

    @pytest.mark.asyncio
    async def test_aclose_flushes_queue(self):
        received = []

        async def send(message):
            received.append(message["n"])

        channel = OutboundChannel(send)
        channel.start()
        channel.put({"type": "click", "n": 1})
        await channel.aclose()
        assert received == [1]

    @pytest.mark.asyncio
    async def test_aclose_times_out_on_stuck_send(self):
        async def send(message):
            await asyncio.sleep(10)

        channel = OutboundChannel(send)
        channel.start()
        channel.put({"type": "click"})
        await asyncio.sleep(0)
        await channel.aclose(timeout=0.05)
