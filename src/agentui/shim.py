"""Page agent shim.

One PageAgentShim is attached to one page for its lifetime. ``init``
registers regions, publishes the first snapshot (version 1), installs
the mutation observer and event listeners, and starts polling the relay
for commands. ``destroy`` reverses every one of those steps and tells
the relay to release the context.

Examples:
    >>> relay = RelayService()
    >>> shim = PageAgentShim(document, RelayTransport(relay))
    >>> await shim.init()
    >>> relay.get_state(shim.context_ref.value)["snapshot"]["version"]
    1
    >>> await shim.destroy()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

from agentui.domains.command import CommandExecutor, CommandHandlers, CommandResult
from agentui.domains.emission import EventPipeline, OutboundChannel, StateSnapshot
from agentui.domains.identity import ActiveContext, RegionResolver
from agentui.domains.shared import ContextRef, now_millis
from agentui.models.config_models import ShimConfig
from agentui.page.dom import Document, EventTarget, MutationObserver
from agentui.transport import ShimTransport

logger = logging.getLogger(__name__)


class PageAgentShim:
    """Observes one page, reports to a relay and executes its commands."""

    def __init__(
        self,
        document: Document,
        transport: ShimTransport,
        config: Optional[ShimConfig] = None,
        context_ref: Optional[ContextRef] = None,
    ) -> None:
        self.document = document
        self.transport = transport
        self.config = config or ShimConfig()
        self.context_ref = context_ref or ContextRef.generate()
        self.resolver = RegionResolver(document, self.config.reserved_view_prefixes)

        self.pipeline: Optional[EventPipeline] = None
        self.executor: Optional[CommandExecutor] = None
        self.channel: Optional[OutboundChannel] = None
        self._observer: Optional[MutationObserver] = None
        self._listeners: List[Tuple[EventTarget, str, Callable[..., Any], bool]] = []
        self._poll_task: Optional[asyncio.Task] = None
        self._command_tasks: Set[asyncio.Task] = set()

    @property
    def initialized(self) -> bool:
        return self.pipeline is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> StateSnapshot:
        """Attach to the page; returns the first snapshot."""
        if self.pipeline is not None:
            raise RuntimeError("Shim is already initialized")
        loop = asyncio.get_running_loop()

        registered = self.resolver.register_all()
        self.channel = OutboundChannel(self.transport.send_event)
        self.channel.start()
        self.pipeline = EventPipeline(
            self.document, self.resolver, self.context_ref, self.channel.put, self.config, loop
        )
        self.pipeline.prime_field_values()
        handlers = CommandHandlers(self.document, self.resolver, self.pipeline, self.config)
        self.executor = CommandExecutor(handlers, self.pipeline, self.config.result_memo_size)

        snapshot = self.pipeline.publish_snapshot()

        self._observer = MutationObserver(self._on_mutations)
        self._observer.observe(
            self.document.document_element,
            child_list=True,
            attributes=True,
            subtree=True,
            attribute_filter=list(self.config.observed_attributes),
        )

        window = self.document.default_view
        pipeline = self.pipeline
        self._listen(window, "focusin", pipeline.on_focus_change)
        self._listen(window, "focusout", pipeline.on_focus_change)
        self._listen(self.document, "input", pipeline.on_field_input)
        self._listen(self.document, "change", pipeline.on_field_input)
        self._listen(self.document, "click", pipeline.on_click, capture=True)
        self._listen(window, "popstate", pipeline.on_popstate)
        self._listen(self.document, "visibilitychange", pipeline.on_visibility_change)

        if self.config.command_poll_interval > 0:
            self._poll_task = loop.create_task(self._poll_loop())

        logger.info(
            "Shim %s attached to %s (%d regions)", self.context_ref, self.document.url, registered
        )
        return snapshot

    async def destroy(self) -> None:
        """Detach from the page and release the relay context."""
        if self.pipeline is None:
            return
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        cancelled = self.executor.cancel_pending() if self.executor else 0
        self.pipeline.cancel()
        if cancelled:
            await self.executor.wait_idle()
        if self._command_tasks:
            # Cancelled waits put their failure on the channel before it closes.
            await asyncio.wait(list(self._command_tasks), timeout=1.0)
            for task in list(self._command_tasks):
                task.cancel()

        if self._observer is not None:
            self._observer.disconnect()
            self._observer = None
        for target, event_type, listener, capture in self._listeners:
            target.remove_event_listener(event_type, listener, capture)
        self._listeners.clear()

        if self.channel is not None:
            await self.channel.aclose()
            self.channel = None

        try:
            await self.transport.close_context(self.context_ref.value)
        except Exception as e:
            logger.warning("Failed to release context %s: %s", self.context_ref, e)

        self.executor.handlers.modals.forget()
        self.pipeline = None
        self.executor = None
        logger.info("Shim %s destroyed", self.context_ref)

    def _listen(
        self, target: EventTarget, event_type: str, listener: Callable[..., Any], capture: bool = False
    ) -> None:
        target.add_event_listener(event_type, listener, capture)
        self._listeners.append((target, event_type, listener, capture))

    def _on_mutations(self, records: List[Any], observer: MutationObserver) -> None:
        if self.pipeline is not None:
            self.pipeline.on_mutations(records, observer)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def process_command(self, message: Mapping[str, Any]) -> CommandResult:
        """Execute one command message and send its ``cmd.result``."""
        if self.executor is None or self.channel is None:
            raise RuntimeError("Shim is not initialized")
        result = await self.executor.process_message(message)
        if self.channel is not None:
            self.channel.put(result.to_message(self.context_ref, now_millis()))
        return result

    def _command_done(self, task: asyncio.Task) -> None:
        self._command_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Command failed for %s: %s", self.context_ref, task.exception()
            )

    async def _poll_loop(self) -> None:
        interval = self.config.command_poll_interval
        while True:
            try:
                commands = await self.transport.poll_commands(self.context_ref.value)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Command poll failed for %s: %s", self.context_ref, e)
                commands = []
            for message in commands:
                task = asyncio.ensure_future(self.process_command(message))
                self._command_tasks.add(task)
                task.add_done_callback(self._command_done)
            await asyncio.sleep(interval)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def current_context(self) -> ActiveContext:
        """Recompute the active context from the page as it is now."""
        return self.resolver.compute_active_context()

    def current_state(self) -> Optional[Dict[str, Any]]:
        """The latest emitted snapshot as a message, or None before init."""
        if self.pipeline is None or self.pipeline.latest_snapshot is None:
            return None
        return self.pipeline.latest_snapshot.to_message(self.context_ref)

    @property
    def snapshot_history(self) -> List[StateSnapshot]:
        return list(self.pipeline.snapshots) if self.pipeline is not None else []
