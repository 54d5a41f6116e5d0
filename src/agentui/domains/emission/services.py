"""Emission Domain Services.

This module contains the rate-shaping schedulers and the EventPipeline
that turns page activity into outbound protocol messages.

Throttling is asymmetric per event class:
- structural snapshots: one recomputation per window, at the window
  boundary, always from the latest page state
- focus changes: emitted immediately, capped to one per interval, with
  a trailing emission when a change lands inside the cap
- field changes: trailing debounce per field
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from agentui.domains.emission.value_objects import (
    FieldChanged,
    FocusChanged,
    RouteChanged,
    SemanticClick,
    StateSnapshot,
    TabVisibility,
    UIEventMessage,
)
from agentui.domains.identity import RegionResolver
from agentui.domains.shared import ContextRef
from agentui.models.config_models import ShimConfig
from agentui.page.dom import Document, Element, Event, MutationRecord

logger = logging.getLogger(__name__)

SEMANTIC_CLICK_ATTRIBUTES = ("data-assist-field", "data-assist-action", "data-assist-item")


class WindowedCoalescer:
    """Runs ``flush`` at most once per window.

    The first trigger opens a window; further triggers inside it are
    absorbed and the single flush runs at the window boundary.
    """

    def __init__(
        self,
        window: float,
        flush: Callable[[], Any],
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self.window = window
        self._flush = flush
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self.flush_count = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        if self._handle is None:
            self._handle = self._loop.call_later(self.window, self._fire)

    def _fire(self) -> None:
        self._handle = None
        self.flush_count += 1
        self._flush()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class MinIntervalGate:
    """Leading-edge emission capped to one per ``interval``.

    A trigger inside the cap schedules one trailing emission at the end
    of the cap, so the final state is never dropped.
    """

    def __init__(
        self,
        interval: float,
        emit: Callable[[], Any],
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self.interval = interval
        self._emit = emit
        self._loop = loop
        self._last: Optional[float] = None
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        if self._handle is not None:
            return
        now = self._loop.time()
        if self._last is None or now - self._last >= self.interval:
            self._fire()
        else:
            self._handle = self._loop.call_later(self.interval - (now - self._last), self._fire)

    def _fire(self) -> None:
        self._handle = None
        self._last = self._loop.time()
        self._emit()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class KeyedDebouncer:
    """Trailing debounce with one timer per key."""

    def __init__(self, delay: float, loop: asyncio.AbstractEventLoop) -> None:
        self.delay = delay
        self._loop = loop
        self._handles: Dict[str, asyncio.TimerHandle] = {}

    @property
    def pending_keys(self) -> List[str]:
        return list(self._handles)

    def trigger(self, key: str, callback: Callable[[], Any]) -> None:
        handle = self._handles.pop(key, None)
        if handle is not None:
            handle.cancel()
        self._handles[key] = self._loop.call_later(self.delay, self._fire, key, callback)

    def _fire(self, key: str, callback: Callable[[], Any]) -> None:
        self._handles.pop(key, None)
        callback()

    def cancel_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()


class OutboundChannel:
    """Single ordered, fire-and-forget delivery channel.

    Messages leave in the order they were put. A failed send is logged
    and dropped: the next emission carries fresher state.
    """

    def __init__(self, send: Callable[[Dict[str, Any]], Awaitable[Any]]) -> None:
        self._send = send
        self._queue: "asyncio.Queue[Optional[Dict[str, Any]]]" = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self.sent = 0
        self.failed = 0

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())

    def put(self, message: Dict[str, Any]) -> None:
        self._queue.put_nowait(message)

    async def drain(self) -> None:
        """Wait until every queued message has been attempted."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                if message is None:
                    return
                try:
                    await self._send(message)
                    self.sent += 1
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self.failed += 1
                    logger.warning(
                        "Failed to send %s event to relay: %s", message.get("type"), e
                    )
            finally:
                self._queue.task_done()

    async def aclose(self, timeout: float = 1.0) -> None:
        """Flush queued messages (bounded by ``timeout``) and stop."""
        if self._task is None:
            return
        self._queue.put_nowait(None)
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout)
        except asyncio.TimeoutError:
            logger.warning("Outbound channel did not drain within %.1fs", timeout)
            self._task.cancel()
        self._task = None


# ----------------------------------------------------------------------
# Field helpers
# ----------------------------------------------------------------------


def field_type(element: Element) -> str:
    tag = element.tag_name
    if tag in ("select", "textarea"):
        return tag
    if tag == "input":
        return f"input:{(element.get_attribute('type') or 'text').lower()}"
    return "unknown"


def field_value(element: Element) -> Optional[str]:
    tag = element.tag_name
    if tag == "select":
        option = element.selected_option
        if option is None:
            return None
        return option.text_content or option.get_attribute("value")
    if tag == "input" and (element.get_attribute("type") or "").lower() in ("checkbox", "radio"):
        return "checked" if element.checked else "unchecked"
    if tag in ("input", "textarea"):
        return element.value or None
    return None


def _is_label_like(element: Element) -> bool:
    return element.tag_name in ("label", "legend") or "label" in element.class_list


def resolve_field_label(document: Document, element: Element) -> Optional[str]:
    """Best-effort human label for a field.

    Order: explicit label attribute, associated ``<label for>``,
    enclosing ``<label>``, nearest preceding label-like sibling.
    """
    for attribute in ("data-assist-label", "aria-label"):
        explicit = element.get_attribute(attribute)
        if explicit and explicit.strip():
            return explicit.strip()

    if element.id:
        for label in document.query_selector_all("label"):
            if label.get_attribute("for") == element.id:
                text = label.text_content.strip()
                if text:
                    return text

    parent = element.parent
    while parent is not None:
        if parent.tag_name == "label":
            own = element.text_content
            text = parent.text_content.replace(own, "", 1).strip() if own else parent.text_content.strip()
            if text:
                return text
            break
        parent = parent.parent

    sibling = element.previous_element_sibling
    while sibling is not None:
        if _is_label_like(sibling):
            text = sibling.text_content.strip()
            if text:
                return text
        sibling = sibling.previous_element_sibling
    return None


def _closest_attribute(element: Element, attribute: str) -> Optional[str]:
    node: Optional[Element] = element
    while node is not None:
        value = node.get_attribute(attribute)
        if value:
            return value
        node = node.parent
    return None


# ----------------------------------------------------------------------
# Pipeline
# ----------------------------------------------------------------------


class EventPipeline:
    """Turns page activity into throttled protocol messages.

    The pipeline owns the snapshot version counter: every emitted
    snapshot takes the next version, so versions strictly increase.
    """

    def __init__(
        self,
        document: Document,
        resolver: RegionResolver,
        context_ref: ContextRef,
        outbound: Callable[[Dict[str, Any]], None],
        config: Optional[ShimConfig] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.document = document
        self.resolver = resolver
        self.context_ref = context_ref
        self.config = config or ShimConfig()
        self._outbound = outbound
        self._loop = loop or asyncio.get_running_loop()

        self.version = 0
        self.snapshots: Deque[StateSnapshot] = deque(maxlen=self.config.snapshot_history)
        self._field_values: Dict[str, Optional[str]] = {}

        self._structural = WindowedCoalescer(
            self.config.snapshot_window, self._flush_structural, self._loop
        )
        self._focus_gate = MinIntervalGate(
            self.config.focus_min_interval, self._emit_focus, self._loop
        )
        self._field_debouncer = KeyedDebouncer(self.config.field_debounce, self._loop)

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    @property
    def latest_snapshot(self) -> Optional[StateSnapshot]:
        return self.snapshots[-1] if self.snapshots else None

    def emit(self, event: UIEventMessage) -> Dict[str, Any]:
        message = event.to_message(self.context_ref)
        self._outbound(message)
        return message

    def publish_snapshot(self) -> StateSnapshot:
        """Recompute the active context and emit it as the next version."""
        context = self.resolver.compute_active_context()
        self.version += 1
        snapshot = StateSnapshot.from_context(self.version, self.document.url, context)
        self.snapshots.append(snapshot)
        self.emit(snapshot)
        logger.debug(
            "Snapshot v%d route=%s view=%s modal=%s",
            snapshot.version, snapshot.route, snapshot.view, snapshot.modal,
        )
        return snapshot

    def _flush_structural(self) -> None:
        # Regions inserted after init get their instance ids on first sight.
        self.resolver.register_all()
        context = self.resolver.compute_active_context()
        candidate = StateSnapshot.from_context(self.version + 1, self.document.url, context)
        if candidate.same_state(self.latest_snapshot):
            return
        self.publish_snapshot()

    def _emit_focus(self) -> None:
        context = self.resolver.compute_active_context()
        self.emit(
            FocusChanged(
                focus=context.focus.selector if context.focus else None,
                modal=context.modal,
                view=context.view,
            )
        )

    def prime_field_values(self) -> None:
        """Record current values of annotated fields as the baseline."""
        for element in self.document.query_selector_all("[data-assist-field]"):
            field_id = element.get_attribute("data-assist-field")
            if field_id and element.tag_name in ("input", "select", "textarea"):
                self._field_values.setdefault(field_id, field_value(element))

    def _emit_field(self, element: Element, field_id: str) -> None:
        new_value = field_value(element)
        old_value = self._field_values.get(field_id)
        if new_value == old_value:
            return
        self._field_values[field_id] = new_value
        context = self.resolver.compute_active_context()
        self.emit(
            FieldChanged(
                field_id=field_id,
                field_type=field_type(element),
                field_label=resolve_field_label(self.document, element),
                old_value=old_value,
                new_value=new_value,
                view=context.view,
                modal=context.modal,
            )
        )

    # ------------------------------------------------------------------
    # Page listeners
    # ------------------------------------------------------------------

    def on_mutations(self, records: List[MutationRecord], observer: Any = None) -> None:
        self._structural.trigger()

    def on_focus_change(self, event: Event) -> None:
        self._focus_gate.trigger()

    def on_field_input(self, event: Event) -> None:
        target = event.target
        if not isinstance(target, Element):
            return
        field_id = target.get_attribute("data-assist-field")
        if not field_id:
            return
        self._field_debouncer.trigger(field_id, lambda: self._emit_field(target, field_id))

    def on_click(self, event: Event) -> None:
        target = event.target
        if not isinstance(target, Element):
            return
        field_id = _closest_attribute(target, "data-assist-field")
        action_id = _closest_attribute(target, "data-assist-action")
        item_id = _closest_attribute(target, "data-assist-item")
        if not (field_id or action_id or item_id):
            return

        button = target.closest("button")
        button_text = (
            target.text_content
            or target.get_attribute("aria-label")
            or (button.text_content if button is not None else "")
            or None
        )

        metadata: Optional[Dict[str, str]] = None
        if item_id:
            item = target.closest("[data-assist-item]")
            if item is not None:
                props = {
                    el.get_attribute("data-assist-prop"): el.text_content
                    for el in item.query_selector_all("[data-assist-prop]")
                    if el.get_attribute("data-assist-prop")
                }
                metadata = props or None

        context = self.resolver.compute_active_context()
        self.emit(
            SemanticClick(
                selector=self.resolver.selector_for(target),
                field_id=field_id,
                action_id=action_id,
                item_id=item_id,
                button_text=button_text,
                item_metadata=metadata,
                view=context.view,
                modal=context.modal,
            )
        )

    def on_popstate(self, event: Event) -> None:
        snapshot = self.publish_snapshot()
        self.emit(RouteChanged(url=self.document.url, route=snapshot.route))

    def on_visibility_change(self, event: Event) -> None:
        self.emit(TabVisibility(hidden=self.document.hidden))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def has_pending_timers(self) -> bool:
        return (
            self._structural.pending
            or self._focus_gate.pending
            or bool(self._field_debouncer.pending_keys)
        )

    def cancel(self) -> None:
        """Cancel every pending timer."""
        self._structural.cancel()
        self._focus_gate.cancel()
        self._field_debouncer.cancel_all()
