"""Command Domain Services.

The CommandExecutor validates an inbound command, resolves its target,
dispatches it through a fixed handler table and reports the outcome.

Target resolution order:
1. ``instanceId`` (optionally with ``kind``)
2. a type id: ``modalId``, ``viewId``, ``panelId``, ``routeId`` or
   ``typeId`` with ``kind``; the topmost visible match wins
3. the active modal, else the active view

Every successful command publishes a fresh snapshot before the result
is built, so ``resultingStateVersion`` names the snapshot showing the
command's effect.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections import OrderedDict
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Mapping,
    Optional,
    Protocol,
    Set,
    runtime_checkable,
)

from agentui.domains.command.modal import ModalController, first_focusable
from agentui.domains.command.value_objects import (
    Command,
    CommandError,
    CommandResult,
    CommandTimeoutError,
    InvalidParametersError,
    TargetResolutionError,
    UnknownCommandError,
)
from agentui.domains.emission.value_objects import (
    ModalClosed,
    ModalOpened,
    StateSnapshot,
    UIEventMessage,
)
from agentui.domains.identity import RegionResolver
from agentui.domains.shared import RegionKind
from agentui.models.config_models import ShimConfig
from agentui.page.dom import Document, Element, Event
from agentui.page.selectors import SelectorSyntaxError

logger = logging.getLogger(__name__)

Handler = Callable[[Mapping[str, Any]], Awaitable[Optional[Dict[str, Any]]]]

TYPE_ID_PARAMETERS = (
    ("modalId", RegionKind.MODAL),
    ("viewId", RegionKind.VIEW),
    ("panelId", RegionKind.PANEL),
    ("routeId", RegionKind.ROUTE),
)

EDITABLE_TAGS = ("input", "textarea", "select")


# ── Protocol Definitions ──────────────────────────────────────────────

@runtime_checkable
class SnapshotPublisher(Protocol):
    """What the executor needs from the emission pipeline."""

    version: int

    def publish_snapshot(self) -> StateSnapshot: ...

    def emit(self, event: UIEventMessage) -> Dict[str, Any]: ...


# ── Handlers ──────────────────────────────────────────────────────────

class CommandHandlers:
    """Handler table for the closed command set.

    Each handler takes the command parameters and returns an optional
    result payload, or raises a CommandError.
    """

    def __init__(
        self,
        document: Document,
        resolver: RegionResolver,
        publisher: SnapshotPublisher,
        config: Optional[ShimConfig] = None,
    ) -> None:
        self.document = document
        self.resolver = resolver
        self.publisher = publisher
        self.config = config or ShimConfig()
        self.modals = ModalController(document)

    def table(self) -> Dict[str, Handler]:
        return {
            "navigate": self.navigate,
            "focus": self.focus,
            "modal.open": self.modal_open,
            "modal.close": self.modal_close,
            "panel.toggle": self.panel_toggle,
            "click": self.click,
            "type": self.type_text,
            "scroll": self.scroll,
            "waitFor": self.wait_for,
        }

    # ------------------------------------------------------------------
    # Resolution helpers
    # ------------------------------------------------------------------

    def _kind_param(self, params: Mapping[str, Any]) -> Optional[RegionKind]:
        raw = params.get("kind")
        if raw is None:
            return None
        try:
            return RegionKind.from_string(str(raw))
        except ValueError as e:
            raise InvalidParametersError(str(e)) from e

    def find_any(
        self,
        kind: RegionKind,
        type_id: Optional[str] = None,
        instance_id: Optional[str] = None,
    ) -> Optional[Element]:
        """Like ``find_region`` but falls back to hidden nodes of the type."""
        element = self.resolver.find_region(kind, type_id=type_id, instance_id=instance_id)
        if element is None and type_id and not instance_id:
            for candidate in self.resolver.regions(kind):
                if candidate.get_attribute(kind.attribute) == type_id:
                    return candidate
        return element

    def resolve_target(
        self, params: Mapping[str, Any], include_hidden: bool = False
    ) -> Optional[Element]:
        """Resolve the element a command addresses.

        Raises:
            TargetResolutionError: If an explicit identifier matches nothing.
        """
        kind = self._kind_param(params)
        find = self.find_any if include_hidden else self.resolver.find_region

        instance_id = params.get("instanceId")
        if instance_id:
            kinds = [kind] if kind else list(RegionKind)
            for candidate_kind in kinds:
                element = self.resolver.find_region(candidate_kind, instance_id=str(instance_id))
                if element is not None:
                    return element
            raise TargetResolutionError(f"No region with instance id '{instance_id}'")

        for parameter, parameter_kind in TYPE_ID_PARAMETERS:
            type_id = params.get(parameter)
            if type_id:
                element = find(parameter_kind, type_id=str(type_id))
                if element is None:
                    raise TargetResolutionError(
                        f"No {'' if include_hidden else 'visible '}{parameter_kind.value} "
                        f"with type id '{type_id}'"
                    )
                return element

        type_id = params.get("typeId")
        if type_id:
            if kind is None:
                raise InvalidParametersError("typeId requires a kind")
            element = find(kind, type_id=str(type_id))
            if element is None:
                raise TargetResolutionError(f"No {kind.value} with type id '{type_id}'")
            return element

        modal = self.resolver.active_modal()
        if modal is not None:
            return modal
        return self.resolver.active_view()

    def query(self, selector: str, scope: Optional[Element] = None) -> Optional[Element]:
        """Resolve ``selector`` inside ``scope`` first, then the whole document."""
        try:
            if scope is not None:
                found = scope.query_selector(selector)
                if found is not None:
                    return found
            return self.document.query_selector(selector)
        except SelectorSyntaxError as e:
            raise InvalidParametersError(f"Invalid selector {selector!r}: {e}") from e

    def resolve_element(self, params: Mapping[str, Any]) -> Element:
        """Resolve a ``fieldId`` or ``selector`` parameter to one element."""
        field_id = params.get("fieldId")
        selector = params.get("selector")
        if field_id:
            selector = f'[data-assist-field="{field_id}"]'
        if not selector:
            raise InvalidParametersError("Either fieldId or selector is required")
        scope = self.resolve_target(params)
        element = self.query(str(selector), scope)
        if element is None:
            raise TargetResolutionError(f"No element matches {selector}")
        return element

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def navigate(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        url = params.get("url")
        route_id = params.get("routeId")
        if url:
            mode = params.get("mode", "push")
            history = self.document.default_view.history
            if mode == "push":
                history.push_state(params.get("state"), str(url))
            elif mode == "replace":
                history.replace_state(params.get("state"), str(url))
            else:
                raise InvalidParametersError(f"Unknown navigation mode: {mode!r}")
            self.document.default_view.dispatch_event(Event("popstate", bubbles=False))
            return {"url": self.document.url}
        if route_id:
            route = self.resolver.find_region(RegionKind.ROUTE, type_id=str(route_id))
            if route is None:
                raise TargetResolutionError(
                    f"Route '{route_id}' is not visible and navigation by route id "
                    "requires a url"
                )
            return {"url": self.document.url, "routeId": route_id}
        raise InvalidParametersError("navigate requires url or routeId")

    async def focus(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        selector = params.get("selector")
        target = self.resolve_target(params)
        if selector:
            element = self.query(str(selector), target)
            if element is None:
                raise TargetResolutionError(f"No element matches {selector}")
        else:
            if target is None:
                raise TargetResolutionError("No active modal or view to focus")
            element = first_focusable(target)
            if element is None:
                raise TargetResolutionError("Target has no focusable descendant")
        element.focus()
        if self.document.active_element is not element:
            raise TargetResolutionError(f"Element {element!r} is not focusable")
        return {"focus": self.resolver.selector_for(element)}

    async def modal_open(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        if not params.get("modalId") and not params.get("instanceId"):
            raise InvalidParametersError("modal.open requires modalId or instanceId")
        modal = self.resolve_target(dict(params, kind="modal"), include_hidden=True)
        if modal is None or not modal.has_attribute(RegionKind.MODAL.attribute):
            raise TargetResolutionError("Target is not a modal")
        self.modals.open(modal)
        ref = self.resolver.region_ref(modal, RegionKind.MODAL)
        self.publisher.emit(ModalOpened(modal=ref))
        return {"modal": ref.to_dict()}

    async def modal_close(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        if params.get("modalId") or params.get("instanceId"):
            modal = self.resolve_target(dict(params, kind="modal"), include_hidden=True)
        else:
            modal = self.resolver.active_modal()
        if modal is None or not modal.has_attribute(RegionKind.MODAL.attribute):
            raise TargetResolutionError("No modal to close")
        ref = self.resolver.region_ref(modal, RegionKind.MODAL)
        self.modals.close(modal)
        self.publisher.emit(ModalClosed(modal=ref))
        return {"modal": ref.to_dict()}

    async def panel_toggle(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        if not params.get("panelId") and not params.get("instanceId"):
            raise InvalidParametersError("panel.toggle requires panelId or instanceId")
        panel = self.resolve_target(dict(params, kind="panel"), include_hidden=True)
        if panel is None:
            raise TargetResolutionError("No panel matches")
        desired = params.get("open")
        should_open = panel.has_attribute("hidden") if desired is None else bool(desired)
        panel.toggle_attribute("hidden", not should_open)
        ref = self.resolver.region_ref(panel, RegionKind.PANEL)
        return {"panel": ref.to_dict(), "open": should_open}

    async def click(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        element = self.resolve_element(params)
        if element.disabled:
            raise TargetResolutionError(f"Element {element!r} is disabled")
        element.click()
        return {"clicked": self.resolver.selector_for(element)}

    async def type_text(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        if "value" not in params:
            raise InvalidParametersError("type requires a value")
        element = self.resolve_element(params)
        if element.tag_name not in EDITABLE_TAGS:
            raise TargetResolutionError(f"Element {element!r} does not accept text")
        if element.disabled:
            raise TargetResolutionError(f"Element {element!r} is disabled")
        element.value = params["value"]
        element.dispatch_event(Event("input"))
        element.dispatch_event(Event("change"))
        return {"value": element.value}

    async def scroll(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        window = self.document.default_view
        selector = params.get("selector")
        to = params.get("to")
        if selector:
            element = self.query(str(selector))
            if element is None:
                raise TargetResolutionError(f"No element matches {selector}")
            element.scroll_into_view()
        elif to == "top":
            window.scroll_to(y=0)
        elif to == "bottom":
            window.scroll_to(y=self.document.scroll_height)
        elif isinstance(to, Mapping):
            try:
                window.scroll_to(x=to.get("x"), y=to.get("y"))
            except (TypeError, ValueError) as e:
                raise InvalidParametersError(f"Invalid scroll position: {to!r}") from e
        else:
            raise InvalidParametersError("scroll requires selector or to=top|bottom|{x,y}")
        return {"scrollX": window.scroll_x, "scrollY": window.scroll_y}

    def _wait_condition(self, params: Mapping[str, Any]) -> Callable[[], bool]:
        for parameter, kind in TYPE_ID_PARAMETERS[:3]:
            type_id = params.get(parameter)
            if type_id:
                return lambda k=kind, t=str(type_id): (
                    self.resolver.find_region(k, type_id=t) is not None
                )
        selector = params.get("selector")
        if selector:
            return lambda s=str(selector): self.resolver.is_visible(self.query(s))
        raise InvalidParametersError("waitFor requires modalId, viewId, panelId or selector")

    async def wait_for(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        is_visible = self._wait_condition(params)
        want_visible = bool(params.get("visible", True))
        timeout_ms = params.get("timeoutMs")
        try:
            timeout = (
                float(timeout_ms) / 1000.0
                if timeout_ms is not None
                else self.config.default_wait_timeout
            )
        except (TypeError, ValueError) as e:
            raise InvalidParametersError(f"Invalid timeoutMs: {timeout_ms!r}") from e
        if not math.isfinite(timeout) or timeout < 0:
            raise InvalidParametersError(f"Invalid timeoutMs: {timeout_ms!r}")

        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + timeout
        while True:
            if is_visible() == want_visible:
                return {"waitedMs": int((loop.time() - started) * 1000)}
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise CommandTimeoutError(
                    f"waitFor timed out after {int(timeout * 1000)}ms"
                )
            await asyncio.sleep(min(self.config.wait_poll_interval, remaining))


# ── CommandExecutor ───────────────────────────────────────────────────

class CommandExecutor:
    """Runs commands with idempotent replay and a bounded result memo."""

    def __init__(
        self,
        handlers: CommandHandlers,
        publisher: SnapshotPublisher,
        memo_size: int = 256,
    ) -> None:
        self.handlers = handlers
        self.publisher = publisher
        self.memo_size = memo_size
        self._table = handlers.table()
        self._memo: "OrderedDict[str, CommandResult]" = OrderedDict()
        self._running: Dict[str, asyncio.Future] = {}
        self._tasks: Set[asyncio.Future] = set()
        self._closing = False

    @property
    def pending_count(self) -> int:
        return len(self._running)

    def remembered(self, request_id: str) -> Optional[CommandResult]:
        return self._memo.get(request_id)

    def _remember(self, result: CommandResult) -> None:
        self._memo[result.request_id] = result
        self._memo.move_to_end(result.request_id)
        while len(self._memo) > self.memo_size:
            self._memo.popitem(last=False)

    async def process_message(self, message: Mapping[str, Any]) -> CommandResult:
        """Parse and execute one command message; never raises CommandError."""
        try:
            command = Command.from_message(message)
        except UnknownCommandError as e:
            request_id = message.get("requestId") if isinstance(message, Mapping) else None
            logger.warning("Rejected command %r: %s", request_id, e)
            return CommandResult.failure(str(request_id or ""), self.publisher.version, e)
        return await self.execute(command)

    async def execute(self, command: Command) -> CommandResult:
        """Execute ``command`` once; a repeated requestId replays its result."""
        cached = self._memo.get(command.request_id)
        if cached is not None:
            logger.debug("Replaying stored result for %s", command.request_id)
            return cached

        running = self._running.get(command.request_id)
        if running is not None:
            return await asyncio.shield(running)

        future = asyncio.get_running_loop().create_future()
        self._running[command.request_id] = future
        try:
            result = await self._run(command)
            self._remember(result)
            future.set_result(result)
            return result
        except BaseException:
            if not future.done():
                future.cancel()
            raise
        finally:
            self._running.pop(command.request_id, None)

    async def _run(self, command: Command) -> CommandResult:
        handler = self._table.get(command.name)
        if handler is None:
            error = UnknownCommandError(f"No handler for command {command.name!r}")
            return CommandResult.failure(command.request_id, self.publisher.version, error)
        if self._closing:
            error = CommandTimeoutError(f"{command.name} cancelled: shim destroyed")
            return CommandResult.failure(command.request_id, self.publisher.version, error)

        logger.info("Executing %s (%s)", command.name, command.request_id)
        task = asyncio.ensure_future(handler(command.parameters))
        self._tasks.add(task)
        try:
            payload = await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if not self._closing or (current is not None and current.cancelling()):
                raise
            error = CommandTimeoutError(f"{command.name} cancelled: shim destroyed")
            return CommandResult.failure(command.request_id, self.publisher.version, error)
        except CommandError as e:
            logger.info("Command %s failed (%s): %s", command.request_id, e.kind, e)
            return CommandResult.failure(command.request_id, self.publisher.version, e)
        except Exception as e:
            logger.exception("Handler for %s raised", command.name)
            error = CommandError(f"{type(e).__name__}: {e}", kind="handler")
            return CommandResult.failure(command.request_id, self.publisher.version, error)
        finally:
            self._tasks.discard(task)

        snapshot = self.publisher.publish_snapshot()
        return CommandResult.success(command.request_id, snapshot.version, payload)

    async def wait_idle(self, timeout: float = 1.0) -> None:
        """Wait (bounded) until no command is executing."""
        running = list(self._running.values())
        if running:
            await asyncio.wait(running, timeout=timeout)

    def cancel_pending(self) -> int:
        """Cancel every running handler (pending waits); returns the count."""
        self._closing = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        return len(tasks)
