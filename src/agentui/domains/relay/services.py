"""Relay Domain Services.

The RelayService is the single entry point for shims (events, command
polling, results) and agents (state, capabilities, commands). It is
request-driven and thread-safe: the repository lock covers the context
map and each ContextSession's own lock covers its state.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import TypeAdapter, ValidationError

from agentui.domains.relay.aggregates import ContextSession
from agentui.domains.relay.event_log import EventLog
from agentui.domains.relay.events import (
    CommandCompleted,
    CommandQueued,
    ContextCreated,
    ContextReleased,
)
from agentui.domains.relay.policy import CommandPolicy
from agentui.domains.relay.repository import ContextRepository, InMemoryContextRepository
from agentui.domains.relay.value_objects import (
    ContextNotFoundError,
    InvalidMessageError,
    PolicyRejectedError,
    RateLimitedError,
)
from agentui.domains.shared import ContextRef, EventType, canonical_command_name
from agentui.models.config_models import RelayConfig

logger = logging.getLogger(__name__)

EventPublisher = Optional[Callable[[Any], None]]

_EVENT_TYPE = TypeAdapter(EventType)

RESULT_KEYS = ("requestId", "ok", "resultingStateVersion", "error", "errorKind", "result")


def _validate_ref(value: Any) -> str:
    try:
        return ContextRef(value).value
    except ValueError as e:
        raise InvalidMessageError(str(e)) from e


def _normalize_result(result: Mapping[str, Any]) -> Dict[str, Any]:
    """Keep only the result fields, dropping transport envelope keys."""
    request_id = result.get("requestId")
    if not isinstance(request_id, str) or not request_id:
        raise InvalidMessageError("Command result requires a non-empty requestId")
    if not isinstance(result.get("ok"), bool):
        raise InvalidMessageError("Command result requires a boolean 'ok'")
    normalized = {key: result[key] for key in RESULT_KEYS if key in result}
    normalized.setdefault("resultingStateVersion", 0)
    return normalized


class RelayService:
    """Per-context state cache, command queue and policy enforcement.

    Examples:
        >>> relay = RelayService()
        >>> relay.ingest_event({"contextRef": "ctx_1", "type": "state.snapshot",
        ...                     "version": 1, "url": "http://app/", "timestamp": 0})
        {'success': True, 'contextRef': 'ctx_1', 'accepted': True}
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        repository: Optional[ContextRepository] = None,
        policy: Optional[CommandPolicy] = None,
        event_log: Optional[EventLog] = None,
        clock: Callable[[], float] = time.time,
        event_publisher: EventPublisher = None,
    ) -> None:
        self.config = config or RelayConfig()
        self.repository = repository or InMemoryContextRepository()
        self.policy = policy or CommandPolicy(self.config.allowed_commands)
        self.event_log = event_log or EventLog(self.config.event_log_size)
        self.clock = clock
        self._event_publisher = event_publisher

    def _publish(self, event: Any) -> None:
        if self._event_publisher is None:
            return
        try:
            self._event_publisher(event)
        except Exception:
            logger.exception("Relay event publisher failed for %r", event)

    def _new_session(self, context_ref: str) -> ContextSession:
        now = self.clock()
        return ContextSession(
            context_ref=context_ref,
            created_at=now,
            last_activity=now,
            history_size=self.config.snapshot_history,
            result_retention=self.config.result_retention,
        )

    def _require(self, context_ref: Any) -> ContextSession:
        ref = _validate_ref(context_ref)
        session = self.repository.get(ref)
        if session is None:
            raise ContextNotFoundError(ref)
        return session

    def _expire(self, session: ContextSession, now: float) -> None:
        for command in session.expire_overdue(now):
            logger.info(
                "Command %s expired in %s after %d deliveries",
                command.request_id, session.context_ref, command.deliveries,
            )
            self._publish(CommandCompleted(
                context_ref=session.context_ref,
                request_id=command.request_id,
                ok=False,
                error_kind="expired",
            ))

    # ------------------------------------------------------------------
    # Shim side
    # ------------------------------------------------------------------

    def ingest_event(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        """Accept one event from a shim.

        Raises:
            InvalidMessageError: Malformed message or unknown event type
            RateLimitedError: The context exceeded its per-minute event cap
        """
        if not isinstance(message, Mapping):
            raise InvalidMessageError("Event message must be an object")
        ref = _validate_ref(message.get("contextRef"))
        try:
            event_type = _EVENT_TYPE.validate_python(message.get("type"))
        except ValidationError as e:
            raise InvalidMessageError(f"Unknown event type: {message.get('type')!r}") from e

        data = dict(message)
        if event_type == "state.snapshot":
            version = data.get("version")
            if isinstance(version, bool) or not isinstance(version, int) or version < 1:
                raise InvalidMessageError(
                    f"Snapshot version must be an integer >= 1, got {version!r}"
                )
        result: Optional[Dict[str, Any]] = None
        if event_type == "cmd.result":
            result = _normalize_result(data)

        session, created = self.repository.get_or_create(ref, lambda: self._new_session(ref))
        if created:
            logger.info("Context %s created", ref)
            self._publish(ContextCreated(context_ref=ref))

        accepted = True
        completed = False
        with session.lock:
            now = self.clock()
            retry_after = session.check_event_rate(now, self.config.max_events_per_minute)
            if retry_after is not None:
                raise RateLimitedError(
                    f"event rate limit of {self.config.max_events_per_minute}/min reached for {ref}",
                    retry_after,
                )
            session.touch(now)

            if event_type == "state.snapshot":
                accepted = session.accept_snapshot(data)
                if not accepted:
                    logger.debug(
                        "Dropped snapshot v%s for %s (latest v%s)",
                        data.get("version"), ref, session.snapshot_version,
                    )
            elif event_type == "focus.changed":
                session.record_focus(data)
            elif event_type == "route.changed":
                session.record_route(data)
            elif event_type in ("modal.opened", "modal.closed"):
                session.record_modal(data)
            elif event_type == "tab.visibility":
                session.tab_hidden = bool(data.get("hidden"))
            elif event_type == "cmd.result":
                accepted = completed = session.store_result(result)

        if completed:
            self._publish(CommandCompleted(
                context_ref=ref,
                request_id=result["requestId"],
                ok=result["ok"],
                error_kind=result.get("errorKind"),
            ))
        self.event_log.add(event_type, ref, data)
        return {"success": True, "contextRef": ref, "accepted": accepted}

    def poll_commands(self, context_ref: str) -> List[Dict[str, Any]]:
        """All unacknowledged commands for the context, oldest first.

        Commands are redelivered on every poll until a result arrives or
        they expire.
        """
        session = self._require(context_ref)
        with session.lock:
            now = self.clock()
            self._expire(session, now)
            session.touch(now)
            return session.take_deliverable()

    def acknowledge(self, context_ref: str, result: Mapping[str, Any]) -> bool:
        """Record a command result; returns False if one was already stored."""
        normalized = _normalize_result(result)
        session = self._require(context_ref)
        with session.lock:
            session.touch(self.clock())
            stored = session.store_result(normalized)
        if stored:
            self._publish(CommandCompleted(
                context_ref=session.context_ref,
                request_id=normalized["requestId"],
                ok=normalized["ok"],
                error_kind=normalized.get("errorKind"),
            ))
        return stored

    # ------------------------------------------------------------------
    # Agent side
    # ------------------------------------------------------------------

    def submit_command(self, context_ref: str, command: Mapping[str, Any]) -> Dict[str, Any]:
        """Queue a command for the context's shim.

        Raises:
            ContextNotFoundError: Unknown or expired context
            InvalidMessageError: Malformed command
            PolicyRejectedError: Command not on the allow-list
            RateLimitedError: Too many commands in flight
        """
        session = self._require(context_ref)
        if not isinstance(command, Mapping):
            raise InvalidMessageError("Command must be an object")
        request_id = command.get("requestId")
        if not isinstance(request_id, str) or not request_id:
            raise InvalidMessageError("Command requires a non-empty requestId")
        name = canonical_command_name(command.get("command"))
        if name is None:
            raise InvalidMessageError(f"Unknown command: {command.get('command')!r}")
        parameters = command.get("parameters") or {}
        if not isinstance(parameters, Mapping):
            raise InvalidMessageError("Command parameters must be an object")

        ref = session.context_ref
        with session.lock:
            now = self.clock()
            self._expire(session, now)

            stored = session.result_for(request_id)
            if stored is not None:
                return {
                    "success": True,
                    "status": "completed",
                    "requestId": request_id,
                    "duplicate": True,
                    "result": stored,
                }
            if request_id in session.pending:
                return {
                    "success": True,
                    "status": "pending",
                    "requestId": request_id,
                    "duplicate": True,
                }

            if not self.policy.is_allowed(ref, name):
                raise PolicyRejectedError(f"command '{name}' is not allowed for {ref}")

            if session.in_flight >= self.config.max_in_flight_commands:
                oldest = min(p.expires_at for p in session.pending.values())
                raise RateLimitedError(
                    f"{session.in_flight} commands already in flight for {ref}",
                    max(0.0, oldest - now),
                )

            message = {
                "requestId": request_id,
                "command": name,
                "contextRef": ref,
                "parameters": dict(parameters),
            }
            session.enqueue(request_id, message, now, self.config.command_ttl)
            session.touch(now)

        logger.info("Queued %s (%s) for %s", name, request_id, ref)
        self._publish(CommandQueued(context_ref=ref, request_id=request_id, command=name))
        return {
            "success": True,
            "status": "queued",
            "requestId": request_id,
            "expiresIn": self.config.command_ttl,
        }

    def get_result(self, context_ref: str, request_id: str) -> Dict[str, Any]:
        """Status of one command: ``completed`` (with result), ``pending`` or ``unknown``."""
        session = self._require(context_ref)
        with session.lock:
            self._expire(session, self.clock())
            stored = session.result_for(request_id)
            if stored is not None:
                return {
                    "success": True,
                    "status": "completed",
                    "requestId": request_id,
                    "result": stored,
                }
            if request_id in session.pending:
                return {"success": True, "status": "pending", "requestId": request_id}
        return {"success": True, "status": "unknown", "requestId": request_id}

    def get_raw_result(self, context_ref: str, request_id: str) -> Optional[str]:
        """The stored result text for ``request_id`` exactly as recorded."""
        session = self._require(context_ref)
        with session.lock:
            return session.raw_result_for(request_id)

    def get_state(self, context_ref: str) -> Dict[str, Any]:
        session = self._require(context_ref)
        with session.lock:
            self._expire(session, self.clock())
            state = session.state_dict()
        state["success"] = True
        return state

    def get_history(self, context_ref: str) -> List[Dict[str, Any]]:
        """Snapshot history, oldest first."""
        session = self._require(context_ref)
        with session.lock:
            return list(session.history)

    def get_capabilities(self, context_ref: str) -> Dict[str, Any]:
        """Region type ids observed for the context plus allowed commands.

        Metadata only: no field values or page content.
        """
        session = self._require(context_ref)
        with session.lock:
            observed = {kind: list(ids) for kind, ids in session.observed.items()}
        observed["commands"] = sorted(self.policy.allowed_for(session.context_ref))
        observed["success"] = True
        return observed

    def list_contexts(self) -> List[Dict[str, Any]]:
        summaries = []
        for session in self.repository.list_all():
            with session.lock:
                summaries.append(session.summary().to_dict())
        summaries.sort(key=lambda s: s["lastActivity"], reverse=True)
        return summaries

    def destroy_context(self, context_ref: str) -> bool:
        """Release all state for a context; returns False if it was unknown."""
        ref = _validate_ref(context_ref)
        removed = self.repository.remove(ref)
        self.policy.clear(ref)
        if removed is None:
            return False
        logger.info("Context %s destroyed", ref)
        self._publish(ContextReleased(context_ref=ref, reason="destroyed"))
        return True

    def sweep(self, now: Optional[float] = None) -> List[str]:
        """Evict contexts idle longer than the TTL; returns their refs."""
        now = self.clock() if now is None else now
        ttl = self.config.context_idle_ttl
        evicted = []
        for session in self.repository.list_all():
            with session.lock:
                if not session.is_idle(now, ttl):
                    continue
                removed = self.repository.remove_if(
                    session.context_ref, lambda s: s.is_idle(now, ttl)
                )
            if removed:
                evicted.append(session.context_ref)
                self.policy.clear(session.context_ref)
                self._publish(ContextReleased(context_ref=session.context_ref, reason="expired"))
        if evicted:
            logger.info("Swept %d idle context(s): %s", len(evicted), ", ".join(evicted))
        return evicted

    def diagnostics(self) -> Dict[str, Any]:
        return {
            "success": True,
            "contexts": self.repository.count(),
            "event_log": self.event_log.stats(),
            "policy": self.policy.to_dict(),
            "config": {
                "context_idle_ttl": self.config.context_idle_ttl,
                "command_ttl": self.config.command_ttl,
                "max_in_flight_commands": self.config.max_in_flight_commands,
                "max_events_per_minute": self.config.max_events_per_minute,
            },
        }


class ContextSweeper(threading.Thread):
    """Background thread calling ``RelayService.sweep`` every interval."""

    def __init__(self, service: RelayService, interval: Optional[float] = None) -> None:
        super().__init__(daemon=True, name="agentui-context-sweeper")
        self.service = service
        self.interval = service.config.sweep_interval if interval is None else interval
        self._stop_event = threading.Event()
        self.sweeps = 0

    def run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.service.sweep()
            except Exception:
                logger.exception("Context sweep failed")
            self.sweeps += 1

    def stop(self, timeout: Optional[float] = 1.0) -> None:
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout)
