"""HTTP bridge that exposes a RelayService to shims and agents.

The bridge is a small token-authenticated JSON interface. Every
endpoint takes a POST with a JSON object body:

- ``/event``: one event message from a shim
- ``/commands/poll``: ``{contextRef}``, returns pending commands
- ``/context/close``: ``{contextRef}``, releases the context
- ``/command``: ``{contextRef, requestId, command, parameters}``
- ``/result``: ``{contextRef, requestId}``, command status and result
- ``/state``: ``{contextRef}``
- ``/capabilities``: ``{contextRef}``
- ``/events``: ``{limit?, contextRef?, type?}``, developer event log
- ``/diagnostics``: relay counters and limits

Relay errors map to HTTP status codes: 404 unknown context, 403 policy
rejection, 429 rate limited (body carries ``retry_after``), 400 invalid
message. Authentication failures return 401.

Examples:
    >>> bridge = RelayBridge(service, port=0, token="secret")
    >>> bridge.start()
    >>> bridge.port  # the bound port
    54321
    >>> bridge.stop()
"""

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, Optional, Tuple

from agentui.domains.relay import RelayError, RelayService

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-AgentUI-Token"

STATUS_BY_KIND = {
    "not_found": 404,
    "policy": 403,
    "rate_limited": 429,
    "invalid": 400,
}


class RelayBridge:
    """Serves a RelayService over HTTP on a background thread."""

    def __init__(
        self,
        service: RelayService,
        host: str = "127.0.0.1",
        port: int = 7420,
        token: str = "change-me",
    ) -> None:
        self.service = service
        self.host = host
        self.port = int(port)
        self.token = token
        self._httpd: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._routes: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            "event": self._event,
            "commands/poll": self._poll,
            "context/close": self._close,
            "command": self._command,
            "result": self._result,
            "state": self._state,
            "capabilities": self._capabilities,
            "events": self._events,
            "diagnostics": self._diagnostics,
        }

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def start(self) -> None:
        """Bind the server and start serving; ``port=0`` picks a free port."""
        if self.running:
            return
        self._httpd = ThreadingHTTPServer((self.host, self.port), self._handler_class())
        self._httpd.daemon_threads = True
        self.port = self._httpd.server_address[1]
        self._thread = threading.Thread(
            target=self._httpd.serve_forever, name="agentui-relay-bridge", daemon=True
        )
        self._thread.start()
        logger.info("Relay bridge listening on %s", self.url)

    def stop(self) -> None:
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd.server_close()
            self._httpd = None
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        logger.info("Relay bridge stopped")

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, path: str, payload: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        """Route one request; returns (status, body)."""
        route = self._routes.get(path.strip("/"))
        if route is None:
            return 404, {"success": False, "error": f"unknown endpoint: {path}"}
        try:
            return 200, route(payload)
        except RelayError as e:
            body = e.to_dict()
            return STATUS_BY_KIND.get(e.kind, 400), body
        except Exception as e:
            logger.exception("Bridge endpoint %s failed", path)
            return 500, {"success": False, "error": f"{type(e).__name__}: {e}"}

    def _handler_class(self) -> type:
        bridge = self

        class Handler(BaseHTTPRequestHandler):
            def _auth(self) -> bool:
                return self.headers.get(TOKEN_HEADER) == bridge.token

            def _send(self, code: int, payload: Dict[str, Any]) -> None:
                try:
                    body = json.dumps(payload).encode("utf-8")
                except (TypeError, ValueError) as e:
                    code = 500
                    body = json.dumps({
                        "success": False,
                        "error": f"Response serialization failed: {type(e).__name__}: {str(e)[:200]}",
                    }).encode("utf-8")
                self.send_response(code)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def _read_json(self) -> Optional[Dict[str, Any]]:
                try:
                    length = int(self.headers.get("Content-Length", "0"))
                except ValueError:
                    length = 0
                raw = self.rfile.read(length) if length > 0 else b"{}"
                try:
                    data = json.loads(raw.decode("utf-8") or "{}")
                except (UnicodeDecodeError, ValueError):
                    return None
                return data if isinstance(data, dict) else None

            def do_POST(self) -> None:  # noqa: N802 (stdlib signature)
                if not self._auth():
                    self._send(401, {"success": False, "error": "unauthorized"})
                    return
                payload = self._read_json()
                if payload is None:
                    self._send(400, {
                        "success": False,
                        "error": "body must be a JSON object",
                        "error_kind": "invalid",
                    })
                    return
                code, body = bridge.dispatch(self.path or "/", payload)
                self._send(code, body)

            def log_message(self, format: str, *args: Any) -> None:
                logger.debug("bridge: " + format, *args)

        return Handler

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def _event(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.service.ingest_event(payload)

    def _poll(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        commands = self.service.poll_commands(payload.get("contextRef"))
        return {"success": True, "commands": commands}

    def _close(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        released = self.service.destroy_context(payload.get("contextRef"))
        return {"success": True, "released": released}

    def _command(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        command = payload.get("command")
        if isinstance(command, dict):
            # Nested form: {"contextRef": ..., "command": {requestId, command, parameters}}
            return self.service.submit_command(payload.get("contextRef"), command)
        return self.service.submit_command(payload.get("contextRef"), payload)

    def _result(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.service.get_result(payload.get("contextRef"), str(payload.get("requestId", "")))

    def _state(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.service.get_state(payload.get("contextRef"))

    def _capabilities(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.service.get_capabilities(payload.get("contextRef"))

    def _events(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            limit = int(payload.get("limit", 50))
        except (TypeError, ValueError):
            limit = 50
        events = self.service.event_log.recent(
            limit=limit,
            context_ref=payload.get("contextRef"),
            event_type=payload.get("type"),
        )
        return {
            "success": True,
            "events": [e.to_dict() for e in events],
            "stats": self.service.event_log.stats(),
        }

    def _diagnostics(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.service.diagnostics()
