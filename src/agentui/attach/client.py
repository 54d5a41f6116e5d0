from __future__ import annotations

import http.client
import json
from typing import Any, Dict, Optional


class RelayBridgeClient:
    """Minimal client for the RelayBridge HTTP endpoints.

    Every call returns the decoded JSON body. Connection and decoding
    failures are reported as ``{"success": False, "error": ...}`` rather
    than raised, so callers handle one shape.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 7420,
        token: str = "change-me",
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = int(port)
        self.token = token
        self.timeout = timeout

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = json.dumps(payload).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "Content-Length": str(len(body)),
            "X-AgentUI-Token": self.token,
        }
        try:
            conn = http.client.HTTPConnection(self.host, self.port, timeout=self.timeout)
            try:
                conn.request("POST", path, body, headers)
                resp = conn.getresponse()
                data = resp.read()
            finally:
                conn.close()
        except (OSError, http.client.HTTPException) as e:
            return {"success": False, "error": f"connection error: {e}", "error_kind": "transport"}
        try:
            decoded = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return {"success": False, "error": f"invalid response: {data!r}", "error_kind": "transport"}
        if isinstance(decoded, dict):
            decoded.setdefault("status_code", resp.status)
        return decoded

    # Shim side

    def send_event(self, message: Dict[str, Any]) -> Dict[str, Any]:
        return self._post("/event", message)

    def poll_commands(self, context_ref: str) -> Dict[str, Any]:
        return self._post("/commands/poll", {"contextRef": context_ref})

    def close_context(self, context_ref: str) -> Dict[str, Any]:
        return self._post("/context/close", {"contextRef": context_ref})

    # Agent side

    def submit_command(
        self,
        context_ref: str,
        request_id: str,
        command: str,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return self._post("/command", {
            "contextRef": context_ref,
            "requestId": request_id,
            "command": command,
            "parameters": dict(parameters or {}),
        })

    def get_result(self, context_ref: str, request_id: str) -> Dict[str, Any]:
        return self._post("/result", {"contextRef": context_ref, "requestId": request_id})

    def get_state(self, context_ref: str) -> Dict[str, Any]:
        return self._post("/state", {"contextRef": context_ref})

    def get_capabilities(self, context_ref: str) -> Dict[str, Any]:
        return self._post("/capabilities", {"contextRef": context_ref})

    def recent_events(
        self, limit: int = 50, context_ref: Optional[str] = None
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"limit": limit}
        if context_ref is not None:
            payload["contextRef"] = context_ref
        return self._post("/events", payload)

    def diagnostics(self) -> Dict[str, Any]:
        return self._post("/diagnostics", {})
