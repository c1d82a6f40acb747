"""Low-level CDP WebSocket connection (websocket-client)."""

from __future__ import annotations

import json
import logging
import socket
import time
from collections.abc import Callable
from contextlib import suppress
from typing import Any

import websocket

from .http_client import HttpClientError

logger = logging.getLogger("mcp.gated_browser.cdp")


class CdpConnection:
    """Synchronous CDP connection to one page target.

    Commands block until their response arrives or the per-call deadline
    expires. Events received meanwhile are queued (bounded) and handed to an
    optional sink first; the sink may answer events with ``post`` but must not
    issue blocking ``send`` calls.
    """

    def __init__(self, ws_url: str, timeout: float = 5.0):
        self.ws = websocket.create_connection(ws_url, timeout=timeout, suppress_origin=True)
        self.ws_url = ws_url
        self.timeout = timeout
        self.closed = False
        self._next_id = 1
        self._event_queue: list[dict[str, Any]] = []
        self._max_event_queue = 2000
        self._event_sink: Callable[[dict[str, Any]], None] | None = None

    def set_event_sink(self, sink: Callable[[dict[str, Any]], None] | None) -> None:
        self._event_sink = sink

    def _push_event(self, event: dict[str, Any]) -> None:
        if not isinstance(event.get("method"), str):
            return

        sink = self._event_sink
        if sink is not None:
            try:
                sink(event)
            except Exception:  # noqa: BLE001
                logger.debug("event_sink_failed method=%s", event.get("method"), exc_info=True)

        self._event_queue.append(event)
        if len(self._event_queue) > self._max_event_queue:
            # Drop oldest events to avoid unbounded growth in long sessions.
            del self._event_queue[: len(self._event_queue) - self._max_event_queue]

    def pop_event(self, event_name: str) -> dict[str, Any] | None:
        """Pop the oldest queued event params for the given event name."""
        for i, ev in enumerate(self._event_queue):
            if ev.get("method") == event_name:
                self._event_queue.pop(i)
                params = ev.get("params")
                return params if isinstance(params, dict) else {}
        return None

    def _next_message_id(self) -> int:
        msg_id = self._next_id
        self._next_id += 1
        return msg_id

    def _write(self, msg: dict[str, Any]) -> None:
        if self.closed:
            raise HttpClientError("Session closed: CDP connection was aborted")
        try:
            self.ws.settimeout(min(2.0, max(0.5, float(self.timeout))))
            self.ws.send(json.dumps(msg))
        except Exception as exc:  # noqa: BLE001
            raise HttpClientError(str(exc)) from exc

    def post(self, method: str, params: dict[str, Any] | None = None) -> int:
        """Send a command without waiting for its response (the reply is dropped on receipt)."""
        msg: dict[str, Any] = {"id": self._next_message_id(), "method": method}
        if params:
            msg["params"] = params
        self._write(msg)
        return msg["id"]

    def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send CDP command and wait for response."""
        msg: dict[str, Any] = {"id": self._next_message_id(), "method": method}
        if params:
            msg["params"] = params
        self._write(msg)
        return self._recv_until(msg["id"])

    def _recv_until(self, expected_id: int) -> dict[str, Any]:
        deadline = time.time() + self.timeout
        while True:
            remaining = deadline - time.time()
            if remaining <= 0:
                raise HttpClientError("CDP response timed out")

            # Small socket timeout so our own deadline is enforced.
            try:
                self.ws.settimeout(min(0.5, remaining))
                raw = self.ws.recv()
            except Exception as exc:  # noqa: BLE001
                msg = str(exc).lower()
                if isinstance(exc, (TimeoutError, websocket.WebSocketTimeoutException)) or "timed out" in msg:
                    continue
                raise HttpClientError(str(exc)) from exc

            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if not isinstance(data, dict):
                continue

            if isinstance(data.get("method"), str) and "id" not in data:
                self._push_event(data)
                continue

            if data.get("id") == expected_id:
                if "error" in data:
                    error = data["error"]
                    message = error.get("message") if isinstance(error, dict) else error
                    raise HttpClientError(f"Protocol error ({data.get('method') or 'cdp'}): {message}")
                return data.get("result", {})
            # Otherwise: a reply to a posted command; ignore.

    def wait_for_event(self, event_name: str, timeout: float = 10.0) -> dict[str, Any] | None:
        queued = self.pop_event(event_name)
        if queued is not None:
            return queued

        deadline = time.time() + timeout
        while True:
            remaining = deadline - time.time()
            if remaining <= 0:
                return None
            try:
                self.ws.settimeout(min(0.5, remaining))
                raw = self.ws.recv()
            except Exception as exc:  # noqa: BLE001
                msg = str(exc).lower()
                if isinstance(exc, (TimeoutError, websocket.WebSocketTimeoutException)) or "timed out" in msg:
                    continue
                raise HttpClientError(str(exc)) from exc

            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict) and isinstance(data.get("method"), str) and "id" not in data:
                self._push_event(data)
                found = self.pop_event(event_name)
                if found is not None:
                    return found

    def abort(self) -> None:
        """Hard break of the underlying socket (used by watchdogs from another thread)."""
        self.closed = True
        sock = getattr(self.ws, "sock", None)
        if sock is not None:
            with suppress(OSError):
                sock.shutdown(socket.SHUT_RDWR)
            with suppress(OSError):
                sock.close()

    def close(self) -> None:
        # websocket-client close() can hang on a wedged target; prefer the raw socket.
        self.abort()
