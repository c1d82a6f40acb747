from __future__ import annotations

import json
import logging
from typing import Any

from .http_client import HttpClientError
from .session_cdp import CdpConnection

logger = logging.getLogger("mcp.gated_browser.session")


def _unwrap_remote(result: dict[str, Any]) -> Any:
    """Turn a CDP RemoteObject result into a plain Python value."""
    details = result.get("exceptionDetails")
    if details:
        exc = details.get("exception") if isinstance(details, dict) else None
        text = (exc or {}).get("description") or (details or {}).get("text") or "unknown error"
        raise HttpClientError(f"JavaScript error: {text}")
    if "result" not in result:
        return None
    value = result["result"]
    # undefined/null arrive without a "value" field; map both to None.
    if not isinstance(value, dict):
        return value
    if value.get("type") == "undefined" or value.get("subtype") == "null":
        return None
    return value.get("value")


class BrowserSession:
    """
    High-level browser session for a specific tab.

    Wraps CdpConnection with the operations the tool handlers need.
    Use as context manager for automatic cleanup.
    """

    def __init__(self, connection: CdpConnection, tab_id: str, tab_url: str = ""):
        self.conn = connection
        self.tab_id = tab_id
        self.tab_url = tab_url
        self._enabled: set[str] = set()

    def __enter__(self) -> BrowserSession:
        self.enable_domains(page=True, runtime=True)
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        self.conn.close()

    @property
    def alive(self) -> bool:
        return not getattr(self.conn, "closed", False)

    def enable_domains(self, *, page: bool = False, runtime: bool = False, dom: bool = False) -> None:
        """Enable CDP domains once per session."""
        wanted = [("Page", page), ("Runtime", runtime), ("DOM", dom)]
        for domain, flag in wanted:
            if flag and domain not in self._enabled:
                self.conn.send(f"{domain}.enable")
                self._enabled.add(domain)

    def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.conn.send(method, params)

    def navigate(self, url: str, wait_load: bool = True, timeout: float = 10.0) -> dict[str, Any]:
        self.enable_domains(page=True)
        # Load events of earlier navigations must not satisfy wait_load.
        self.drain_events("Page.loadEventFired")
        result = self.conn.send("Page.navigate", {"url": url})
        error_text = result.get("errorText")
        if error_text:
            raise HttpClientError(f"Navigation failed: {error_text}")
        if wait_load and not self.wait_load(timeout=timeout):
            raise HttpClientError(f"Navigation timeout: load event not received within {timeout}s")
        self.tab_url = url
        logger.debug("navigated tab=%s url=%s", self.tab_id, url)
        return result

    def drain_events(self, event_name: str) -> int:
        dropped = 0
        while self.conn.pop_event(event_name) is not None:
            dropped += 1
        return dropped

    def wait_load(self, timeout: float = 10.0) -> bool:
        self.enable_domains(page=True)
        return self.conn.wait_for_event("Page.loadEventFired", timeout=timeout) is not None

    def wait_dom_ready(self, timeout: float = 10.0) -> bool:
        self.enable_domains(page=True)
        return self.conn.wait_for_event("Page.domContentEventFired", timeout=timeout) is not None

    def eval_js(self, expression: str) -> Any:
        """Evaluate a JavaScript expression and return its JSON value."""
        self.enable_domains(runtime=True)
        result = self.conn.send(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True},
        )
        return _unwrap_remote(result)

    def call_function(self, function_source: str, *args: Any) -> Any:
        """Invoke a JS function literal with JSON-serialisable arguments."""
        arg_list = ", ".join(json.dumps(arg) for arg in args)
        return self.eval_js(f"({function_source})({arg_list})")

    def evaluate_handle(self, expression: str) -> str | None:
        """Evaluate an expression that yields a DOM node; return its remote objectId."""
        self.enable_domains(runtime=True)
        result = self.conn.send("Runtime.evaluate", {"expression": expression, "returnByValue": False})
        if result.get("exceptionDetails"):
            return None
        remote = result.get("result") or {}
        if remote.get("subtype") == "null" or remote.get("type") == "undefined":
            return None
        return remote.get("objectId")

    def call_function_on(self, object_id: str, function_source: str, *args: Any) -> Any:
        result = self.conn.send(
            "Runtime.callFunctionOn",
            {
                "objectId": object_id,
                "functionDeclaration": function_source,
                "arguments": [{"value": arg} for arg in args],
                "returnByValue": True,
                "awaitPromise": True,
            },
        )
        return _unwrap_remote(result)

    def box_model(self, object_id: str) -> dict[str, float] | None:
        """Return x/y/width/height of the element's border box, or None when not rendered."""
        self.enable_domains(dom=True)
        try:
            model = self.conn.send("DOM.getBoxModel", {"objectId": object_id}).get("model") or {}
        except HttpClientError:
            return None
        quad = model.get("border") or model.get("content")
        if not quad or len(quad) < 8:
            return None
        xs = quad[0::2]
        ys = quad[1::2]
        return {"x": min(xs), "y": min(ys), "width": max(xs) - min(xs), "height": max(ys) - min(ys)}

    def get_url(self) -> str:
        return str(self.eval_js("window.location.href") or "")

    def get_title(self) -> str:
        return str(self.eval_js("document.title") or "")

    def get_dom(self) -> str:
        return str(self.eval_js("document.documentElement ? document.documentElement.outerHTML : ''") or "")

    def click(self, x: float, y: float, button: str = "left", click_count: int = 1) -> None:
        self.drain_events("Page.loadEventFired")
        self._mouse_event("mouseMoved", x, y, "none", 0)
        self._mouse_event("mousePressed", x, y, button, click_count)
        self._mouse_event("mouseReleased", x, y, button, click_count)

    def _mouse_event(self, event_type: str, x: float, y: float, button: str, click_count: int) -> None:
        self.conn.send(
            "Input.dispatchMouseEvent",
            {"type": event_type, "x": x, "y": y, "button": button, "clickCount": click_count},
        )

    def type_text(self, text: str) -> None:
        self.conn.send("Input.insertText", {"text": str(text)})
