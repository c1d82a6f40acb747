"""
Page provider interface and its CDP adapter.

The core (content strategy, locators, tool handlers) only talks to a
``PageProvider``; ``CdpPage`` implements it over a BrowserSession. Tests
implement the same protocols with scripted fakes.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol

from .browser_session import BrowserSession
from .http_client import HttpClientError
from .js_snippets import query_selector_expression

logger = logging.getLogger("mcp.gated_browser.page")

# CDP resource types that do not lower-case to the names used by blocking rules.
_RESOURCE_TYPE_ALIASES = {
    "cspviolationreport": "csp_report",
    "texttrack": "texttrack",
    "eventsource": "eventsource",
    "websocket": "websocket",
}


class ElementHandle(Protocol):
    def bounding_box(self) -> dict[str, float] | None: ...

    def evaluate(self, script: str, *args: Any) -> Any: ...


class InterceptedRequest(Protocol):
    url: str
    resource_type: str

    def abort(self) -> None: ...

    def continue_(self) -> None: ...


RequestHandler = Callable[[InterceptedRequest], None]


class PageProvider(Protocol):
    def evaluate(self, script: str, *args: Any) -> Any: ...

    def content(self) -> str: ...

    def query_selector(self, selector: str) -> ElementHandle | None: ...

    def set_request_interception(self, enabled: bool) -> None: ...

    def on_request(self, handler: RequestHandler) -> None: ...

    def remove_request_listeners(self) -> None: ...


class BrowserPage(PageProvider, Protocol):
    """PageProvider plus the navigation and input primitives the tool handlers use."""

    def goto(self, url: str, timeout: float) -> None: ...

    def wait_for_load(self, timeout: float) -> bool: ...

    def url(self) -> str: ...

    def title(self) -> str: ...

    def mouse_click(self, x: float, y: float) -> None: ...

    def insert_text(self, text: str) -> None: ...


def normalize_resource_type(raw: str | None) -> str:
    value = (raw or "other").strip().lower()
    return _RESOURCE_TYPE_ALIASES.get(value, value)


class CdpElement:
    """Remote DOM node addressed by its Runtime objectId."""

    def __init__(self, session: BrowserSession, object_id: str) -> None:
        self.session = session
        self.object_id = object_id

    def bounding_box(self) -> dict[str, float] | None:
        return self.session.box_model(self.object_id)

    def evaluate(self, script: str, *args: Any) -> Any:
        """Run a ``function (...) { ... this ... }`` snippet with the element bound to ``this``."""
        return self.session.call_function_on(self.object_id, script, *args)


class CdpInterceptedRequest:
    """A paused Fetch request; exactly one of abort/continue_ is honoured."""

    def __init__(self, session: BrowserSession, params: dict[str, Any]) -> None:
        self.session = session
        self.request_id = str(params.get("requestId") or "")
        request = params.get("request") if isinstance(params.get("request"), dict) else {}
        self.url = str(request.get("url") or "")
        self.resource_type = normalize_resource_type(params.get("resourceType"))
        self.handled = False

    def abort(self) -> None:
        if self.handled:
            return
        self.handled = True
        # post(), not send(): this runs inside the event sink of a pending command.
        self.session.conn.post("Fetch.failRequest", {"requestId": self.request_id, "errorReason": "BlockedByClient"})

    def continue_(self) -> None:
        if self.handled:
            return
        self.handled = True
        self.session.conn.post("Fetch.continueRequest", {"requestId": self.request_id})


class CdpPage:
    """PageProvider over a CDP BrowserSession."""

    def __init__(self, session: BrowserSession) -> None:
        self.session = session
        self._handlers: list[RequestHandler] = []
        self._intercepting = False

    def evaluate(self, script: str, *args: Any) -> Any:
        return self.session.call_function(script, *args)

    def content(self) -> str:
        return self.session.get_dom()

    def query_selector(self, selector: str) -> CdpElement | None:
        try:
            object_id = self.session.evaluate_handle(query_selector_expression(selector))
        except HttpClientError as exc:
            if "session closed" in str(exc).lower():
                raise
            logger.debug("query_selector_failed selector=%s error=%s", selector, exc)
            return None
        if not object_id:
            return None
        return CdpElement(self.session, object_id)

    def set_request_interception(self, enabled: bool) -> None:
        if enabled == self._intercepting:
            return
        if enabled:
            self.session.conn.set_event_sink(self._on_event)
            self.session.send("Fetch.enable", {"patterns": [{"urlPattern": "*"}]})
        else:
            self.session.send("Fetch.disable")
            self.session.conn.set_event_sink(None)
        self._intercepting = enabled

    def on_request(self, handler: RequestHandler) -> None:
        self._handlers.append(handler)

    def remove_request_listeners(self) -> None:
        self._handlers.clear()

    def _on_event(self, event: dict[str, Any]) -> None:
        if event.get("method") != "Fetch.requestPaused":
            return
        params = event.get("params") if isinstance(event.get("params"), dict) else {}
        request = CdpInterceptedRequest(self.session, params)
        for handler in list(self._handlers):
            handler(request)
            if request.handled:
                return
        # Nobody decided: paused requests must never be left hanging.
        request.continue_()

    # Navigation and input

    def goto(self, url: str, timeout: float) -> None:
        self.session.navigate(url, wait_load=True, timeout=timeout)

    def wait_for_load(self, timeout: float) -> bool:
        return self.session.wait_load(timeout=timeout)

    def url(self) -> str:
        return self.session.get_url()

    def title(self) -> str:
        return self.session.get_title()

    def mouse_click(self, x: float, y: float) -> None:
        self.session.click(x, y)

    def insert_text(self, text: str) -> None:
        self.session.type_text(text)
