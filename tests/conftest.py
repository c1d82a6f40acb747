from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from mcp_servers.gated_browser import js_snippets
from mcp_servers.gated_browser.config import BrowserConfig, ReliabilitySettings
from mcp_servers.gated_browser.context import ToolContext
from mcp_servers.gated_browser.workflow import WorkflowGate


class FakeRequest:
    def __init__(self, url: str, resource_type: str) -> None:
        self.url = url
        self.resource_type = resource_type
        self.decision: str | None = None

    def abort(self) -> None:
        self.decision = "abort"

    def continue_(self) -> None:
        self.decision = "continue"


class FakeElement:
    """Element whose scripts are answered from plain attributes."""

    def __init__(
        self,
        text: str = "",
        *,
        html: str | None = None,
        box: dict[str, float] | None = None,
        focusable: bool = True,
        accepts_value: bool = True,
    ) -> None:
        self.text = text
        self.html = html if html is not None else f"<div>{text}</div>"
        self.box = box if box is not None else {"x": 10.0, "y": 20.0, "width": 100.0, "height": 40.0}
        self.focusable = focusable
        self.accepts_value = accepts_value
        self.calls: list[str] = []
        self.value: str | None = None

    def bounding_box(self) -> dict[str, float] | None:
        return self.box

    def evaluate(self, script: str, *args: Any) -> Any:
        if script == js_snippets.ELEMENT_MATCH_TEXT_ON_ELEMENT:
            return self.text.lower()
        if script == js_snippets.ELEMENT_CONTENT_ON_ELEMENT:
            return self.html if args and args[0] == "html" else self.text
        if script == js_snippets.ELEMENT_SAMPLE_ON_ELEMENT:
            size = int(args[0]) if args else 2000
            return {
                "html": self.html[:size],
                "text": self.text[:size],
                "htmlLength": len(self.html),
                "textLength": len(self.text),
            }
        if script == js_snippets.SCROLL_INTO_VIEW_ON_ELEMENT:
            self.calls.append("scroll")
            return True
        if script == js_snippets.CLICK_ON_ELEMENT:
            self.calls.append("dom-click")
            return True
        if script == js_snippets.FOCUS_AND_CLEAR_ON_ELEMENT:
            self.calls.append("focus")
            return self.focusable
        if script == js_snippets.SET_VALUE_ON_ELEMENT:
            self.calls.append("set-value")
            if self.accepts_value:
                self.value = str(args[0])
            return self.accepts_value
        raise AssertionError(f"unexpected element script: {script[:60]}")


class FakePage:
    """Scripted BrowserPage: page scripts are answered from `html`/`text` or `scripts` overrides."""

    def __init__(self, html: str = "<html><body><p>Hello</p></body></html>", text: str = "Hello") -> None:
        self.html = html
        self.text = text
        self.elements: dict[str, FakeElement] = {}
        self.scripts: dict[str, Any] = {}
        self.evaluated: list[str] = []
        self.interception: list[bool] = []
        self.handlers: list[Callable[[Any], None]] = []
        self.fail_interception = False
        self.current_url = "about:blank"
        self.page_title = ""
        self.load_result = True
        self.clicks: list[tuple[float, float]] = []
        self.typed: list[str] = []
        self.queries: list[str] = []

    # PageProvider

    def evaluate(self, script: str, *args: Any) -> Any:
        self.evaluated.append(script)
        if script in self.scripts:
            answer = self.scripts[script]
            return answer(*args) if callable(answer) else answer
        if script == js_snippets.FULL_CONTENT:
            return {"html": self.html, "text": self.text}
        if script in (js_snippets.MAIN_CONTENT, js_snippets.SUMMARY_CONTENT):
            content_type = args[-1]
            return self.html if content_type == "html" else self.text
        if script == js_snippets.BODY_TEXT:
            return self.text
        if script == js_snippets.PAGE_SIZE_INFO:
            return {
                "htmlLength": len(self.html),
                "textLength": len(self.text),
                "scripts": 0,
                "svgs": 0,
                "tables": 0,
                "codeBlocks": 0,
            }
        if script == js_snippets.EMERGENCY_CONTENT:
            return {"html": self.html[:1000], "text": self.text[:1000]}
        if script in (js_snippets.ANALYZE_FAILED_SELECTOR,):
            return None
        if script in (js_snippets.FIND_BY_TEXT, js_snippets.FIND_SELECTOR_CANDIDATES):
            return []
        raise AssertionError(f"unexpected page script: {script[:60]}")

    def content(self) -> str:
        return self.html

    def query_selector(self, selector: str) -> FakeElement | None:
        self.queries.append(selector)
        return self.elements.get(selector)

    def set_request_interception(self, enabled: bool) -> None:
        if enabled and self.fail_interception:
            raise RuntimeError("Fetch.enable failed")
        self.interception.append(enabled)

    def on_request(self, handler: Callable[[Any], None]) -> None:
        self.handlers.append(handler)

    def remove_request_listeners(self) -> None:
        self.handlers.clear()

    # BrowserPage

    def goto(self, url: str, timeout: float) -> None:
        self.current_url = url

    def wait_for_load(self, timeout: float) -> bool:
        return self.load_result

    def url(self) -> str:
        return self.current_url

    def title(self) -> str:
        return self.page_title

    def mouse_click(self, x: float, y: float) -> None:
        self.clicks.append((x, y))

    def insert_text(self, text: str) -> None:
        self.typed.append(text)


def advance(gate: WorkflowGate, *tools: str) -> None:
    """Record successful calls so the gate reaches the state those calls lead to."""
    args = {"navigate": {"url": "https://example.com"}}
    for tool in tools:
        gate.record(tool, args.get(tool, {}), True)


@pytest.fixture
def page() -> FakePage:
    return FakePage()


@pytest.fixture
def config(tmp_path) -> BrowserConfig:
    return BrowserConfig(
        binary_path="/nonexistent/chrome",
        profile_path=str(tmp_path / "profile"),
        reliability=ReliabilitySettings(retry_delay_s=0.0),
    )


@pytest.fixture
def ctx(config: BrowserConfig, page: FakePage) -> ToolContext:
    sleeps: list[float] = []
    context = ToolContext(config, page_factory=lambda: page, sleep=sleeps.append)
    context.sleeps = sleeps  # type: ignore[attr-defined]
    return context
