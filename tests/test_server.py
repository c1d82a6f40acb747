from __future__ import annotations

import io
import sys
from types import SimpleNamespace
from typing import Any

import pytest

import mcp_servers.gated_browser.main as server_main
from mcp_servers.gated_browser import js_snippets
from mcp_servers.gated_browser.context import ToolContext
from mcp_servers.gated_browser.main import McpServer
from mcp_servers.gated_browser.server.contract import DEFAULT_PROTOCOL_VERSION, select_protocol
from mcp_servers.gated_browser.server.registry import ToolRegistry, create_default_registry
from mcp_servers.gated_browser.server.types import ToolResult
from mcp_servers.gated_browser.workflow import WorkflowState

from conftest import FakeElement, FakePage

EXPECTED_TOOLS = ["browser_close", "browser_init", "click", "find_selector", "get_content", "navigate", "type", "wait"]


def _text(result: ToolResult) -> str:
    return "\n".join(c.text or "" for c in result.content)


def _ok(server: McpServer, name: str, args: dict[str, Any] | None = None) -> ToolResult:
    result = server.call_tool(name, args or {})
    assert not result.is_error, _text(result)
    return result


def _analyzed(server: McpServer) -> None:
    _ok(server, "browser_init")
    _ok(server, "navigate", {"url": "https://example.com"})
    _ok(server, "get_content", {"type": "text"})


def test_default_registry_has_every_tool() -> None:
    registry = create_default_registry()
    assert registry.tool_names() == EXPECTED_TOOLS
    assert len(registry) == len(EXPECTED_TOOLS)
    assert registry.get("browser_init")[1] is False
    assert registry.get("click")[1] is True


def test_registry_rejects_unknown_names(ctx: ToolContext) -> None:
    with pytest.raises(KeyError):
        ToolRegistry().dispatch("nope", ctx, {})


def test_full_workflow(ctx: ToolContext, page: FakePage) -> None:
    server = McpServer(ctx=ctx)
    page.page_title = "Example"

    init = _ok(server, "browser_init")
    assert _text(init).startswith("Browser ready:")
    assert "Workflow State: BROWSER_READY" in _text(init)

    nav = _ok(server, "navigate", {"url": "https://example.com/"})
    assert "Navigated to: https://example.com/" in _text(nav)
    assert "Title: Example" in _text(nav)
    assert "get_content" in _text(nav)

    content = _ok(server, "get_content", {"type": "text"})
    assert "Content Metadata:" in _text(content)
    assert "Content analyzed successfully" in _text(content)
    assert ctx.gate.state == WorkflowState.CONTENT_ANALYZED

    page.scripts[js_snippets.FIND_SELECTOR_CANDIDATES] = [
        {"selector": "button.secondary", "text": "Sign in later", "confidence": 0.6},
        {"selector": "#sign-in", "text": "Sign in", "confidence": 0.95},
        {"selector": "a.login", "text": "Sign in", "confidence": 0.8},
        {"selector": "span", "text": "Sign in", "confidence": 0.3},
    ]
    found = _ok(server, "find_selector", {"text": "Sign in", "elementType": "button"})
    lines = _text(found).splitlines()
    assert lines[:3] == ["Found element: #sign-in", 'Text: "Sign in"', "Confidence: 0.95"]
    assert "Alternatives:" in lines
    assert "  • a.login (confidence: 0.8)" in lines
    assert not any("span" in line for line in lines)
    assert ctx.gate.state == WorkflowState.SELECTOR_AVAILABLE

    page.elements["#sign-in"] = FakeElement("Sign in")
    clicked = _ok(server, "click", {"selector": "#sign-in"})
    assert _text(clicked) == "Clicked element: #sign-in"
    assert page.clicks == [(60.0, 40.0)]

    closed = _ok(server, "browser_close")
    assert "Browser closed" in _text(closed)
    assert ctx.gate.state == WorkflowState.INITIAL
    assert ctx.page is None


def test_find_selector_before_analysis_explains_next_step(ctx: ToolContext) -> None:
    server = McpServer(ctx=ctx)
    _ok(server, "browser_init")
    _ok(server, "navigate", {"url": "https://example.com"})

    result = server.call_tool("find_selector", {"text": "Login"})

    text = _text(result)
    assert result.is_error
    assert "before analyzing page content" in text
    assert "Next Steps:" in text and "get_content" in text
    assert "Workflow Validation Summary:" in text
    assert ctx.gate.state == WorkflowState.PAGE_LOADED


def test_tools_before_init_are_gated(ctx: ToolContext, page: FakePage) -> None:
    server = McpServer(ctx=ctx)
    result = server.call_tool("navigate", {"url": "https://example.com"})
    assert result.is_error
    assert "browser_init" in _text(result)
    # The gate rejected before any page was opened.
    assert ctx.page is None
    assert page.current_url == "about:blank"


def test_busy_session_is_rejected(ctx: ToolContext) -> None:
    server = McpServer(ctx=ctx)
    ctx.lock.acquire()
    try:
        result = server.call_tool("browser_init", {})
    finally:
        ctx.lock.release()
    assert result.is_error
    assert "Session busy" in _text(result)
    assert ctx.gate.state == WorkflowState.INITIAL


def test_unknown_tool_lists_available_tools(ctx: ToolContext) -> None:
    result = McpServer(ctx=ctx).call_tool("teleport", {})
    assert result.is_error
    assert "Unknown tool: teleport" in _text(result)
    assert "Available tools: browser_close, browser_init" in _text(result)


def test_missing_required_argument(ctx: ToolContext) -> None:
    server = McpServer(ctx=ctx)
    _ok(server, "browser_init")
    result = server.call_tool("navigate", {})
    assert result.is_error
    assert "url" in _text(result)


def test_navigate_validates_scheme_and_host(ctx: ToolContext) -> None:
    server = McpServer(ctx=ctx)
    _ok(server, "browser_init")

    bad_scheme = server.call_tool("navigate", {"url": "javascript:alert(1)"})
    assert "Unsupported URL scheme: javascript" in _text(bad_scheme)

    ctx.config.allow_hosts = ["example.com"]
    denied = server.call_tool("navigate", {"url": "https://evil.test/"})
    assert "Host not allowed: evil.test" in _text(denied)
    _ok(server, "navigate", {"url": "https://docs.example.com/"})


def test_get_content_returns_requested_chunk(ctx: ToolContext, page: FakePage) -> None:
    page.html = "<p>word</p>" * 13500
    page.text = "word " * 25000
    server = McpServer(ctx=ctx)
    _ok(server, "browser_init")
    _ok(server, "navigate", {"url": "https://example.com"})

    result = _ok(server, "get_content", {"contentMode": "full", "chunkIndex": 1})

    data = result.data
    assert data["totalChunks"] == 2
    assert data["content"]["chunkIndex"] == 1
    assert "- Chunk: 2 of 2 (chunkIndex=1)" in _text(result)

    out_of_range = server.call_tool("get_content", {"contentMode": "full", "chunkIndex": 5})
    assert out_of_range.is_error
    assert "chunkIndex 5 is out of range" in _text(out_of_range)


def test_get_content_estimate_only(ctx: ToolContext) -> None:
    server = McpServer(ctx=ctx)
    _ok(server, "browser_init")
    _ok(server, "navigate", {"url": "https://example.com"})

    result = _ok(server, "get_content", {"estimateOnly": True})
    assert _text(result).startswith("Content Estimate (no content retrieved):")


def test_get_content_rejects_bad_mode(ctx: ToolContext) -> None:
    server = McpServer(ctx=ctx)
    _ok(server, "browser_init")
    _ok(server, "navigate", {"url": "https://example.com"})

    result = server.call_tool("get_content", {"contentMode": "everything"})
    assert result.is_error
    assert "contentMode" in _text(result)


def test_find_selector_without_matches(ctx: ToolContext) -> None:
    server = McpServer(ctx=ctx)
    _analyzed(server)

    result = server.call_tool("find_selector", {"text": "Nowhere"})
    assert result.is_error
    assert 'No elements found containing text: "Nowhere"' in _text(result)
    assert "Troubleshooting:" in _text(result)


def test_click_reports_self_healing(ctx: ToolContext, page: FakePage) -> None:
    server = McpServer(ctx=ctx)
    _analyzed(server)
    page.scripts[js_snippets.ANALYZE_FAILED_SELECTOR] = {
        "tagName": "BUTTON",
        "id": "submit-btn",
        "className": "btn",
        "textContent": "Submit",
        "attributes": {"id": "submit-btn"},
    }
    page.elements["#submit-btn"] = FakeElement("Submit")

    result = _ok(server, "click", {"selector": "#old-submit", "expectedText": "Submit"})

    assert _text(result).splitlines() == [
        "Clicked element: #submit-btn",
        "Self-healing: Used attribute fallback selector: #submit-btn",
    ]


def test_click_unresolvable_selector_lists_attempts(ctx: ToolContext, page: FakePage) -> None:
    server = McpServer(ctx=ctx)
    _analyzed(server)
    page.scripts[js_snippets.ANALYZE_FAILED_SELECTOR] = {"tagName": "A", "id": "home", "textContent": "Home"}

    result = server.call_tool("click", {"selector": "#gone"})

    text = _text(result)
    assert result.is_error
    assert "Element not found: #gone" in text
    assert "Self-Healing Fallback Selectors for: #gone" in text


def test_click_without_box_falls_back_to_dom_click(ctx: ToolContext, page: FakePage) -> None:
    server = McpServer(ctx=ctx)
    _analyzed(server)
    element = FakeElement("Menu", box={"x": 0.0, "y": 0.0, "width": 0.0, "height": 0.0})
    page.elements["#menu"] = element

    result = _ok(server, "click", {"selector": "#menu", "waitForNavigation": True})

    assert element.calls == ["scroll", "dom-click"]
    assert result.data["method"] == "dom"
    assert result.data["navigated"] is True
    assert "Navigation finished: https://example.com" in _text(result)


def test_type_uses_keyboard_then_value_fallback(ctx: ToolContext, page: FakePage) -> None:
    server = McpServer(ctx=ctx)
    _analyzed(server)
    page.elements["#email"] = FakeElement("")
    page.elements["#legacy"] = FakeElement("", focusable=False)
    page.elements["#div"] = FakeElement("", focusable=False, accepts_value=False)

    typed = _ok(server, "type", {"selector": "#email", "text": "hunter2"})
    assert _text(typed) == "Typed 7 characters into: #email"
    assert page.typed == ["hunter2"]

    fallback = _ok(server, "type", {"selector": "#legacy", "text": "abc"})
    assert fallback.data["method"] == "value"
    assert page.elements["#legacy"].value == "abc"

    refused = server.call_tool("type", {"selector": "#div", "text": "abc"})
    assert refused.is_error
    assert "does not accept text input" in _text(refused)


def test_wait_variants(ctx: ToolContext, page: FakePage) -> None:
    server = McpServer(ctx=ctx)
    _ok(server, "browser_init")
    _ok(server, "navigate", {"url": "https://example.com"})

    missing = server.call_tool("wait", {"type": "selector", "value": "#late", "timeout": 300})
    assert missing.is_error
    assert ctx.sleeps == [0.1, 0.1]  # type: ignore[attr-defined]

    page.elements["#late"] = FakeElement("now here")
    _ok(server, "wait", {"type": "selector", "value": "#late"})

    ctx.sleeps.clear()  # type: ignore[attr-defined]
    _ok(server, "wait", {"type": "timeout", "value": 250})
    assert ctx.sleeps == [0.25]  # type: ignore[attr-defined]

    page.load_result = False
    assert server.call_tool("wait", {"type": "navigation", "timeout": 100}).is_error

    unknown = server.call_tool("wait", {"type": "forever"})
    assert "Unknown wait type: forever" in _text(unknown)


def test_open_circuit_breaker_is_reported(ctx: ToolContext) -> None:
    server = McpServer(ctx=ctx)
    _ok(server, "browser_init")
    for _ in range(ctx.breaker.threshold):
        ctx.breaker.record_failure()

    result = server.call_tool("navigate", {"url": "https://example.com"})

    text = _text(result)
    assert result.is_error
    assert "Circuit breaker is open" in text
    assert '"cooldownMs": 30000' in text


def test_tool_errors_are_recorded_by_gate(ctx: ToolContext) -> None:
    server = McpServer(ctx=ctx)
    _ok(server, "browser_init")
    server.call_tool("navigate", {"url": "ftp://example.com"})
    last = ctx.gate.context.tool_calls[-1]
    assert last.tool_name == "navigate"
    assert last.success is False
    assert ctx.gate.state == WorkflowState.BROWSER_READY


def test_dispatch_speaks_json_rpc(ctx: ToolContext, monkeypatch: pytest.MonkeyPatch) -> None:
    sent: list[dict[str, Any]] = []
    monkeypatch.setattr(server_main, "_write_message", sent.append)
    server = McpServer(ctx=ctx)

    server.dispatch({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"protocolVersion": "2024-11-05"}})
    assert sent[-1]["result"]["protocolVersion"] == "2024-11-05"
    assert sent[-1]["result"]["serverInfo"]["name"] == "gated-browser"

    server.dispatch({"jsonrpc": "2.0", "method": "notifications/initialized"})
    server.dispatch({"jsonrpc": "2.0", "method": "notifications/cancelled", "params": {}})
    assert len(sent) == 1

    server.dispatch({"jsonrpc": "2.0", "id": 2, "method": "tools/list"})
    assert sorted(t["name"] for t in sent[-1]["result"]["tools"]) == EXPECTED_TOOLS

    server.dispatch({"jsonrpc": "2.0", "id": 3, "method": "ping"})
    assert sent[-1] == {"jsonrpc": "2.0", "id": 3, "result": {}}

    server.dispatch(
        {"jsonrpc": "2.0", "id": 4, "method": "tools/call", "params": {"name": "browser_init", "arguments": {}}}
    )
    assert sent[-1]["result"]["isError"] is False
    assert sent[-1]["result"]["content"][0]["type"] == "text"

    server.dispatch({"jsonrpc": "2.0", "id": 5, "method": "resources/list"})
    assert sent[-1]["error"]["code"] == -32601


def test_read_message_skips_blank_lines_and_reports_parse_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    sent: list[dict[str, Any]] = []
    monkeypatch.setattr(server_main, "_write_message", sent.append)
    monkeypatch.setattr(sys, "stdin", SimpleNamespace(buffer=io.BytesIO(b'\n{not json\n{"id": 7}\n')))

    assert server_main._read_message() == {"id": 7}
    assert sent == [{"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}}]
    assert server_main._read_message() is None


def test_select_protocol_falls_back_to_default() -> None:
    assert select_protocol("2025-06-18") == "2025-06-18"
    assert select_protocol("1999-01-01") == DEFAULT_PROTOCOL_VERSION
    assert select_protocol(None) == DEFAULT_PROTOCOL_VERSION


def test_error_result_layout() -> None:
    result = ToolResult.error(
        "Element not found: #x",
        tool="click",
        suggestion="Use 'get_content'",
        details={"selector": "#x", "workflow": "Workflow Validation Summary:\n- Current State: PAGE_LOADED"},
    )
    blocks = _text(result).split("\n\n")
    assert blocks[0] == "Element not found: #x"
    assert blocks[1] == "Next Steps: Use 'get_content'"
    assert blocks[2].startswith("Workflow Validation Summary:")
    assert blocks[3] == 'Details: {"selector": "#x"}'
    assert result.data["ok"] is False
