"""
Navigation tool handlers - page loads and waits.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from ...errors import SmartToolError
from ...workflow import WorkflowState
from ..types import ToolResult
from .args import optional_int, require_str

if TYPE_CHECKING:
    from ...context import ToolContext
    from ...page import BrowserPage

ALLOWED_SCHEMES = frozenset({"http", "https", "file", "about", "data"})
WAIT_POLL_INTERVAL_S = 0.1
MAX_FIXED_WAIT_MS = 60_000


def _check_url(ctx: ToolContext, url: str) -> None:
    parsed = urlparse(url)
    scheme = (parsed.scheme or "").lower()
    if scheme not in ALLOWED_SCHEMES:
        raise SmartToolError(
            tool="navigate",
            action="validate",
            reason=f"Unsupported URL scheme: {scheme or '(none)'}",
            suggestion="Use an absolute URL such as https://example.com",
            details={"url": url},
        )
    if scheme in ("http", "https") and not ctx.config.is_host_allowed(parsed.hostname or ""):
        raise SmartToolError(
            tool="navigate",
            action="validate",
            reason=f"Host not allowed: {parsed.hostname}",
            suggestion="Add the host to MCP_ALLOW_HOSTS or navigate to an allowed host",
            details={"url": url, "allowHosts": list(ctx.config.allow_hosts)},
        )


def handle_navigate(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    url = require_str(args, "url", "navigate")
    _check_url(ctx, url)
    default_ms = int(ctx.config.reliability.navigate_timeout_s * 1000)
    timeout_s = max(1, optional_int(args, "timeout", "navigate", default_ms)) / 1000

    def _go(page: BrowserPage) -> tuple[str, str]:
        page.goto(url, timeout_s)
        return page.url(), page.title()

    final_url, title = ctx.browser_call("navigate", _go)
    return ToolResult.text(
        "\n".join(
            [
                f"Navigated to: {final_url or url}",
                f"Title: {title or '(untitled)'}",
                f"Workflow State: {WorkflowState.PAGE_LOADED.value}",
                "Next Steps: Use 'get_content' to analyze the page before searching for or interacting with elements.",
            ]
        ),
        data={"url": final_url or url, "title": title, "workflowState": WorkflowState.PAGE_LOADED.value},
    )


def handle_wait(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    kind = require_str(args, "type", "wait")
    timeout_ms = max(0, optional_int(args, "timeout", "wait", 10_000))

    if kind == "selector":
        selector = require_str(args, "value", "wait")
        polls = max(1, math.ceil(timeout_ms / 1000 / WAIT_POLL_INTERVAL_S))
        for attempt in range(polls):
            found = ctx.browser_call("interaction", lambda page: page.query_selector(selector) is not None)
            if found:
                return ToolResult.text(f"Element appeared: {selector}", data={"found": True, "selector": selector})
            if attempt < polls - 1:
                ctx.sleep(WAIT_POLL_INTERVAL_S)
        raise SmartToolError(
            tool="wait",
            action="selector",
            reason=f"Element did not appear within {timeout_ms}ms: {selector}",
            suggestion="Check the selector with 'find_selector', or increase 'timeout'",
            details={"selector": selector, "timeoutMs": timeout_ms},
        )

    if kind == "navigation":
        timeout_s = max(timeout_ms, 1) / 1000
        loaded = ctx.browser_call("navigate", lambda page: page.wait_for_load(timeout_s))
        if not loaded:
            raise SmartToolError(
                tool="wait",
                action="navigation",
                reason=f"No page load finished within {timeout_ms}ms",
                suggestion="The page may already be loaded; use 'get_content' to check",
                details={"timeoutMs": timeout_ms},
            )
        url = ctx.browser_call("interaction", lambda page: page.url())
        return ToolResult.text(f"Navigation finished: {url}", data={"loaded": True, "url": url})

    if kind == "timeout":
        delay_ms = min(max(0, optional_int(args, "value", "wait", timeout_ms)), MAX_FIXED_WAIT_MS)
        ctx.sleep(delay_ms / 1000)
        return ToolResult.text(f"Waited {delay_ms}ms", data={"waitedMs": delay_ms})

    raise SmartToolError(
        tool="wait",
        action="validate",
        reason=f"Unknown wait type: {kind}",
        suggestion="Use type='selector', type='navigation' or type='timeout'",
    )


NAVIGATION_HANDLERS: dict[str, tuple] = {
    "navigate": (handle_navigate, True),
    "wait": (handle_wait, True),
}
