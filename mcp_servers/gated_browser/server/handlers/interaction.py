"""
Interaction tool handlers - click and type with self-healing selector resolution.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ... import js_snippets
from ...errors import ElementNotFound, SmartToolError
from ...locators import LocatorMatch
from ..types import ToolResult
from .args import require_str

if TYPE_CHECKING:
    from ...context import ToolContext
    from ...page import BrowserPage, ElementHandle

_NOT_FOUND_SUGGESTION = (
    "Use 'get_content' to re-analyze the page, then 'find_selector' to get a current selector"
)


def _locate(ctx: ToolContext, page: BrowserPage, tool: str, selector: str, expected: str | None) -> LocatorMatch:
    result = ctx.locators.find_element_with_fallbacks(page, selector, expected)
    if isinstance(result, LocatorMatch):
        return result
    raise ElementNotFound(
        tool,
        selector,
        suggestion=_NOT_FOUND_SUGGESTION,
        fallback_summary=ctx.locators.fallback_summary(page, selector, expected),
    )


def _healing_note(match: LocatorMatch) -> str | None:
    if match.strategy == "primary":
        return None
    return f"Self-healing: Used {match.strategy} fallback selector: {match.used_selector}"


def _click_element(page: BrowserPage, element: ElementHandle) -> str:
    """Click at the element's center; DOM click when it has no rendered box."""
    element.evaluate(js_snippets.SCROLL_INTO_VIEW_ON_ELEMENT)
    box = element.bounding_box()
    if box and box.get("width", 0) > 0 and box.get("height", 0) > 0:
        page.mouse_click(box["x"] + box["width"] / 2, box["y"] + box["height"] / 2)
        return "mouse"
    element.evaluate(js_snippets.CLICK_ON_ELEMENT)
    return "dom"


def handle_click(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    selector = require_str(args, "selector", "click")
    expected = str(args.get("expectedText") or "") or None
    wait_for_navigation = bool(args.get("waitForNavigation", False))

    def _click(page: BrowserPage) -> tuple[LocatorMatch, str]:
        match = _locate(ctx, page, "click", selector, expected)
        return match, _click_element(page, match.element)

    match, method = ctx.browser_call("interaction", _click)
    lines = [f"Clicked element: {match.used_selector}"]
    note = _healing_note(match)
    if note:
        lines.append(note)

    data: dict[str, Any] = {"selector": match.used_selector, "strategy": match.strategy, "method": method}
    if wait_for_navigation:
        timeout_s = ctx.config.reliability.navigate_timeout_s
        loaded = ctx.browser_call("navigate", lambda page: page.wait_for_load(timeout_s))
        data["navigated"] = loaded
        if loaded:
            url = ctx.browser_call("interaction", lambda page: page.url())
            data["url"] = url
            lines.append(f"Navigation finished: {url}")
            lines.append("Next Steps: Use 'get_content' to analyze the new page.")
        else:
            lines.append(f"No navigation finished within {timeout_s:g}s")
    return ToolResult.text("\n".join(lines), data=data)


def handle_type(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    selector = require_str(args, "selector", "type")
    text = args.get("text")
    if text is None:
        raise SmartToolError(
            tool="type",
            action="validate",
            reason="Missing required argument: text",
            suggestion="Call 'type' again with the text to enter",
        )
    text = str(text)
    expected = str(args.get("expectedText") or "") or None

    def _type(page: BrowserPage) -> tuple[LocatorMatch, str]:
        match = _locate(ctx, page, "type", selector, expected)
        element = match.element
        element.evaluate(js_snippets.SCROLL_INTO_VIEW_ON_ELEMENT)
        if element.evaluate(js_snippets.FOCUS_AND_CLEAR_ON_ELEMENT):
            page.insert_text(text)
            return match, "keyboard"
        if element.evaluate(js_snippets.SET_VALUE_ON_ELEMENT, text):
            return match, "value"
        raise SmartToolError(
            tool="type",
            action="type",
            reason=f"Element does not accept text input: {match.used_selector}",
            suggestion="Use 'find_selector' with elementType='input' to locate an input field",
            details={"selector": match.used_selector},
        )

    match, method = ctx.browser_call("interaction", _type)
    lines = [f"Typed {len(text)} characters into: {match.used_selector}"]
    note = _healing_note(match)
    if note:
        lines.append(note)
    return ToolResult.text(
        "\n".join(lines),
        data={"selector": match.used_selector, "strategy": match.strategy, "method": method, "length": len(text)},
    )


INTERACTION_HANDLERS: dict[str, tuple] = {
    "click": (handle_click, True),
    "type": (handle_type, True),
}
