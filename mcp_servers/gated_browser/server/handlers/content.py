"""
Content tool handlers - token-aware page reading and selector discovery.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from ... import js_snippets
from ...content_strategy import ContentRequest, ContentResponse
from ...errors import SmartToolError
from ...tokens import ContentChunk
from ..types import ToolResult
from .args import optional_int, require_str

if TYPE_CHECKING:
    from ...context import ToolContext
    from ...page import BrowserPage

SEMANTIC_SELECTORS: dict[str, tuple[str, ...]] = {
    "button": (
        "button",
        '[role="button"]',
        'input[type="button"]',
        'input[type="submit"]',
        "a.btn",
        ".button",
    ),
    "link": ("a[href]", '[role="link"]'),
    "input": ("input", "textarea", "select", '[contenteditable="true"]', '[role="textbox"]'),
    "navigation": ("nav", '[role="navigation"]', ".nav", ".navbar", ".menu"),
    "heading": ("h1", "h2", "h3", "h4", "h5", "h6", '[role="heading"]'),
    "list": ("ul", "ol", '[role="list"]'),
    "article": ("article", '[role="article"]', ".article", ".post"),
    "form": ("form", '[role="form"]'),
    "dialog": ("dialog", '[role="dialog"]', '[role="alertdialog"]', ".modal"),
    "tab": ('[role="tab"]', ".tab"),
    "menu": ('[role="menu"]', '[role="menuitem"]', ".dropdown-menu"),
    "checkbox": ('input[type="checkbox"]', '[role="checkbox"]'),
    "radio": ('input[type="radio"]', '[role="radio"]'),
}

MAX_ALTERNATIVES = 2


def resolve_element_type(element_type: str | None) -> list[str]:
    """Semantic element type (button, link, ...) or raw CSS selector -> query list."""
    key = (element_type or "*").strip()
    mapped = SEMANTIC_SELECTORS.get(key.lower())
    if mapped:
        return list(mapped)
    return [key or "*"]


def _select_chunk(response: ContentResponse, chunk_index: int) -> ContentChunk:
    chunks = response.content if isinstance(response.content, list) else []
    if not 0 <= chunk_index < len(chunks):
        raise SmartToolError(
            tool="get_content",
            action="select_chunk",
            reason=f"chunkIndex {chunk_index} is out of range (content has {len(chunks)} chunks)",
            suggestion=f"Use a chunkIndex between 0 and {len(chunks) - 1}",
            details={"totalChunks": len(chunks)},
        )
    return chunks[chunk_index]


def _render_content(response: ContentResponse, body: str, chunk: ContentChunk | None) -> str:
    meta = response.metadata
    lines = [
        "Content Metadata:",
        f"- Strategy: {response.strategy.value}",
        f"- Content Type: {response.content_type}",
        f"- Original Tokens: {meta.original_tokens}",
        f"- Processed Tokens: {meta.processed_tokens}",
        f"- Exceeds Limit: {str(meta.exceeds_limit).lower()}",
    ]
    if meta.selector:
        lines.append(f"- Selector: {meta.selector}")
    if chunk is not None:
        lines.append(f"- Chunk: {chunk.chunk_index + 1} of {chunk.total_chunks} (chunkIndex={chunk.chunk_index})")
    if meta.recommendations:
        lines.append("- Recommendations:")
        lines.extend(f"  • {rec}" for rec in meta.recommendations)
    parts = [body, "---", "\n".join(lines)]
    if response.workflow_guidance:
        parts.append(response.workflow_guidance)
    return "\n\n".join(parts)


def _render_estimate(response: ContentResponse) -> str:
    meta = response.metadata
    lines = [
        "Content Estimate (no content retrieved):",
        f"- Strategy: {response.strategy.value}",
        f"- Recommended Type: {response.content_type}",
        f"- Estimated HTML Tokens: {meta.original_tokens}",
        f"- Estimated Tokens For Type: {meta.processed_tokens}",
        f"- Requires Chunking: {str(meta.exceeds_limit).lower()}",
    ]
    if meta.recommendations:
        lines.append("- Recommendations:")
        lines.extend(f"  • {rec}" for rec in meta.recommendations)
    return "\n".join(lines)


def handle_get_content(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    try:
        request = ContentRequest.from_args(args)
    except (TypeError, ValueError) as exc:
        raise SmartToolError(
            tool="get_content",
            action="validate",
            reason=str(exc),
            suggestion="Check the get_content argument values against the tool schema",
        ) from exc
    chunk_index = optional_int(args, "chunkIndex", "get_content", 0)

    response = ctx.browser_call("content", lambda page: ctx.content.process_content_request(page, request))
    payload = response.to_dict()

    if response.metadata.estimation_only:
        return ToolResult.text(_render_estimate(response), data=payload)

    if isinstance(response.content, list):
        chunk = _select_chunk(response, chunk_index)
        fitted, notes = ctx.content.enforce_mcp_limits([chunk], response.content_type)
        chunk = cast(list[ContentChunk], fitted)[0]
        body = chunk.content
        payload["content"] = chunk.to_dict()
        payload["totalChunks"] = chunk.total_chunks
    else:
        chunk = None
        fitted_text, notes = ctx.content.enforce_mcp_limits(response.content, response.content_type)
        body = cast(str, fitted_text)
        payload["content"] = body

    response.metadata.recommendations.extend(notes)
    payload["metadata"] = response.metadata.to_dict()
    return ToolResult.text(_render_content(response, body, chunk), data=payload)


def _no_results(text: str, element_type: str) -> SmartToolError:
    return SmartToolError(
        tool="find_selector",
        action="search",
        reason=f'No elements found containing text: "{text}"',
        suggestion=(
            "Troubleshooting:\n"
            "  • Check the spelling of the search text\n"
            "  • Try a shorter or partial text with exact=false\n"
            f"  • Try a different elementType (currently: {element_type})\n"
            "  • The element may load later: use 'wait' then 'get_content' again"
        ),
        details={"text": text, "elementType": element_type},
    )


def handle_find_selector(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    text = require_str(args, "text", "find_selector")
    element_type = str(args.get("elementType") or "*")
    exact = bool(args.get("exact", False))
    selectors = resolve_element_type(element_type)

    def _search(page: BrowserPage) -> list[dict[str, Any]]:
        found = page.evaluate(js_snippets.FIND_SELECTOR_CANDIDATES, text, selectors, exact)
        return [item for item in (found or []) if isinstance(item, dict) and item.get("selector")]

    candidates = ctx.browser_call("interaction", _search)
    if not candidates:
        raise _no_results(text, element_type)

    # Stable sort keeps document order among equal scores.
    candidates.sort(key=lambda item: item.get("confidence") or 0, reverse=True)
    best = candidates[0]
    lines = [
        f"Found element: {best['selector']}",
        f'Text: "{str(best.get("text") or "")[:100]}"',
        f"Confidence: {best.get('confidence')}",
    ]
    alternatives = candidates[1 : 1 + MAX_ALTERNATIVES]
    if alternatives:
        lines.append("")
        lines.append("Alternatives:")
        lines.extend(f"  • {alt['selector']} (confidence: {alt.get('confidence')})" for alt in alternatives)
    return ToolResult.text(
        "\n".join(lines),
        data={"selector": best["selector"], "best": best, "alternatives": alternatives, "total": len(candidates)},
    )


CONTENT_HANDLERS: dict[str, tuple] = {
    "get_content": (handle_get_content, True),
    "find_selector": (handle_find_selector, True),
}
