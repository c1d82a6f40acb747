"""Tool schema definitions (tools/list)."""

from __future__ import annotations

from typing import Any

_SCHEMA = "http://json-schema.org/draft-07/schema#"

BROWSER_INIT_TOOL: dict[str, Any] = {
    "name": "browser_init",
    "description": """Start (or attach to) the browser and open a page connection.
WORKFLOW: browser_init -> navigate -> get_content -> find_selector -> click/type.
Calling it again resets the workflow to BROWSER_READY.""",
    "inputSchema": {"$schema": _SCHEMA, "type": "object", "properties": {}},
}

BROWSER_CLOSE_TOOL: dict[str, Any] = {
    "name": "browser_close",
    "description": "Close the browser connection (and the browser if this server launched it). Resets the workflow.",
    "inputSchema": {"$schema": _SCHEMA, "type": "object", "properties": {}},
}

NAVIGATE_TOOL: dict[str, Any] = {
    "name": "navigate",
    "description": """Load a URL in the current page and wait for the load event.
Requires browser_init. Afterwards, use get_content to analyze the page.""",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "Absolute URL (http, https, file or about:)"},
            "timeout": {"type": "integer", "default": 30000, "description": "Load timeout in milliseconds"},
        },
        "required": ["url"],
    },
}

GET_CONTENT_TOOL: dict[str, Any] = {
    "name": "get_content",
    "description": """Read page content within the MCP token budget.
- contentMode: "main" (default for whole page), "summary" (headings + key paragraphs), "full"
- type: "html" or "text"; omit to let the server pick the cheapest representation
- estimateOnly: return token estimates and recommendations only (content is "")
- Large pages are chunked; fetch further chunks with chunkIndex.
Required before find_selector, click and type.""",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {
            "type": {"type": "string", "enum": ["html", "text"]},
            "selector": {"type": "string", "description": "CSS selector (or XPath starting with '/') to scope content"},
            "estimateOnly": {"type": "boolean", "default": False},
            "maxTokens": {"type": "integer", "description": "Caller's budget hint"},
            "chunkingPreference": {"type": "string", "enum": ["avoid", "allow", "prefer"]},
            "contentMode": {"type": "string", "enum": ["full", "main", "summary"]},
            "resourceBlocking": {"type": "string", "enum": ["disabled", "minimal", "standard", "aggressive"]},
            "chunkIndex": {"type": "integer", "default": 0, "minimum": 0},
        },
    },
}

FIND_SELECTOR_TOOL: dict[str, Any] = {
    "name": "find_selector",
    "description": """Find a selector for an element by its visible text.
elementType narrows the search: button, link, input, navigation, heading, list, article,
form, dialog, tab, menu, checkbox, radio (or any CSS selector). Requires get_content first.""",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {
            "text": {"type": "string", "description": "Text to search for"},
            "elementType": {"type": "string", "default": "*"},
            "exact": {"type": "boolean", "default": False},
        },
        "required": ["text"],
    },
}

CLICK_TOOL: dict[str, Any] = {
    "name": "click",
    "description": """Click an element. If the selector no longer matches, ranked fallback selectors
are tried (self-healing); expectedText guards against clicking the wrong element.""",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {
            "selector": {"type": "string"},
            "expectedText": {"type": "string"},
            "waitForNavigation": {"type": "boolean", "default": False},
        },
        "required": ["selector"],
    },
}

TYPE_TOOL: dict[str, Any] = {
    "name": "type",
    "description": "Clear an input and type text into it (self-healing selector resolution as in click).",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {
            "selector": {"type": "string"},
            "text": {"type": "string"},
            "expectedText": {"type": "string"},
        },
        "required": ["selector", "text"],
    },
}

WAIT_TOOL: dict[str, Any] = {
    "name": "wait",
    "description": """Wait for a selector to appear, for a navigation to finish, or for a fixed delay.
- wait(type="selector", value="#results")
- wait(type="navigation")
- wait(type="timeout", value="500")""",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {
            "type": {"type": "string", "enum": ["selector", "navigation", "timeout"]},
            "value": {"type": "string"},
            "timeout": {"type": "integer", "default": 10000, "description": "Milliseconds"},
        },
        "required": ["type"],
    },
}

TOOL_DEFINITIONS: list[dict[str, Any]] = [
    BROWSER_INIT_TOOL,
    BROWSER_CLOSE_TOOL,
    NAVIGATE_TOOL,
    GET_CONTENT_TOOL,
    FIND_SELECTOR_TOOL,
    CLICK_TOOL,
    TYPE_TOOL,
    WAIT_TOOL,
]
