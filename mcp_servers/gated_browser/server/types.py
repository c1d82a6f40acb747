"""
Type definitions for MCP server responses and handlers.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..context import ToolContext


@dataclass(slots=True)
class ToolContent:
    """Single content item in tool response."""

    type: str
    text: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(slots=True)
class ToolResult:
    """Result of a tool execution."""

    content: list[ToolContent] = field(default_factory=list)
    is_error: bool = False
    # Raw payload for tests and in-process callers; not part of the MCP wire format.
    data: Any | None = None

    @classmethod
    def text(cls, text: str, data: Any | None = None) -> ToolResult:
        return cls(content=[ToolContent(type="text", text=text or "")], data=data)

    @classmethod
    def error(
        cls,
        message: str,
        *,
        tool: str | None = None,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ToolResult:
        """Error result: message, next steps, then details (workflow summary verbatim)."""
        payload: dict[str, Any] = {"ok": False, "error": message}
        if tool:
            payload["tool"] = tool
        if suggestion:
            payload["suggestion"] = suggestion
        if details:
            payload["details"] = details

        parts = [message]
        if suggestion:
            parts.append(f"Next Steps: {suggestion}")
        extra = dict(details or {})
        for key in ("fallbacks", "workflow"):
            block = extra.pop(key, None)
            if block:
                parts.append(str(block).strip("\n"))
        if extra:
            parts.append("Details: " + json.dumps(extra, ensure_ascii=False, sort_keys=True))
        return cls(content=[ToolContent(type="text", text="\n\n".join(parts))], is_error=True, data=payload)

    @classmethod
    def json(cls, data: Any) -> ToolResult:
        return cls(content=[ToolContent(type="text", text=json.dumps(data, ensure_ascii=False, indent=2))], data=data)

    def to_content_list(self) -> list[dict[str, Any]]:
        """Convert to MCP content list format."""
        return [c.to_dict() for c in self.content]


HandlerFunc = Callable[["ToolContext", dict[str, Any]], ToolResult]
