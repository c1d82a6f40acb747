"""
Tool registry with dispatch table for MCP server.

Every dispatch goes through the session lock and the workflow gate:
lock (non-blocking) -> gate.validate -> handler -> gate.record.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..errors import SmartToolError
from .types import HandlerFunc, ToolResult

if TYPE_CHECKING:
    from ..context import ToolContext

logger = logging.getLogger("mcp.gated_browser.registry")


class ToolRegistry:
    """Registry for tool handlers with gate enforcement and page lifecycle."""

    def __init__(self) -> None:
        # name -> (handler, requires_browser)
        self._handlers: dict[str, tuple[HandlerFunc, bool]] = {}

    def register(
        self,
        name: str,
        handler: HandlerFunc,
        requires_browser: bool = True,
    ) -> None:
        """Register a tool handler."""
        self._handlers[name] = (handler, requires_browser)

    def register_many(self, handlers: dict[str, tuple[HandlerFunc, bool]]) -> None:
        """Register multiple handlers at once."""
        self._handlers.update(handlers)

    def get(self, name: str) -> tuple[HandlerFunc, bool] | None:
        """Get handler and its browser requirement."""
        return self._handlers.get(name)

    def has(self, name: str) -> bool:
        """Check if handler exists."""
        return name in self._handlers

    def tool_names(self) -> list[str]:
        return sorted(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)

    def dispatch(self, name: str, ctx: ToolContext, arguments: dict[str, Any]) -> ToolResult:
        """
        Dispatch tool call to appropriate handler.

        Args:
            name: Tool name
            ctx: Session context (gate, engines, page)
            arguments: Tool arguments

        Returns:
            ToolResult from handler

        Raises:
            KeyError: If tool not found
            SmartToolError: Gate rejection, busy session, or handler failure
        """
        handler_info = self._handlers.get(name)
        if handler_info is None:
            raise KeyError(f"Unknown tool: {name}")

        handler, requires_browser = handler_info
        args = dict(arguments or {})

        if not ctx.lock.acquire(blocking=False):
            logger.info("session_busy tool=%s", name)
            raise SmartToolError(
                tool=name,
                action="dispatch",
                reason="Session busy: another tool call is still running for this session",
                suggestion="Wait for the previous call to finish, then retry",
                details={"currentState": ctx.gate.state.value},
            )
        try:

            def _run() -> ToolResult:
                # Page availability is checked after the gate so rejections stay cheap.
                if requires_browser:
                    ctx.require_page()
                return handler(ctx, args)

            return ctx.gate.execute(name, args, _run)
        finally:
            ctx.lock.release()


def create_default_registry() -> ToolRegistry:
    """Create registry with all default handlers."""
    from .handlers import ALL_HANDLERS

    registry = ToolRegistry()
    registry.register_many(ALL_HANDLERS)
    logger.debug("registry_ready tools=%s", len(registry))
    return registry
