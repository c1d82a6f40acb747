"""
Tool handlers organized by domain.

Each handler module provides functions that handle specific tool calls.
All handlers follow the signature: (ctx, arguments) -> ToolResult
"""

from .browser import BROWSER_HANDLERS
from .content import CONTENT_HANDLERS
from .interaction import INTERACTION_HANDLERS
from .navigation import NAVIGATION_HANDLERS

# Aggregate all handlers
ALL_HANDLERS: dict[str, tuple] = {
    **BROWSER_HANDLERS,
    **NAVIGATION_HANDLERS,
    **CONTENT_HANDLERS,
    **INTERACTION_HANDLERS,
}

__all__ = [
    "ALL_HANDLERS",
    "BROWSER_HANDLERS",
    "NAVIGATION_HANDLERS",
    "CONTENT_HANDLERS",
    "INTERACTION_HANDLERS",
]
