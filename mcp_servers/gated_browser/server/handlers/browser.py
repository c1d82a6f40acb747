"""
Browser lifecycle tool handlers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ...workflow import WorkflowState
from ..types import ToolResult

if TYPE_CHECKING:
    from ...context import ToolContext


def handle_browser_init(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    message = ctx.start_browser()
    return ToolResult.text(
        "\n".join(
            [
                f"Browser ready: {message}",
                f"Workflow State: {WorkflowState.BROWSER_READY.value}",
                "Next Steps: Use 'navigate' to load a page.",
            ]
        ),
        data={"ok": True, "message": message, "workflowState": WorkflowState.BROWSER_READY.value},
    )


def handle_browser_close(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    ctx.close()
    return ToolResult.text(
        "\n".join(
            [
                "Browser closed",
                f"Workflow State: {WorkflowState.INITIAL.value}",
                "Next Steps: Use 'browser_init' to start a new session.",
            ]
        ),
        data={"ok": True, "workflowState": WorkflowState.INITIAL.value},
    )


BROWSER_HANDLERS: dict[str, tuple] = {
    "browser_init": (handle_browser_init, False),
    "browser_close": (handle_browser_close, False),
}
