"""
Error taxonomy for the gated browser server.

Provides:
- SmartToolError: structured, AI-facing error (what failed, why, what to try next)
- Workflow / locator / content errors raised by tool handlers
- Internal errors that are always recovered locally (estimation, resource blocking)
- BrowserErrorType + categorize_error for the retry layer
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass
class SmartToolError(Exception):
    """Structured error with context for AI agents."""

    tool: str
    action: str
    reason: str
    suggestion: str
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"[{self.tool}] {self.action} failed: {self.reason}. Suggestion: {self.suggestion}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": True,
            "tool": self.tool,
            "action": self.action,
            "reason": self.reason,
            "suggestion": self.suggestion,
            "details": self.details,
        }


class WorkflowViolation(SmartToolError):
    """Tool called in a state that does not satisfy its prerequisites."""

    def __init__(
        self,
        tool: str,
        reason: str,
        suggestion: str,
        *,
        current_state: str,
        required_state: str | None = None,
        summary: str = "",
    ) -> None:
        details: dict[str, Any] = {"currentState": current_state}
        if required_state:
            details["requiredState"] = required_state
        if summary:
            details["workflow"] = summary
        super().__init__(tool=tool, action="validate", reason=reason, suggestion=suggestion, details=details)
        self.current_state = current_state
        self.required_state = required_state
        self.suggested_next_step = suggestion


class ElementNotFound(SmartToolError):
    """Selector resolution exhausted every fallback."""

    def __init__(self, tool: str, selector: str, *, suggestion: str, fallback_summary: str = "") -> None:
        details: dict[str, Any] = {"selector": selector}
        if fallback_summary:
            details["fallbacks"] = fallback_summary
        super().__init__(
            tool=tool,
            action="locate",
            reason=f"Element not found: {selector}",
            suggestion=suggestion,
            details=details,
        )
        self.selector = selector


class ContentTooLarge(SmartToolError):
    """Outgoing content cannot be made to fit even after truncation."""

    def __init__(self, token_count: int, limit: int, *, message: str = "") -> None:
        super().__init__(
            tool="get_content",
            action="validate_size",
            reason=message or f"Content ({token_count} tokens) exceeds MCP maximum ({limit})",
            suggestion=(
                "Narrow the request: pass a 'selector', use contentMode='main' or contentMode='summary', "
                "or request type='text'"
            ),
            details={"tokenCount": token_count, "limit": limit},
        )
        self.token_count = token_count
        self.limit = limit


class PreconditionError(SmartToolError):
    """Content requested before the browser/page exist."""

    def __init__(self, reason: str, suggestion: str = "Call browser_init, then navigate") -> None:
        super().__init__(tool="get_content", action="precondition", reason=reason, suggestion=suggestion)


class EstimationFailure(Exception):
    """Pre-flight size estimation failed; callers substitute a conservative estimate."""


class ResourceBlockingFailure(Exception):
    """Request interception could not be set up or torn down; never aborts extraction."""


class OperationTimeoutError(Exception):
    def __init__(self, timeout_s: float, context: str) -> None:
        self.timeout_ms = int(round(timeout_s * 1000))
        self.context = context
        super().__init__(f"Operation timed out after {self.timeout_ms}ms in context: {context}")


class CircuitOpenError(Exception):
    def __init__(self, cooldown_s: float) -> None:
        self.cooldown_ms = int(round(cooldown_s * 1000))
        super().__init__(
            f"Circuit breaker is open. Browser operations are temporarily disabled. Wait {self.cooldown_ms}ms"
        )


class RetryDepthExceeded(Exception):
    def __init__(self, max_depth: int) -> None:
        self.max_depth = max_depth
        super().__init__(f"Maximum recursion depth ({max_depth}) exceeded in retry operations")


class BrowserErrorType(str, Enum):
    FRAME_DETACHED = "FRAME_DETACHED"
    SESSION_CLOSED = "SESSION_CLOSED"
    TARGET_CLOSED = "TARGET_CLOSED"
    PROTOCOL_ERROR = "PROTOCOL_ERROR"
    NAVIGATION_TIMEOUT = "NAVIGATION_TIMEOUT"
    ELEMENT_NOT_FOUND = "ELEMENT_NOT_FOUND"
    UNKNOWN = "UNKNOWN"


RECOVERABLE_ERRORS = frozenset(
    {
        BrowserErrorType.FRAME_DETACHED,
        BrowserErrorType.SESSION_CLOSED,
        BrowserErrorType.TARGET_CLOSED,
        BrowserErrorType.PROTOCOL_ERROR,
        BrowserErrorType.NAVIGATION_TIMEOUT,
    }
)

SESSION_LOST_ERRORS = frozenset(
    {
        BrowserErrorType.SESSION_CLOSED,
        BrowserErrorType.TARGET_CLOSED,
        BrowserErrorType.FRAME_DETACHED,
    }
)

# Order matters: the first matching substring wins.
_ERROR_MARKERS: tuple[tuple[tuple[str, ...], BrowserErrorType], ...] = (
    (("navigating frame was detached",), BrowserErrorType.FRAME_DETACHED),
    (("session closed",), BrowserErrorType.SESSION_CLOSED),
    (("target closed",), BrowserErrorType.TARGET_CLOSED),
    (("protocol error",), BrowserErrorType.PROTOCOL_ERROR),
    (("timeout", "timed out"), BrowserErrorType.NAVIGATION_TIMEOUT),
    (("element not found", "no node found"), BrowserErrorType.ELEMENT_NOT_FOUND),
)


def categorize_error(exc: BaseException | str) -> BrowserErrorType:
    if isinstance(exc, OperationTimeoutError):
        return BrowserErrorType.NAVIGATION_TIMEOUT
    message = str(exc).lower()
    for markers, kind in _ERROR_MARKERS:
        if any(marker in message for marker in markers):
            return kind
    return BrowserErrorType.UNKNOWN
