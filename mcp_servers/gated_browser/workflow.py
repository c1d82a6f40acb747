"""
Workflow gate: a per-session state machine over tool names.

INITIAL -> BROWSER_READY -> PAGE_LOADED -> CONTENT_ANALYZED -> SELECTOR_AVAILABLE

- browser_init: any state -> BROWSER_READY
- navigate: -> PAGE_LOADED
- get_content: -> CONTENT_ANALYZED
- find_selector: -> SELECTOR_AVAILABLE
- browser_close: any state -> INITIAL

Selectors can only be searched after the page content was analyzed, and
elements can only be interacted with after that, so the agent never guesses
selectors blindly. Only successful calls move the state; every call is
recorded.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from .config import GateSettings
from .errors import WorkflowViolation

logger = logging.getLogger("mcp.gated_browser.workflow")

T = TypeVar("T")


class WorkflowState(str, Enum):
    INITIAL = "INITIAL"
    BROWSER_READY = "BROWSER_READY"
    PAGE_LOADED = "PAGE_LOADED"
    CONTENT_ANALYZED = "CONTENT_ANALYZED"
    SELECTOR_AVAILABLE = "SELECTOR_AVAILABLE"


_ANY = (
    WorkflowState.INITIAL,
    WorkflowState.BROWSER_READY,
    WorkflowState.PAGE_LOADED,
    WorkflowState.CONTENT_ANALYZED,
    WorkflowState.SELECTOR_AVAILABLE,
)
_BROWSER_UP = _ANY[1:]
_PAGE_UP = _ANY[2:]
_ANALYZED = _ANY[3:]

TOOL_PREREQUISITES: dict[str, tuple[WorkflowState, ...]] = {
    "browser_init": _ANY,
    "browser_close": _BROWSER_UP,
    "navigate": _BROWSER_UP,
    "get_content": _PAGE_UP,
    "wait": _PAGE_UP,
    "find_selector": _ANALYZED,
    "click": _ANALYZED,
    "type": _ANALYZED,
}

# Tools that act on a previous analysis and refuse to run on a stale one.
STALENESS_CHECKED = frozenset({"find_selector", "click", "type"})

# (tool, state) -> (reason, suggested next step); reason None keeps the generic text.
_GUIDANCE: dict[tuple[str, WorkflowState], tuple[str | None, str]] = {
    ("find_selector", WorkflowState.INITIAL): (
        "Cannot search for selectors before browser initialization and page navigation.",
        "First: 1) Use 'browser_init' to start browser, 2) Use 'navigate' to load a page, "
        "3) Use 'get_content' to analyze page content, then 'find_selector' will be available.",
    ),
    ("find_selector", WorkflowState.BROWSER_READY): (
        "Cannot search for selectors before page navigation and content analysis.",
        "First: 1) Use 'navigate' to load a page, 2) Use 'get_content' to analyze page content, "
        "then 'find_selector' will be available.",
    ),
    ("find_selector", WorkflowState.PAGE_LOADED): (
        "Cannot search for selectors before analyzing page content. This prevents blind selector guessing.",
        "Use 'get_content' to analyze the page content first. If the page is too large, try 'get_content' "
        "with contentMode='summary' or contentMode='main' for reduced token usage.",
    ),
    ("get_content", WorkflowState.INITIAL): (
        None,
        "Initialize browser and navigate to a page first: 1) Use 'browser_init' to start browser, "
        "2) Use 'navigate' to load a page.",
    ),
    ("get_content", WorkflowState.BROWSER_READY): (None, "Navigate to a page first using 'navigate' tool."),
    ("wait", WorkflowState.INITIAL): (None, "Initialize browser first using 'browser_init', then 'navigate'."),
    ("wait", WorkflowState.BROWSER_READY): (None, "Navigate to a page first using 'navigate' tool."),
    ("navigate", WorkflowState.INITIAL): (None, "Initialize browser first using 'browser_init' tool."),
    ("browser_close", WorkflowState.INITIAL): (None, "The browser is not running; nothing to close."),
}
for _tool in ("click", "type"):
    _GUIDANCE[(_tool, WorkflowState.INITIAL)] = (
        None,
        "Initialize browser and navigate to a page first: 1) browser_init, 2) navigate, "
        "3) get_content to analyze elements.",
    )
    _GUIDANCE[(_tool, WorkflowState.BROWSER_READY)] = (
        None,
        "Navigate to a page and analyze content first: 1) navigate, 2) get_content to analyze elements.",
    )
    _GUIDANCE[(_tool, WorkflowState.PAGE_LOADED)] = (
        None,
        "Use 'get_content' to analyze page elements before interacting with them.",
    )


@dataclass(frozen=True)
class ToolCall:
    tool_name: str
    timestamp: float
    arguments: dict[str, Any]
    success: bool
    error_message: str | None = None


@dataclass(frozen=True)
class StateTransition:
    from_state: WorkflowState
    to_state: WorkflowState
    timestamp: float
    trigger: str


@dataclass(frozen=True)
class ValidationResult:
    admitted: bool
    reason: str | None = None
    suggested_next_step: str | None = None
    required_state: WorkflowState | None = None


ADMITTED = ValidationResult(admitted=True)


@dataclass
class WorkflowContext:
    current_state: WorkflowState = WorkflowState.INITIAL
    page_url: str | None = None
    content_analyzed: bool = False
    content_analysis_attempted: bool = False
    last_content_type: str | None = None
    content_hash: str | None = None
    last_content_error: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    transitions: list[StateTransition] = field(default_factory=list)

    def clear_content(self) -> None:
        self.content_analyzed = False
        self.content_analysis_attempted = False
        self.content_hash = None
        self.last_content_error = None


def content_hash(content_type: str, selector: str | None, timestamp_ms: int) -> str:
    """Non-cryptographic 32-bit fingerprint for change detection."""
    value = 0
    for ch in f"{content_type}-{selector or 'full-page'}-{timestamp_ms}":
        value = ((value << 5) - value + ord(ch)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return format(abs(value), "x")


class WorkflowGate:
    def __init__(self, settings: GateSettings | None = None, *, clock: Callable[[], float] = time.time) -> None:
        self.settings = settings or GateSettings()
        self._clock = clock
        self.context = WorkflowContext()

    @property
    def state(self) -> WorkflowState:
        return self.context.current_state

    def reset(self) -> None:
        self.context = WorkflowContext()

    def validate(self, tool_name: str, args: dict[str, Any] | None = None) -> ValidationResult:
        allowed = TOOL_PREREQUISITES.get(tool_name)
        if allowed is None:
            return ValidationResult(False, reason=f"Unknown tool: {tool_name}")

        state = self.context.current_state
        if state in allowed:
            if tool_name in STALENESS_CHECKED and self.is_content_analysis_stale():
                minutes = self.settings.staleness_window_s / 60
                logger.info("workflow_rejected tool=%s reason=stale_analysis", tool_name)
                return ValidationResult(
                    False,
                    reason=f"Page content analysis is stale (older than {minutes:g} minutes); the page may have changed.",
                    suggested_next_step=f"Use 'get_content' to re-analyze the page, then retry '{tool_name}'.",
                    required_state=WorkflowState.CONTENT_ANALYZED,
                )
            return ADMITTED

        reason, suggestion = _GUIDANCE.get((tool_name, state), (None, ""))
        if reason is None:
            reason = f"Tool '{tool_name}' cannot be executed in current state '{state.value}'."
        logger.info("workflow_rejected tool=%s state=%s", tool_name, state.value)
        return ValidationResult(False, reason=reason, suggested_next_step=suggestion, required_state=allowed[0])

    def record(
        self, tool_name: str, args: dict[str, Any] | None, success: bool, error: str | None = None
    ) -> None:
        if success and tool_name == "browser_close":
            self._reset(tool_name)
        ctx = self.context
        ctx.tool_calls.append(ToolCall(tool_name, self._clock(), dict(args or {}), success, error))

        if success:
            self._advance(tool_name, args or {})
        elif tool_name == "get_content":
            ctx.content_analysis_attempted = True
            ctx.last_content_error = error

        del ctx.tool_calls[: -self.settings.tool_history_cap]
        del ctx.transitions[: -self.settings.transition_history_cap]

    def _advance(self, tool_name: str, args: dict[str, Any]) -> None:
        ctx = self.context
        old = ctx.current_state
        new = old

        if tool_name == "browser_init":
            new = WorkflowState.BROWSER_READY
            ctx.clear_content()
            ctx.page_url = None
        elif tool_name == "navigate":
            new = WorkflowState.PAGE_LOADED
            ctx.page_url = args.get("url")
            ctx.clear_content()
        elif tool_name == "get_content":
            new = WorkflowState.CONTENT_ANALYZED
            ctx.content_analysis_attempted = True
            ctx.content_analyzed = True
            ctx.last_content_type = args.get("type") or "html"
            ctx.content_hash = content_hash(ctx.last_content_type, args.get("selector"), int(self._clock() * 1000))
        elif tool_name == "find_selector":
            new = WorkflowState.SELECTOR_AVAILABLE

        if new != old:
            ctx.transitions.append(StateTransition(old, new, self._clock(), tool_name))
            ctx.current_state = new
            logger.info("workflow_transition %s->%s trigger=%s", old.value, new.value, tool_name)

    def _reset(self, trigger: str) -> None:
        """Closing the browser starts over with an empty context."""
        old = self.context.current_state
        self.context = WorkflowContext()
        if old != WorkflowState.INITIAL:
            self.context.transitions.append(StateTransition(old, WorkflowState.INITIAL, self._clock(), trigger))
            logger.info("workflow_reset %s->%s trigger=%s", old.value, WorkflowState.INITIAL.value, trigger)

    def is_content_analysis_stale(self) -> bool:
        ctx = self.context
        if not ctx.content_analyzed:
            return True
        last = next(
            (call for call in reversed(ctx.tool_calls) if call.tool_name == "get_content" and call.success),
            None,
        )
        if last is None:
            return True
        return self._clock() - last.timestamp > self.settings.staleness_window_s

    def execute(self, tool_name: str, args: dict[str, Any] | None, operation: Callable[[], T]) -> T:
        """Validate, run and record one tool call; rejections raise WorkflowViolation."""
        verdict = self.validate(tool_name, args)
        if not verdict.admitted:
            self.record(tool_name, args, False, verdict.reason)
            raise WorkflowViolation(
                tool_name,
                verdict.reason or "",
                verdict.suggested_next_step or "",
                current_state=self.state.value,
                required_state=verdict.required_state.value if verdict.required_state else None,
                summary=self.validation_summary(),
            )
        try:
            result = operation()
        except Exception as exc:
            self.record(tool_name, args, False, str(exc))
            raise
        self.record(tool_name, args, True)
        return result

    def validation_summary(self) -> str:
        ctx = self.context
        error = ctx.last_content_error
        calls = ", ".join(f"{c.tool_name}({'OK' if c.success else 'FAIL'})" for c in ctx.tool_calls[-5:])
        transitions = ", ".join(f"{t.from_state.value}→{t.to_state.value}" for t in ctx.transitions[-3:])
        return "\n".join(
            [
                "Workflow Validation Summary:",
                f"- Current State: {ctx.current_state.value}",
                f"- Page URL: {ctx.page_url or 'None'}",
                f"- Content Analyzed: {str(ctx.content_analyzed).lower()}",
                f"- Content Analysis Attempted: {str(ctx.content_analysis_attempted).lower()}",
                f"- Content Analysis Stale: {str(self.is_content_analysis_stale()).lower()}",
                f"- Last Content Error: {error[:50] + '...' if error else 'None'}",
                f"- Recent Tool Calls: {calls or 'None'}",
                f"- State Transitions: {transitions or 'None'}",
            ]
        )
