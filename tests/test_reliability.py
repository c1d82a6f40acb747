from __future__ import annotations

import threading

import pytest

from mcp_servers.gated_browser.errors import (
    BrowserErrorType,
    CircuitOpenError,
    OperationTimeoutError,
    RetryDepthExceeded,
    SmartToolError,
    categorize_error,
)
from mcp_servers.gated_browser.reliability import CircuitBreaker, RetryContext, deadline, with_browser_retry


class Clock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _retry(operation, breaker: CircuitBreaker | None = None, **kwargs):
    sleeps: list[float] = []
    result = with_browser_retry(
        operation,
        breaker=breaker or CircuitBreaker(),
        retry_ctx=kwargs.pop("retry_ctx", RetryContext()),
        sleep=sleeps.append,
        **kwargs,
    )
    return result, sleeps


def test_breaker_opens_at_threshold_and_half_opens_after_cooldown() -> None:
    clock = Clock()
    breaker = CircuitBreaker(threshold=2, cooldown_s=30.0, clock=clock)

    breaker.record_failure()
    assert not breaker.is_open()
    breaker.record_failure()
    assert breaker.state == CircuitBreaker.OPEN
    assert breaker.is_open()

    clock.now += 31
    assert not breaker.is_open()
    assert breaker.state == CircuitBreaker.HALF_OPEN

    breaker.record_failure()
    assert breaker.state == CircuitBreaker.OPEN

    clock.now += 31
    breaker.is_open()
    breaker.record_success()
    assert breaker.state == CircuitBreaker.CLOSED
    assert breaker.snapshot() == {"state": "closed", "failureCount": 0, "threshold": 2}


def test_retry_context_counts_depth() -> None:
    ctx = RetryContext(max_depth=2)
    assert ctx.child().child().depth == 2
    with pytest.raises(RetryDepthExceeded) as excinfo:
        ctx.child().child().child()
    assert "Maximum recursion depth (2)" in str(excinfo.value)


def test_recoverable_errors_are_retried_with_backoff() -> None:
    calls: list[int] = []

    def flaky(nested: RetryContext) -> str:
        calls.append(nested.depth)
        if len(calls) < 3:
            raise RuntimeError("Protocol error: Runtime.evaluate")
        return "done"

    breaker = CircuitBreaker()
    result, sleeps = _retry(flaky, breaker, delay=1.0)

    assert result == "done"
    assert calls == [1, 1, 1]
    assert sleeps == [1.0, 2.0]
    assert breaker.failure_count == 0


def test_unrecoverable_error_fails_fast_and_counts() -> None:
    breaker = CircuitBreaker()

    def broken(nested: RetryContext) -> None:
        raise ValueError("something odd")

    with pytest.raises(ValueError):
        _retry(broken, breaker)
    assert breaker.failure_count == 1


def test_exhausted_retries_reraise_last_error() -> None:
    breaker = CircuitBreaker()
    attempts: list[int] = []

    def always_closed(nested: RetryContext) -> None:
        attempts.append(1)
        raise RuntimeError("Target closed")

    lost: list[bool] = []
    with pytest.raises(RuntimeError, match="Target closed"):
        with_browser_retry(
            always_closed,
            breaker=breaker,
            retry_ctx=RetryContext(),
            max_retries=3,
            delay=0.5,
            on_session_lost=lambda: lost.append(True),
            sleep=lambda _s: None,
        )
    assert len(attempts) == 3
    assert lost == [True, True, True]
    assert breaker.failure_count == 1


def test_session_cleanup_failure_does_not_mask_retry() -> None:
    calls: list[int] = []

    def once_lost(nested: RetryContext) -> str:
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("Session closed. Most likely the page has been closed.")
        return "ok"

    def cleanup() -> None:
        raise OSError("socket already gone")

    result, _ = _retry(once_lost, on_session_lost=cleanup)
    assert result == "ok"


def test_element_not_found_becomes_tool_error() -> None:
    def missing(nested: RetryContext) -> None:
        raise RuntimeError("No node found for given backend id")

    with pytest.raises(SmartToolError) as excinfo:
        _retry(missing, context="click")
    err = excinfo.value
    assert err.tool == "click"
    assert err.reason.startswith("Element not found:")
    assert "find_selector" in err.suggestion


def test_open_breaker_rejects_without_running() -> None:
    breaker = CircuitBreaker(threshold=1, cooldown_s=5.0, clock=Clock())
    breaker.record_failure()
    ran: list[bool] = []

    with pytest.raises(CircuitOpenError) as excinfo:
        _retry(lambda nested: ran.append(True), breaker)
    assert ran == []
    assert excinfo.value.cooldown_ms == 5000


def test_nested_retries_share_depth() -> None:
    breaker = CircuitBreaker()

    def recurse(nested: RetryContext) -> None:
        with_browser_retry(recurse, breaker=breaker, retry_ctx=nested, sleep=lambda _s: None)

    with pytest.raises(RetryDepthExceeded):
        with_browser_retry(recurse, breaker=breaker, retry_ctx=RetryContext(max_depth=3), sleep=lambda _s: None)


def test_deadline_converts_aborted_call_to_timeout() -> None:
    released = threading.Event()

    with pytest.raises(OperationTimeoutError) as excinfo:
        with deadline(0.05, "navigate", released.set):
            if not released.wait(5):
                pytest.fail("watchdog never fired")
            raise ConnectionError("socket shut down")
    assert excinfo.value.context == "navigate"
    assert excinfo.value.timeout_ms == 50


def test_deadline_passes_through_fast_calls() -> None:
    aborted: list[bool] = []
    with deadline(5.0, "content", lambda: aborted.append(True)) as watchdog:
        value = 1 + 1
    assert value == 2
    assert not watchdog.fired.is_set()
    assert aborted == []


def test_deadline_does_not_rewrite_ordinary_errors() -> None:
    with pytest.raises(KeyError):
        with deadline(5.0, "content", lambda: None):
            raise KeyError("x")


def test_categorize_error() -> None:
    assert categorize_error("Navigating frame was detached") == BrowserErrorType.FRAME_DETACHED
    assert categorize_error(RuntimeError("Navigation timed out")) == BrowserErrorType.NAVIGATION_TIMEOUT
    assert categorize_error(OperationTimeoutError(1.0, "x")) == BrowserErrorType.NAVIGATION_TIMEOUT
    assert categorize_error("weird") == BrowserErrorType.UNKNOWN
