"""
Reliability layer around browser calls.

Provides:
- CircuitBreaker: closed/open/half-open failure isolation
- RetryContext: explicit nesting counter threaded through retrying calls
- with_browser_retry: bounded retries with exponential backoff for recoverable CDP errors
- deadline: per-call watchdog that aborts the CDP socket when a call hangs
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TypeVar, cast

from .errors import (
    RECOVERABLE_ERRORS,
    SESSION_LOST_ERRORS,
    BrowserErrorType,
    CircuitOpenError,
    OperationTimeoutError,
    RetryDepthExceeded,
    SmartToolError,
    categorize_error,
)

logger = logging.getLogger("mcp.gated_browser.reliability")

T = TypeVar("T")


class CircuitBreaker:
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"

    def __init__(
        self, threshold: int = 5, cooldown_s: float = 30.0, *, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.threshold = max(1, int(threshold))
        self.cooldown_s = float(cooldown_s)
        self._clock = clock
        self._lock = threading.Lock()
        self.state = self.CLOSED
        self.failure_count = 0
        self.last_failure_time = 0.0

    def is_open(self) -> bool:
        """True while operations must be rejected; moves open -> half-open after the cooldown."""
        with self._lock:
            if self.state != self.OPEN:
                return False
            if self._clock() - self.last_failure_time > self.cooldown_s:
                self.state = self.HALF_OPEN
                logger.info("circuit_breaker half-open after cooldown=%ss", self.cooldown_s)
                return False
            return True

    def record_success(self) -> None:
        with self._lock:
            self.failure_count = 0
            self.state = self.CLOSED

    def record_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()
            if self.failure_count >= self.threshold and self.state != self.OPEN:
                self.state = self.OPEN
                logger.warning("circuit_breaker opened after %s failures", self.failure_count)
            elif self.state == self.HALF_OPEN:
                # A failed probe re-opens immediately.
                self.state = self.OPEN

    def snapshot(self) -> dict[str, object]:
        return {"state": self.state, "failureCount": self.failure_count, "threshold": self.threshold}


@dataclass(frozen=True)
class RetryContext:
    depth: int = 0
    max_depth: int = 3

    def child(self) -> RetryContext:
        if self.depth >= self.max_depth:
            raise RetryDepthExceeded(self.max_depth)
        return RetryContext(self.depth + 1, self.max_depth)


def with_browser_retry(
    operation: Callable[[RetryContext], T],
    *,
    breaker: CircuitBreaker,
    retry_ctx: RetryContext,
    max_retries: int = 3,
    delay: float = 1.0,
    context: str = "unknown",
    on_session_lost: Callable[[], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run a browser operation with retries on recoverable errors.

    The operation receives the nested RetryContext so inner retrying calls keep
    counting depth instead of starting over.
    """
    nested = retry_ctx.child()
    if breaker.is_open():
        raise CircuitOpenError(breaker.cooldown_s)

    attempts = max(1, int(max_retries))
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            result = operation(nested)
        except (CircuitOpenError, RetryDepthExceeded, SmartToolError):
            raise
        except Exception as exc:  # noqa: BLE001
            last_error = exc
            kind = categorize_error(exc)
            logger.info("retry attempt=%s/%s context=%s kind=%s error=%s", attempt, attempts, context, kind.value, exc)

            if kind == BrowserErrorType.ELEMENT_NOT_FOUND:
                raise SmartToolError(
                    tool=context,
                    action="locate",
                    reason=f"Element not found: {exc}",
                    suggestion="Use 'get_content' to re-analyze the page, then 'find_selector' for a fresh selector",
                ) from exc
            if kind in SESSION_LOST_ERRORS and on_session_lost is not None:
                try:
                    on_session_lost()
                except Exception as cleanup_exc:  # noqa: BLE001
                    logger.warning("session_cleanup_failed context=%s error=%s", context, cleanup_exc)
            if kind not in RECOVERABLE_ERRORS or attempt == attempts:
                break
            sleep(delay * (2 ** (attempt - 1)))
        else:
            breaker.record_success()
            return result

    breaker.record_failure()
    raise cast(Exception, last_error)


class Watchdog:
    """Thread-based per-call watchdog (no SIGALRM, handlers may run off the main thread)."""

    def __init__(self, timeout_s: float, on_fire: Callable[[], None]) -> None:
        self.timeout_s = float(timeout_s)
        self.fired = threading.Event()
        self._on_fire = on_fire
        self._timer: threading.Timer | None = None

    def start(self) -> None:
        if self.timeout_s <= 0:
            return

        def _fire() -> None:
            self.fired.set()
            try:
                self._on_fire()
            except Exception:  # noqa: BLE001
                logger.debug("watchdog_abort_failed", exc_info=True)

        timer = threading.Timer(self.timeout_s, _fire)
        timer.daemon = True
        timer.start()
        self._timer = timer

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


@contextmanager
def deadline(timeout_s: float, context: str, abort: Callable[[], None]) -> Generator[Watchdog, None, None]:
    """Abandon a blocking call after timeout_s.

    When the watchdog fires it calls ``abort`` (typically a raw socket shutdown),
    which makes the blocked CDP call fail; that failure is reported as an
    OperationTimeoutError. Never retries by itself.
    """
    watchdog = Watchdog(timeout_s, abort)
    watchdog.start()
    try:
        yield watchdog
    except OperationTimeoutError:
        raise
    except Exception as exc:
        if watchdog.fired.is_set():
            logger.warning("timeout context=%s after=%ss", context, timeout_s)
            raise OperationTimeoutError(timeout_s, context) from exc
        raise
    finally:
        watchdog.stop()
    if watchdog.fired.is_set():
        logger.warning("timeout context=%s after=%ss", context, timeout_s)
        raise OperationTimeoutError(timeout_s, context)
