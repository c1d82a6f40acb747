"""
Per-session tool context.

One ToolContext owns everything a session's tool calls share: the workflow
gate, token manager, content engine, locator resolver, circuit breaker and the
live page. Calls into the browser go through ``browser_call`` which applies the
per-context deadline and the retry/circuit-breaker policy.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from contextlib import suppress
from typing import TypeVar

from .browser_session import BrowserSession
from .config import BrowserConfig
from .content_strategy import ContentStrategyEngine
from .errors import SmartToolError
from .launcher import BrowserLauncher
from .locators import SelfHealingLocators
from .page import BrowserPage, CdpPage
from .reliability import CircuitBreaker, RetryContext, deadline, with_browser_retry
from .session_cdp import CdpConnection
from .tokens import TokenManager
from .workflow import WorkflowGate

logger = logging.getLogger("mcp.gated_browser.context")

T = TypeVar("T")

PageFactory = Callable[[], BrowserPage]


class ToolContext:
    def __init__(
        self,
        config: BrowserConfig | None = None,
        launcher: BrowserLauncher | None = None,
        *,
        page_factory: PageFactory | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or BrowserConfig.from_env()
        self.launcher = launcher or BrowserLauncher(self.config)
        self.gate = WorkflowGate(self.config.gate)
        self.tokens = TokenManager(self.config.tokens)
        self.content = ContentStrategyEngine(self.tokens, self.gate)
        self.locators = SelfHealingLocators()
        rel = self.config.reliability
        self.breaker = CircuitBreaker(rel.breaker_threshold, rel.breaker_cooldown_s)
        self.lock = threading.Lock()
        self.sleep = sleep
        self.session: BrowserSession | None = None
        self.page: BrowserPage | None = None
        # Injected factories (tests, embedding) bypass the launcher entirely.
        self._page_factory = page_factory

    # Browser lifecycle

    def start_browser(self) -> str:
        """Make sure a browser and a page connection exist; returns a status message."""
        if self._page_alive():
            return "Browser already running"
        if self._page_factory is None:
            result = self.launcher.ensure_running(timeout=self.config.reliability.init_timeout_s)
            if not result.started and not self.launcher.cdp_ready():
                raise SmartToolError(
                    tool="browser_init",
                    action="launch",
                    reason=result.message,
                    suggestion=(
                        "Set MCP_BROWSER_BINARY to a Chrome/Chromium executable, or start Chrome with "
                        "--remote-debugging-port and use MCP_BROWSER_MODE=attach"
                    ),
                    details={"cdpPort": self.config.cdp_port, "command": result.command},
                )
            message = result.message
        else:
            message = "Browser page provided"
        self.connect()
        return message

    def connect(self) -> BrowserPage:
        if self._page_factory is not None:
            self.page = self._page_factory()
            return self.page
        target = self.launcher.open_page()
        conn = CdpConnection(target.ws_url, timeout=self.config.cdp_timeout)
        session = BrowserSession(conn, target.id, target.url)
        session.enable_domains(page=True, runtime=True)
        self.session = session
        self.page = CdpPage(session)
        logger.info("page_connected target=%s url=%s", target.id, target.url)
        return self.page

    def _page_alive(self) -> bool:
        if self.page is None:
            return False
        if self.session is not None:
            return self.session.alive
        return True

    def require_page(self) -> BrowserPage:
        """The live page, reconnecting once when the previous connection was lost."""
        page = self.page
        if page is not None and self._page_alive():
            return page
        self.drop_session()
        try:
            return self.connect()
        except Exception as exc:  # noqa: BLE001
            raise SmartToolError(
                tool="browser",
                action="connect",
                reason=f"Browser session is not available: {exc}",
                suggestion="Call 'browser_init' to start the browser again",
            ) from exc

    def drop_session(self) -> None:
        """Forget the current page connection (the browser process is left alone)."""
        session = self.session
        self.session = None
        self.page = None
        if session is not None:
            with suppress(Exception):
                session.close()

    def abort_session(self) -> None:
        session = self.session
        if session is not None:
            session.conn.abort()

    def close(self) -> None:
        self.drop_session()
        if self._page_factory is None:
            self.launcher.stop()

    # Guarded browser calls

    def browser_call(
        self,
        context: str,
        operation: Callable[[BrowserPage], T],
        *,
        retry_ctx: RetryContext | None = None,
    ) -> T:
        rel = self.config.reliability
        timeout_s = rel.timeout_for(context)

        def attempt(_nested: RetryContext) -> T:
            page = self.require_page()
            with deadline(timeout_s, context, self.abort_session):
                return operation(page)

        return with_browser_retry(
            attempt,
            breaker=self.breaker,
            retry_ctx=retry_ctx or RetryContext(max_depth=rel.max_retry_depth),
            max_retries=rel.max_retries,
            delay=rel.retry_delay_s,
            context=context,
            on_session_lost=self.drop_session,
            sleep=self.sleep,
        )
