from __future__ import annotations

import contextlib
import logging
import socket
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.error import URLError
from urllib.parse import quote
from urllib.request import urlopen

from .config import BrowserConfig, expand_path
from .http_client import HttpClientError, http_get_json, http_put_json

logger = logging.getLogger("mcp.gated_browser.launcher")


@dataclass
class LaunchResult:
    command: list[str]
    started: bool
    message: str


@dataclass
class PageTarget:
    id: str
    url: str
    ws_url: str


class BrowserLauncher:
    """Starts (or attaches to) a Chrome with remote debugging and hands out page targets."""

    def __init__(self, config: BrowserConfig | None = None) -> None:
        self.config = config or BrowserConfig.from_env()
        self.process: subprocess.Popen | None = None

    @property
    def base_url(self) -> str:
        return f"http://127.0.0.1:{self.config.cdp_port}"

    def cdp_ready(self, timeout: float = 0.4) -> bool:
        """Return True if the CDP HTTP endpoint responds."""
        try:
            with urlopen(f"{self.base_url}/json/version", timeout=timeout) as resp:
                return resp.status == 200
        except (OSError, TimeoutError, URLError):
            return False

    def _port_available(self, timeout: float = 0.2) -> bool:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout)
            try:
                return sock.connect_ex(("127.0.0.1", self.config.cdp_port)) != 0
            except OSError:
                return False

    def _build_flags(self) -> list[str]:
        flags = [
            f"--remote-debugging-port={self.config.cdp_port}",
            f"--user-data-dir={expand_path(self.config.profile_path)}",
            "--remote-allow-origins=*",
            "--no-first-run",
            "--no-default-browser-check",
            "--disable-dev-shm-usage",
        ]
        if self.config.headless:
            flags.append("--headless=new")
        else:
            flags.append("--window-size=1280,900")
        return flags

    def build_launch_command(self) -> list[str]:
        return [self.config.binary_path, *self._build_flags(), *self.config.extra_flags, "about:blank"]

    def ensure_running(self, timeout: float = 10.0) -> LaunchResult:
        if self.config.mode == "attach":
            if self.cdp_ready():
                return LaunchResult([], False, "Attached to existing Chrome on CDP port")
            return LaunchResult(
                [],
                False,
                f"Attach mode: no Chrome listening on CDP port {self.config.cdp_port} "
                "(start Chrome with --remote-debugging-port)",
            )

        if self.cdp_ready():
            return LaunchResult([], False, "Chrome already listening on CDP port")
        if not self._port_available():
            return LaunchResult([], False, f"Port {self.config.cdp_port} already in use")

        with contextlib.suppress(OSError):
            Path(expand_path(self.config.profile_path)).mkdir(parents=True, exist_ok=True)
        cmd = self.build_launch_command()
        try:
            self.process = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as exc:
            return LaunchResult(cmd, False, str(exc))

        deadline = time.time() + timeout
        while time.time() < deadline:
            if self.cdp_ready():
                logger.info("chrome_launched port=%s pid=%s", self.config.cdp_port, self.process.pid)
                return LaunchResult(cmd, True, "Chrome launched")
            time.sleep(0.1)
        return LaunchResult(cmd, False, "Chrome launch timed out")

    def stop(self, *, timeout: float = 2.0) -> bool:
        """Best-effort stop of the launcher-owned Chrome process."""
        proc = self.process
        if proc is None:
            return False
        self.process = None
        if proc.poll() is not None:
            return True
        with contextlib.suppress(OSError):
            proc.terminate()
        try:
            proc.wait(timeout=max(0.1, float(timeout)))
        except subprocess.TimeoutExpired:
            with contextlib.suppress(OSError):
                proc.kill()
        return True

    def list_targets(self) -> list[dict[str, Any]]:
        targets = http_get_json(f"{self.base_url}/json/list", timeout=self.config.cdp_timeout)
        return [t for t in targets if isinstance(t, dict)] if isinstance(targets, list) else []

    def open_page(self) -> PageTarget:
        """Return the first page target, creating a blank tab when none exists."""
        for target in self.list_targets():
            if target.get("type") == "page" and target.get("webSocketDebuggerUrl"):
                return PageTarget(str(target.get("id")), str(target.get("url") or ""), target["webSocketDebuggerUrl"])

        created = http_put_json(f"{self.base_url}/json/new?{quote('about:blank')}", timeout=self.config.cdp_timeout)
        if not isinstance(created, dict) or not created.get("webSocketDebuggerUrl"):
            raise HttpClientError("Could not open a page target (no webSocketDebuggerUrl)")
        return PageTarget(str(created.get("id")), str(created.get("url") or ""), created["webSocketDebuggerUrl"])
