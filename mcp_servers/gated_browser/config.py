from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger("mcp.gated_browser.config")

DEFAULT_BINARY_CANDIDATES: list[str] = [
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
    "/usr/local/bin/chromium",
    "/opt/chromium/chromium",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
    "C:\\Program Files\\Chromium\\Application\\chrome.exe",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/opt/google/chrome/chrome",
    "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe",
    "C:\\Program Files (x86)\\Google\\Chrome\\Application\\chrome.exe",
    # Snap builds ignore --user-data-dir; keep them last.
    "/snap/bin/chromium",
]


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("config_invalid name=%s value=%r default=%s", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("config_invalid name=%s value=%r default=%s", name, raw, default)
        return default


@dataclass(frozen=True)
class TokenBudget:
    """Token tiers shared by the chunk engine and the content strategy.

    emergency_limit < safe_limit < max_tokens must hold; content at or under the
    emergency tier passes silently, over the safe tier it is truncated, and over
    the maximum it is rejected.
    """

    max_tokens: int = 25_000
    safe_limit: int = 23_000
    emergency_limit: int = 22_000
    default_chunk_size: int = 20_000
    default_overlap: int = 200
    # Emergency extraction trigger: more than three default chunks even as text.
    very_large_threshold: int = 60_000
    exceeds_limit_report: int = 24_000

    def is_consistent(self) -> bool:
        return (
            0 < self.emergency_limit < self.safe_limit < self.max_tokens
            and 0 < self.default_chunk_size
            and 0 <= self.default_overlap < self.default_chunk_size
        )

    @classmethod
    def from_env(cls) -> TokenBudget:
        base = cls()
        budget = cls(
            max_tokens=_env_int("MCP_TOKEN_MAX", base.max_tokens),
            safe_limit=_env_int("MCP_TOKEN_SAFE_LIMIT", base.safe_limit),
            emergency_limit=_env_int("MCP_TOKEN_EMERGENCY_LIMIT", base.emergency_limit),
            default_chunk_size=_env_int("MCP_TOKEN_CHUNK_SIZE", base.default_chunk_size),
            default_overlap=_env_int("MCP_TOKEN_CHUNK_OVERLAP", base.default_overlap),
            very_large_threshold=_env_int("MCP_TOKEN_VERY_LARGE", base.very_large_threshold),
            exceeds_limit_report=_env_int("MCP_TOKEN_EXCEEDS_REPORT", base.exceeds_limit_report),
        )
        if not budget.is_consistent():
            logger.warning("token_budget_invalid budget=%s; using defaults", budget)
            return base
        return budget


@dataclass(frozen=True)
class GateSettings:
    staleness_window_s: float = 300.0
    tool_history_cap: int = 50
    transition_history_cap: int = 20

    @classmethod
    def from_env(cls) -> GateSettings:
        base = cls()
        return cls(
            staleness_window_s=max(1.0, _env_float("MCP_GATE_STALENESS_SECONDS", base.staleness_window_s)),
            tool_history_cap=max(1, _env_int("MCP_GATE_TOOL_HISTORY", base.tool_history_cap)),
            transition_history_cap=max(1, _env_int("MCP_GATE_TRANSITION_HISTORY", base.transition_history_cap)),
        )


@dataclass(frozen=True)
class ReliabilitySettings:
    max_retries: int = 3
    retry_delay_s: float = 1.0
    max_retry_depth: int = 3
    breaker_threshold: int = 5
    breaker_cooldown_s: float = 30.0
    # Per-context deadlines (seconds).
    init_timeout_s: float = 30.0
    navigate_timeout_s: float = 30.0
    content_timeout_s: float = 20.0
    interaction_timeout_s: float = 10.0

    def timeout_for(self, context: str) -> float:
        return {
            "init": self.init_timeout_s,
            "navigate": self.navigate_timeout_s,
            "content": self.content_timeout_s,
            "interaction": self.interaction_timeout_s,
        }.get(context, self.interaction_timeout_s)

    @classmethod
    def from_env(cls) -> ReliabilitySettings:
        base = cls()
        return cls(
            max_retries=max(1, _env_int("MCP_RELIABILITY_MAX_RETRIES", base.max_retries)),
            retry_delay_s=max(0.0, _env_float("MCP_RELIABILITY_RETRY_DELAY", base.retry_delay_s)),
            max_retry_depth=max(1, _env_int("MCP_RELIABILITY_MAX_DEPTH", base.max_retry_depth)),
            breaker_threshold=max(1, _env_int("MCP_RELIABILITY_BREAKER_THRESHOLD", base.breaker_threshold)),
            breaker_cooldown_s=max(0.0, _env_float("MCP_RELIABILITY_BREAKER_COOLDOWN", base.breaker_cooldown_s)),
            init_timeout_s=max(1.0, _env_float("MCP_TIMEOUT_INIT", base.init_timeout_s)),
            navigate_timeout_s=max(1.0, _env_float("MCP_TIMEOUT_NAVIGATE", base.navigate_timeout_s)),
            content_timeout_s=max(1.0, _env_float("MCP_TIMEOUT_CONTENT", base.content_timeout_s)),
            interaction_timeout_s=max(1.0, _env_float("MCP_TIMEOUT_INTERACTION", base.interaction_timeout_s)),
        )


@dataclass
class BrowserConfig:
    binary_path: str
    profile_path: str
    cdp_port: int = 9222
    mode: str = "launch"
    headless: bool = True
    extra_flags: list[str] = field(default_factory=list)
    allow_hosts: list[str] = field(default_factory=list)
    cdp_timeout: float = 10.0
    tokens: TokenBudget = field(default_factory=TokenBudget)
    gate: GateSettings = field(default_factory=GateSettings)
    reliability: ReliabilitySettings = field(default_factory=ReliabilitySettings)

    @staticmethod
    def normalize_mode(raw: str | None) -> str:
        mode = (raw or "").strip().lower()
        if mode in {"attach", "connect", "external"}:
            return "attach"
        return "launch"

    @classmethod
    def detect_binary(cls) -> str:
        env_path = os.environ.get("MCP_BROWSER_BINARY")
        if env_path:
            return expand_path(env_path)
        for candidate in DEFAULT_BINARY_CANDIDATES:
            path = Path(candidate)
            if path.exists() and os.access(str(path), os.X_OK):
                return str(path)
        # Last resort: rely on PATH lookup
        return "google-chrome"

    @classmethod
    def from_env(cls) -> BrowserConfig:
        mode = cls.normalize_mode(os.environ.get("MCP_BROWSER_MODE"))
        profile = expand_path(os.environ.get("MCP_BROWSER_PROFILE", "~/.cache/gated-browser/profile"))
        flags_raw = os.environ.get("MCP_BROWSER_FLAGS", "")
        extra_flags = [flag.strip() for flag in flags_raw.split(",") if flag.strip()]
        allow_raw = os.environ.get("MCP_ALLOW_HOSTS", "")
        allow_hosts = [host.strip().lower() for host in allow_raw.split(",") if host.strip() and host.strip() != "*"]
        return cls(
            binary_path=cls.detect_binary(),
            profile_path=profile,
            cdp_port=_env_int("MCP_BROWSER_PORT", 9222),
            mode=mode,
            headless=os.environ.get("MCP_HEADLESS", "1") != "0",
            extra_flags=extra_flags,
            allow_hosts=allow_hosts,
            cdp_timeout=max(0.5, _env_float("MCP_CDP_TIMEOUT", 10.0)),
            tokens=TokenBudget.from_env(),
            gate=GateSettings.from_env(),
            reliability=ReliabilitySettings.from_env(),
        )

    def is_host_allowed(self, host: str) -> bool:
        host = (host or "").strip().lower().rstrip(".")
        if not self.allow_hosts:
            return True
        for raw_allowed in self.allow_hosts:
            allowed = (raw_allowed or "").strip().lower().lstrip(".").rstrip(".")
            if not allowed:
                continue
            if host == allowed or host.endswith("." + allowed):
                return True
        return False
