from __future__ import annotations

import pytest

from mcp_servers.gated_browser.config import BrowserConfig, GateSettings, ReliabilitySettings, TokenBudget


def test_browser_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MCP_BROWSER_BINARY", "/opt/chrome/chrome")
    monkeypatch.setenv("MCP_BROWSER_MODE", "connect")
    monkeypatch.setenv("MCP_BROWSER_PORT", "9333")
    monkeypatch.setenv("MCP_HEADLESS", "0")
    monkeypatch.setenv("MCP_BROWSER_FLAGS", "--lang=en, --mute-audio,")
    monkeypatch.setenv("MCP_ALLOW_HOSTS", "Example.com, *, .docs.test")

    config = BrowserConfig.from_env()

    assert config.binary_path == "/opt/chrome/chrome"
    assert config.mode == "attach"
    assert config.cdp_port == 9333
    assert config.headless is False
    assert config.extra_flags == ["--lang=en", "--mute-audio"]
    assert config.allow_hosts == ["example.com", ".docs.test"]


def test_host_allowlist() -> None:
    config = BrowserConfig(binary_path="chrome", profile_path="/tmp/p", allow_hosts=["example.com"])
    assert config.is_host_allowed("example.com")
    assert config.is_host_allowed("www.Example.com.")
    assert not config.is_host_allowed("example.com.evil.test")

    assert BrowserConfig(binary_path="chrome", profile_path="/tmp/p").is_host_allowed("anything.test")


def test_invalid_numbers_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MCP_BROWSER_PORT", "not-a-port")
    monkeypatch.setenv("MCP_RELIABILITY_MAX_RETRIES", "0")
    monkeypatch.setenv("MCP_GATE_STALENESS_SECONDS", "120")

    assert BrowserConfig.from_env().cdp_port == 9222
    assert ReliabilitySettings.from_env().max_retries == 1
    assert GateSettings.from_env().staleness_window_s == 120.0


def test_inconsistent_token_budget_uses_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MCP_TOKEN_SAFE_LIMIT", "30000")
    assert TokenBudget.from_env() == TokenBudget()

    monkeypatch.setenv("MCP_TOKEN_SAFE_LIMIT", "23500")
    assert TokenBudget.from_env().safe_limit == 23500


def test_timeout_for_context() -> None:
    settings = ReliabilitySettings()
    assert settings.timeout_for("navigate") == 30.0
    assert settings.timeout_for("content") == 20.0
    assert settings.timeout_for("something-else") == settings.interaction_timeout_s
