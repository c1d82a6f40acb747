from __future__ import annotations

from mcp_servers.gated_browser.server.redaction import redact_tool_arguments, redact_url


def test_redact_url_keeps_normal_query() -> None:
    url = "https://example.com/search?q=hello&sort=asc"
    assert redact_url(url) == url


def test_redact_url_redacts_sensitive_query_param_but_keeps_others() -> None:
    out = redact_url("https://example.com/?token=abc&q=hello")
    assert "q=hello" in out
    assert "token=abc" not in out
    assert "token=" in out and "redacted" in out


def test_redact_url_redacts_oauth_fragment() -> None:
    out = redact_url("https://example.com/callback#access_token=abc&state=1")
    assert "state=1" in out
    assert "access_token=abc" not in out


def test_redact_url_drops_userinfo() -> None:
    assert redact_url("https://bob:pw@example.com/x") == "https://example.com/x"


def test_typed_text_never_reaches_logs() -> None:
    out = redact_tool_arguments("type", {"selector": "#password", "text": "hunter2"})
    assert out == {"selector": "#password", "text": "<redacted str len=7>"}

    # Same key on another tool is an ordinary search string.
    assert redact_tool_arguments("find_selector", {"text": "Login"}) == {"text": "Login"}


def test_long_and_url_arguments_are_shortened() -> None:
    out = redact_tool_arguments(
        "navigate",
        {"url": "https://example.com/?apikey=k1", "note": "x" * 500, "password": 42},
    )
    assert "k1" not in out["url"]
    assert out["note"].endswith("...<500 chars>")
    assert out["password"] == "<redacted>"
