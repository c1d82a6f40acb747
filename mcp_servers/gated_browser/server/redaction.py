"""Redaction utilities for logging.

Tool arguments can carry secrets (typed passwords, tokens in URLs); logs only
ever see the redacted form.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_SENSITIVE_KEYS = {
    "secret",
    "password",
    "pass",
    "pwd",
    "token",
    "auth",
    "authorization",
    "cookie",
    "api-key",
    "apikey",
    "api_key",
}

# tool -> argument keys whose values are never logged
_TOOL_SECRET_ARGS: dict[str, frozenset[str]] = {
    "type": frozenset({"text"}),
}

_MAX_LOGGED_STRING = 200


def _redacted_summary(value: Any) -> str:
    if isinstance(value, str):
        return f"<redacted str len={len(value)}>"
    return "<redacted>"


def redact_url(url: str) -> str:
    """Drop userinfo and blank out sensitive query values; other URLs come back unchanged."""
    if not isinstance(url, str) or not url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    changed = False
    netloc = parts.netloc
    if "@" in netloc:
        netloc = netloc.split("@", 1)[1]
        changed = True

    query = _redact_pairs(parts.query)
    # OAuth implicit flows put tokens in the fragment.
    fragment = _redact_pairs(parts.fragment) if "=" in parts.fragment else parts.fragment
    if query != parts.query or fragment != parts.fragment:
        changed = True

    if not changed:
        return url
    return urlunsplit((parts.scheme, netloc, parts.path, query, fragment))


def _is_sensitive_key(key: str) -> bool:
    lk = key.lower()
    return lk in _SENSITIVE_KEYS or lk.endswith("_token") or lk.endswith("-token")


def _redact_pairs(raw: str) -> str:
    if not raw:
        return raw
    pairs = parse_qsl(raw, keep_blank_values=True)
    out = [(k, "<redacted>" if _is_sensitive_key(k) and v else v) for k, v in pairs]
    if out == pairs:
        return raw
    return urlencode(out)


def redact_tool_arguments(tool: str, args: dict[str, Any]) -> dict[str, Any]:
    """Redact tool arguments for safe logging."""
    secret = _TOOL_SECRET_ARGS.get(tool, frozenset())
    out: dict[str, Any] = {}
    for key, value in (args or {}).items():
        lk = str(key).lower()
        if key in secret or lk in _SENSITIVE_KEYS:
            out[key] = _redacted_summary(value)
        elif lk == "url" and isinstance(value, str):
            out[key] = redact_url(value)
        elif isinstance(value, str) and len(value) > _MAX_LOGGED_STRING:
            out[key] = value[:_MAX_LOGGED_STRING] + f"...<{len(value)} chars>"
        else:
            out[key] = value
    return out
