"""Argument coercion shared by tool handlers."""

from __future__ import annotations

from typing import Any

from ...errors import SmartToolError


def require_str(args: dict[str, Any], key: str, tool: str) -> str:
    value = args.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise SmartToolError(
            tool=tool,
            action="validate",
            reason=f"Missing required argument: {key}",
            suggestion=f"Call '{tool}' again with a non-empty '{key}'",
        )
    return str(value)


def optional_int(args: dict[str, Any], key: str, tool: str, default: int) -> int:
    value = args.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise SmartToolError(
            tool=tool,
            action="validate",
            reason=f"Argument '{key}' must be an integer, got {value!r}",
            suggestion=f"Pass '{key}' as a number",
        ) from None
