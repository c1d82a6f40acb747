"""
MCP server for workflow-gated browser automation via Chrome DevTools Protocol.

This module provides the main entry point and protocol handling.
Tool dispatch is handled via registry pattern in server/registry.py.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any

from .context import ToolContext
from .errors import CircuitOpenError, OperationTimeoutError, RetryDepthExceeded, SmartToolError
from .http_client import HttpClientError
from .server.contract import (
    DEFAULT_PROTOCOL_VERSION,
    LATEST_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    initialize_result,
    select_protocol,
    tools_list,
)
from .server.redaction import redact_tool_arguments
from .server.registry import ToolRegistry, create_default_registry
from .server.types import ToolResult

logger = logging.getLogger("mcp.gated_browser")

__all__ = [
    "SUPPORTED_PROTOCOL_VERSIONS",
    "LATEST_PROTOCOL_VERSION",
    "DEFAULT_PROTOCOL_VERSION",
    "McpServer",
    "main",
]


def _write_message(payload: dict[str, Any]) -> None:
    """Write JSON-RPC message to stdout."""
    data = json.dumps(payload, ensure_ascii=False)
    sys.stdout.buffer.write((data + "\n").encode())
    sys.stdout.buffer.flush()


def _read_message() -> dict[str, Any] | None:
    """Read JSON-RPC message from stdin; None on EOF."""
    while True:
        line = sys.stdin.buffer.readline()
        if not line:
            return None
        line = line.strip()
        if not line:
            continue
        try:
            msg = json.loads(line.decode())
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("invalid_message error=%s", exc)
            _write_message({"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}})
            continue
        if os.environ.get("MCP_TRACE") and isinstance(msg, dict):
            logger.info("recv method=%s id=%s", msg.get("method"), msg.get("id"))
        return msg if isinstance(msg, dict) else {}


class McpServer:
    """MCP Server with registry-based tool dispatch over one session context."""

    def __init__(self, ctx: ToolContext | None = None, registry: ToolRegistry | None = None) -> None:
        self.ctx = ctx or ToolContext()
        self.registry = registry or create_default_registry()

    def handle_initialize(self, request_id: Any, params: dict[str, Any] | None = None) -> None:
        """Handle initialize request."""
        requested = (params or {}).get("protocolVersion") if isinstance(params, dict) else None
        protocol = select_protocol(requested)
        _write_message(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "result": initialize_result(protocol),
            }
        )

    def handle_list_tools(self, request_id: Any) -> None:
        """Handle tools/list request."""
        _write_message(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "result": {"tools": tools_list()},
            }
        )

    def _log_call(self, name: str, arguments: dict[str, Any]) -> None:
        """Log tool call with sanitized arguments."""
        safe_args = redact_tool_arguments(name, arguments)
        logger.info("tool=%s args=%s", name, safe_args)

    def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Run one tool call and convert every failure into an error result."""
        self._log_call(name, arguments)
        try:
            if not name:
                return ToolResult.error("Missing tool name")
            if not self.registry.has(name):
                return ToolResult.error(
                    f"Unknown tool: {name}",
                    tool=name,
                    suggestion=f"Available tools: {', '.join(self.registry.tool_names())}",
                )
            return self.registry.dispatch(name, self.ctx, arguments)
        except SmartToolError as e:
            logger.info("tool_error tool=%s action=%s reason=%s", e.tool, e.action, e.reason)
            return ToolResult.error(e.reason, tool=e.tool, suggestion=e.suggestion, details=e.details)
        except CircuitOpenError as e:
            logger.info("circuit_open tool=%s", name)
            return ToolResult.error(
                str(e),
                tool=name,
                suggestion="Wait for the cooldown, then call 'browser_init' to restore the browser",
                details={"cooldownMs": e.cooldown_ms},
            )
        except OperationTimeoutError as e:
            logger.info("tool_timeout tool=%s context=%s", name, e.context)
            return ToolResult.error(
                str(e),
                tool=name,
                suggestion="The page may be busy; retry, or narrow the request",
                details={"timeoutMs": e.timeout_ms, "context": e.context},
            )
        except RetryDepthExceeded as e:
            logger.info("retry_depth_exceeded tool=%s", name)
            return ToolResult.error(str(e), tool=name, details={"maxDepth": e.max_depth})
        except HttpClientError as e:
            logger.info("http_error %s", str(e))
            return ToolResult.error(str(e), tool=name)
        except Exception as exc:
            logger.exception("tool_call_failed")
            return ToolResult.error(str(exc), tool=name)

    def handle_call_tool(self, request_id: Any, name: str, arguments: dict[str, Any]) -> None:
        """Handle tool call via registry dispatch."""
        result = self.call_tool(name, arguments)
        _write_message(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "result": {"content": result.to_content_list(), "isError": result.is_error},
            }
        )

    def dispatch(self, message: dict[str, Any]) -> None:
        """Dispatch incoming JSON-RPC message to appropriate handler."""
        if not message:
            return

        method = message.get("method")
        request_id = message.get("id")
        params = message.get("params") or {}

        if method == "initialize":
            self.handle_initialize(request_id, params)
        elif method == "notifications/initialized":
            return
        elif method in ("tools/list", "list_tools"):
            self.handle_list_tools(request_id)
        elif method in ("tools/call", "call_tool"):
            name = params.get("name")
            arguments = params.get("arguments") or params.get("args") or {}
            self.handle_call_tool(request_id, name or "", arguments)
        elif method == "ping":
            _write_message({"jsonrpc": "2.0", "id": request_id, "result": {}})
        elif request_id is None:
            # Unknown notification: nothing to answer.
            return
        else:
            _write_message(
                {
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "error": {"code": -32601, "message": f"Method {method} not found"},
                }
            )

    def shutdown(self) -> None:
        try:
            self.ctx.close()
        except Exception as exc:  # noqa: BLE001
            logger.warning("shutdown_failed error=%s", exc)


def main() -> None:
    """Main entry point for MCP server."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    server = McpServer()
    try:
        while True:
            message = _read_message()
            if message is None:
                break
            server.dispatch(message)
    finally:
        server.shutdown()


if __name__ == "__main__":
    main()
