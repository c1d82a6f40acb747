#!/usr/bin/env python3
"""Run the gated browser MCP server over stdio (install the package first: pip install -e .)."""

import os
import sys

from mcp_servers.gated_browser.main import main

if __name__ == "__main__":
    print(
        f"[mcp] binary={os.environ.get('MCP_BROWSER_BINARY', 'auto')} | "
        f"profile={os.environ.get('MCP_BROWSER_PROFILE', '~/.cache/gated-browser/profile')} | "
        f"port={os.environ.get('MCP_BROWSER_PORT', '9222')} | "
        f"mode={os.environ.get('MCP_BROWSER_MODE', 'launch')} | "
        f"allowlist={os.environ.get('MCP_ALLOW_HOSTS', '*')}",
        file=sys.stderr,
    )
    main()
