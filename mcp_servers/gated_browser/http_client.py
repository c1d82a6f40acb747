from __future__ import annotations

import json
from typing import Any
from urllib.error import URLError
from urllib.request import Request, urlopen


class HttpClientError(Exception):
    pass


def http_get_json(url: str, timeout: float = 2.0) -> Any:
    """Fetch JSON from a local CDP HTTP endpoint."""
    req = Request(url, headers={"User-Agent": "gated-browser-mcp/0.1"})
    try:
        with urlopen(req, timeout=timeout) as resp:
            return json.loads(resp.read().decode())
    except (TimeoutError, URLError, ValueError) as exc:
        raise HttpClientError(str(exc)) from exc


def http_put_json(url: str, timeout: float = 2.0) -> Any:
    """PUT request (Chrome requires PUT for /json/new)."""
    req = Request(url, method="PUT", headers={"User-Agent": "gated-browser-mcp/0.1"})
    try:
        with urlopen(req, timeout=timeout) as resp:
            return json.loads(resp.read().decode())
    except (TimeoutError, URLError, ValueError) as exc:
        raise HttpClientError(str(exc)) from exc
