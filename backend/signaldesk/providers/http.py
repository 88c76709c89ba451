from __future__ import annotations

import json
import socket
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from signaldesk.providers.errors import ProviderDataError, ProviderHTTPError


def build_url(base_url: str, path: str, params: dict[str, str]) -> str:
    return f"{base_url.rstrip('/')}{path}?{urlencode(params)}"


def get_json(
    provider: str,
    url: str,
    headers: dict[str, str] | None = None,
    timeout: float = 10,
) -> Any:
    """Blocking GET returning the decoded JSON body; run it via asyncio.to_thread."""
    request = Request(url, headers={"Accept": "application/json", **(headers or {})})
    try:
        with urlopen(request, timeout=timeout) as response:
            body = response.read().decode("utf-8")
    except HTTPError as exc:
        raise ProviderHTTPError(provider, exc.code) from exc
    except (URLError, TimeoutError, socket.timeout) as exc:
        raise ProviderHTTPError(provider, None, f"unreachable: {exc}") from exc

    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise ProviderDataError(provider, "invalid JSON payload") from exc
