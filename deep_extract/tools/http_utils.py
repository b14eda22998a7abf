from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import httpx

from deep_extract.services.env_safety import sanitize_ssl_keylogfile

USER_AGENT = "DeepExtractBot/3.0 (+https://example.local)"


@dataclass(slots=True)
class HttpResult:
    ok: bool
    status: int
    payload: Any = None
    error: str | None = None


async def fetch_json(
    url: str,
    *,
    method: str = "GET",
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    json_body: Any = None,
    timeout_s: float = 10.0,
) -> HttpResult:
    """Issue a request and decode the body as JSON when the server says so.

    Never raises for transport problems or malformed URLs: timeouts come
    back as ``error="timeout"`` and other failures carry the exception text.
    Non-JSON bodies are returned as text in ``payload``.
    """
    sanitize_ssl_keylogfile()
    request_headers = {"User-Agent": USER_AGENT}
    request_headers.update(headers or {})
    try:
        async with httpx.AsyncClient(timeout=timeout_s, follow_redirects=True) as client:
            response = await client.request(
                method,
                url,
                params=params,
                headers=request_headers,
                json=json_body,
            )
            content_type = response.headers.get("content-type", "").lower()
            if "application/json" in content_type:
                payload: Any = response.json()
            else:
                payload = response.text
    except httpx.TimeoutException:
        return HttpResult(ok=False, status=0, error="timeout")
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
        return HttpResult(ok=False, status=0, error=str(exc) or exc.__class__.__name__)

    return HttpResult(
        ok=response.is_success,
        status=int(response.status_code),
        payload=payload,
    )


async def post_json(
    url: str,
    body: Any,
    *,
    headers: dict[str, str] | None = None,
    timeout_s: float = 20.0,
) -> HttpResult:
    return await fetch_json(
        url,
        method="POST",
        headers={"Content-Type": "application/json", **(headers or {})},
        json_body=body if body is not None else {},
        timeout_s=timeout_s,
    )
