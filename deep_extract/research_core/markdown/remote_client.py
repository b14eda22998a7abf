from __future__ import annotations

import json
import time
from dataclasses import dataclass

import httpx
from loguru import logger

from deep_extract.config import settings
from deep_extract.services.env_safety import sanitize_ssl_keylogfile


@dataclass(slots=True)
class RemoteMarkdown:
    ok: bool
    duration_ms: int
    title: str | None = None
    content: str = ""
    method: str | None = None
    tokens: int | None = None
    error: str | None = None


async def convert_via_markdown_new(
    url: str,
    *,
    method: str = "auto",
    retain_images: bool = False,
    endpoint: str | None = None,
    timeout_s: float | None = None,
) -> RemoteMarkdown:
    """Ask the remote conversion service for a Markdown rendition of ``url``.

    Non-2xx responses, non-JSON bodies, ``success: false`` and transport
    failures all come back as ``ok=False`` with an ``error`` description.
    """
    sanitize_ssl_keylogfile()
    endpoint = endpoint or settings.markdown_remote_endpoint
    timeout_s = timeout_s or settings.markdown_remote_timeout_s
    started = time.monotonic()

    def elapsed_ms() -> int:
        return int((time.monotonic() - started) * 1000)

    try:
        async with httpx.AsyncClient(timeout=timeout_s, follow_redirects=True) as client:
            response = await client.post(
                endpoint,
                json={"url": url, "method": method, "retain_images": bool(retain_images)},
            )
    except httpx.TimeoutException:
        return RemoteMarkdown(ok=False, duration_ms=elapsed_ms(), error="markdown.new timeout")
    except httpx.HTTPError as exc:
        return RemoteMarkdown(ok=False, duration_ms=elapsed_ms(), error=str(exc) or exc.__class__.__name__)

    try:
        payload = json.loads(response.text)
    except json.JSONDecodeError:
        payload = None

    if not response.is_success or not isinstance(payload, dict):
        logger.debug(f"markdown.new rejected {url}: HTTP {response.status_code}")
        return RemoteMarkdown(
            ok=False,
            duration_ms=elapsed_ms(),
            error=f"markdown.new request failed ({response.status_code})",
        )

    if payload.get("success") is not True:
        return RemoteMarkdown(
            ok=False,
            duration_ms=elapsed_ms(),
            error=str(payload.get("error") or "markdown.new conversion failed"),
        )

    try:
        tokens = int(payload.get("tokens") or 0) or None
    except (TypeError, ValueError):
        tokens = None
    try:
        duration_ms = int(payload.get("duration_ms") or elapsed_ms())
    except (TypeError, ValueError):
        duration_ms = elapsed_ms()

    return RemoteMarkdown(
        ok=True,
        duration_ms=duration_ms,
        title=payload.get("title") or None,
        content=str(payload.get("content") or ""),
        method=payload.get("method") or method,
        tokens=tokens,
    )
