"""Pluggable CAPTCHA solver backends.

Every backend follows the same two-step shape: submit a task, then poll on
a fixed interval until a token is ready or the deadline passes. Submission
and polling failures raise ``CaptchaSolveError``; the render phase turns
those into per-page warnings.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

from loguru import logger

from deep_extract.config import settings
from deep_extract.tools.http_utils import fetch_json, post_json
from deep_extract.tools.web_utils import first_string

TWOCAPTCHA_SUBMIT_URL = "https://2captcha.com/in.php"
TWOCAPTCHA_RESULT_URL = "https://2captcha.com/res.php"
ANTICAPTCHA_BASE_URL = "https://api.anti-captcha.com"
CAPSOLVER_BASE_URL = "https://api.capsolver.com"


class CaptchaSolveError(RuntimeError):
    """Raised when a solver rejects a task, fails while polling or times out."""


@dataclass(slots=True)
class SolveResult:
    token: str
    user_agent: str | None = None


def normalize_captcha_type(value: str | None) -> str:
    captcha_type = str(value or "recaptcha").lower()
    if captcha_type in {"hcaptcha", "turnstile"}:
        return captcha_type
    return "recaptcha"


def _as_solve_result(token: Any, user_agent: Any) -> SolveResult | None:
    normalized = first_string([token])
    if not normalized:
        return None
    return SolveResult(token=normalized, user_agent=first_string([user_agent]))


def parse_2captcha_ready(payload: Any) -> SolveResult | None:
    if not isinstance(payload, dict) or payload.get("status") != 1:
        return None
    request = payload.get("request")
    top_level_agent = first_string([payload.get("useragent"), payload.get("userAgent")])
    if isinstance(request, str):
        return _as_solve_result(request, top_level_agent)
    if isinstance(request, dict):
        return _as_solve_result(
            first_string([request.get("token"), request.get("request"), payload.get("token")]),
            first_string([request.get("useragent"), request.get("userAgent"), top_level_agent]),
        )
    return _as_solve_result(payload.get("token"), top_level_agent)


def parse_task_solution(payload: Any) -> SolveResult | None:
    """Result shape shared by anticaptcha and capsolver ``getTaskResult``."""
    if not isinstance(payload, dict) or payload.get("status") != "ready":
        return None
    solution = payload.get("solution")
    if not isinstance(solution, dict):
        return None
    return _as_solve_result(
        first_string([solution.get("gRecaptchaResponse"), solution.get("token"), solution.get("response")]),
        first_string(
            [
                solution.get("userAgent"),
                solution.get("useragent"),
                payload.get("userAgent"),
                payload.get("useragent"),
            ]
        ),
    )


async def solve_with_2captcha(
    *,
    api_key: str,
    site_key: str,
    page_url: str,
    captcha_type: str = "recaptcha",
    timeout_ms: int = 120000,
    poll_interval_ms: int = 4500,
    action: str | None = None,
    c_data: str | None = None,
    chl_page_data: str | None = None,
) -> SolveResult:
    kind = normalize_captcha_type(captcha_type)
    params: dict[str, str] = {
        "key": api_key,
        "method": {"hcaptcha": "hcaptcha", "turnstile": "turnstile"}.get(kind, "userrecaptcha"),
    }
    if kind in {"hcaptcha", "turnstile"}:
        params["sitekey"] = site_key
    else:
        params["googlekey"] = site_key
    if kind == "turnstile":
        if action:
            params["action"] = str(action)
        if c_data:
            params["data"] = str(c_data)
        if chl_page_data:
            params["pagedata"] = str(chl_page_data)
    params["pageurl"] = page_url
    params["json"] = "1"

    submit = await fetch_json(TWOCAPTCHA_SUBMIT_URL, params=params, timeout_s=20.0)
    if not submit.ok or not isinstance(submit.payload, dict) or submit.payload.get("status") != 1:
        raise CaptchaSolveError("2captcha submit failed")

    request_id = str(submit.payload.get("request"))
    deadline = time.monotonic() + timeout_ms / 1000
    while time.monotonic() < deadline:
        await asyncio.sleep(max(0, poll_interval_ms) / 1000)
        poll = await fetch_json(
            TWOCAPTCHA_RESULT_URL,
            params={"key": api_key, "action": "get", "id": request_id, "json": "1"},
            timeout_s=15.0,
        )
        if not poll.ok or not isinstance(poll.payload, dict):
            continue
        ready = parse_2captcha_ready(poll.payload)
        if ready:
            return ready
        if poll.payload.get("request") != "CAPCHA_NOT_READY":
            raise CaptchaSolveError(f"2captcha solve failed: {poll.payload.get('request')}")

    raise CaptchaSolveError("2captcha solve timeout")


async def _run_task_api(
    *,
    vendor: str,
    base_url: str,
    api_key: str,
    task: dict[str, Any],
    timeout_ms: int,
    poll_interval_ms: int,
) -> SolveResult:
    create = await post_json(f"{base_url}/createTask", {"clientKey": api_key, "task": task}, timeout_s=20.0)
    payload = create.payload if isinstance(create.payload, dict) else {}
    if not create.ok or payload.get("errorId") != 0 or not payload.get("taskId"):
        detail = payload.get("errorDescription") or "unknown"
        raise CaptchaSolveError(f"{vendor} createTask failed: {detail}")

    task_id = payload["taskId"]
    deadline = time.monotonic() + timeout_ms / 1000
    while time.monotonic() < deadline:
        await asyncio.sleep(max(0, poll_interval_ms) / 1000)
        poll = await post_json(
            f"{base_url}/getTaskResult",
            {"clientKey": api_key, "taskId": task_id},
            timeout_s=15.0,
        )
        if not poll.ok or not isinstance(poll.payload, dict):
            continue
        if poll.payload.get("errorId"):
            detail = poll.payload.get("errorDescription") or "unknown"
            raise CaptchaSolveError(f"{vendor} getTaskResult failed: {detail}")
        ready = parse_task_solution(poll.payload)
        if ready:
            return ready

    raise CaptchaSolveError(f"{vendor} solve timeout")


def build_anticaptcha_task(
    *,
    site_key: str,
    page_url: str,
    captcha_type: str,
    action: str | None = None,
    c_data: str | None = None,
    chl_page_data: str | None = None,
) -> dict[str, Any]:
    kind = normalize_captcha_type(captcha_type)
    task: dict[str, Any] = {
        "type": {
            "hcaptcha": "HCaptchaTaskProxyless",
            "turnstile": "TurnstileTaskProxyless",
        }.get(kind, "RecaptchaV2TaskProxyless"),
        "websiteURL": page_url,
        "websiteKey": site_key,
    }
    if kind == "turnstile":
        if action:
            task["action"] = str(action)
        if c_data:
            task["cData"] = str(c_data)
        if chl_page_data:
            task["chlPageData"] = str(chl_page_data)
    return task


def build_capsolver_task(
    *,
    site_key: str,
    page_url: str,
    captcha_type: str,
    action: str | None = None,
    c_data: str | None = None,
    chl_page_data: str | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    kind = normalize_captcha_type(captcha_type)
    task: dict[str, Any] = {
        "type": {
            "hcaptcha": "HCaptchaTaskProxyLess",
            "turnstile": "AntiTurnstileTaskProxyLess",
        }.get(kind, "ReCaptchaV2TaskProxyLess"),
        "websiteURL": page_url,
        "websiteKey": site_key,
    }
    if kind == "turnstile":
        metadata: dict[str, str] = {}
        if action:
            metadata["action"] = str(action)
        if c_data:
            metadata["cdata"] = str(c_data)
        if metadata:
            task["metadata"] = metadata
        if chl_page_data and warnings is not None:
            warnings.append("Capsolver turnstile solver does not accept chlPageData; value was ignored")
    return task


async def solve_with_anticaptcha(
    *,
    api_key: str,
    site_key: str,
    page_url: str,
    captcha_type: str = "recaptcha",
    timeout_ms: int = 120000,
    poll_interval_ms: int = 3500,
    action: str | None = None,
    c_data: str | None = None,
    chl_page_data: str | None = None,
) -> SolveResult:
    task = build_anticaptcha_task(
        site_key=site_key,
        page_url=page_url,
        captcha_type=captcha_type,
        action=action,
        c_data=c_data,
        chl_page_data=chl_page_data,
    )
    return await _run_task_api(
        vendor="anticaptcha",
        base_url=ANTICAPTCHA_BASE_URL,
        api_key=api_key,
        task=task,
        timeout_ms=timeout_ms,
        poll_interval_ms=poll_interval_ms,
    )


async def solve_with_capsolver(
    *,
    api_key: str,
    site_key: str,
    page_url: str,
    captcha_type: str = "recaptcha",
    timeout_ms: int = 120000,
    poll_interval_ms: int = 3500,
    action: str | None = None,
    c_data: str | None = None,
    chl_page_data: str | None = None,
    warnings: list[str] | None = None,
) -> SolveResult:
    task = build_capsolver_task(
        site_key=site_key,
        page_url=page_url,
        captcha_type=captcha_type,
        action=action,
        c_data=c_data,
        chl_page_data=chl_page_data,
        warnings=warnings,
    )
    return await _run_task_api(
        vendor="capsolver",
        base_url=CAPSOLVER_BASE_URL,
        api_key=api_key,
        task=task,
        timeout_ms=timeout_ms,
        poll_interval_ms=poll_interval_ms,
    )


async def solve_captcha(
    *,
    provider: str | None,
    api_key: str | None,
    site_key: str | None,
    page_url: str | None,
    captcha_type: str | None = None,
    timeout_ms: int | None = None,
    poll_interval_ms: int | None = None,
    action: str | None = None,
    c_data: str | None = None,
    chl_page_data: str | None = None,
    warnings: list[str] | None = None,
) -> SolveResult | None:
    """Dispatch to the configured solver backend.

    Returns ``None`` when any required argument is missing. Raises
    ``NotImplementedError`` for the ``custom`` provider and ``ValueError``
    for providers this module does not know.
    """
    if not provider or not api_key or not site_key or not page_url:
        return None

    common: dict[str, Any] = {
        "api_key": api_key,
        "site_key": site_key,
        "page_url": page_url,
        "captcha_type": captcha_type or "recaptcha",
        "timeout_ms": timeout_ms or settings.captcha_solve_timeout_ms,
        "action": action,
        "c_data": c_data,
        "chl_page_data": chl_page_data,
    }
    if poll_interval_ms is not None:
        common["poll_interval_ms"] = poll_interval_ms

    logger.info(f"Solving {common['captcha_type']} challenge via {provider} for {page_url}")
    if provider == "2captcha":
        return await solve_with_2captcha(**common)
    if provider == "anticaptcha":
        return await solve_with_anticaptcha(**common)
    if provider == "capsolver":
        return await solve_with_capsolver(**common, warnings=warnings)
    if provider == "custom":
        raise NotImplementedError("Custom captcha provider is not implemented")
    raise ValueError(f"Unsupported captcha provider: {provider}")
