from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from deep_extract.research_core.render.solvers import (
    CaptchaSolveError,
    SolveResult,
    build_anticaptcha_task,
    build_capsolver_task,
    parse_2captcha_ready,
    parse_task_solution,
    solve_captcha,
    solve_with_2captcha,
)
from deep_extract.tools.http_utils import HttpResult

SOLVERS = "deep_extract.research_core.render.solvers"


def _ok(payload) -> HttpResult:
    return HttpResult(ok=True, status=200, payload=payload)


def test_parse_2captcha_ready_variants():
    assert parse_2captcha_ready({"status": 0, "request": "CAPCHA_NOT_READY"}) is None
    assert parse_2captcha_ready({"status": 1, "request": "tok", "useragent": "UA"}) == SolveResult("tok", "UA")
    assert parse_2captcha_ready({"status": 1, "request": {"token": "t2", "userAgent": "UA2"}}) == SolveResult("t2", "UA2")
    assert parse_2captcha_ready({"status": 1, "request": "  "}) is None


def test_parse_task_solution_variants():
    assert parse_task_solution({"status": "processing"}) is None
    assert parse_task_solution({"status": "ready", "solution": {"gRecaptchaResponse": "g"}}) == SolveResult("g", None)
    assert parse_task_solution(
        {"status": "ready", "solution": {"token": "t"}, "userAgent": "UA"}
    ) == SolveResult("t", "UA")


def test_anticaptcha_turnstile_task_carries_challenge_fields():
    task = build_anticaptcha_task(
        site_key="0x4",
        page_url="https://acme.cz/login",
        captcha_type="turnstile",
        action="login",
        c_data="cd",
        chl_page_data="pd",
    )
    assert task == {
        "type": "TurnstileTaskProxyless",
        "websiteURL": "https://acme.cz/login",
        "websiteKey": "0x4",
        "action": "login",
        "cData": "cd",
        "chlPageData": "pd",
    }


def test_anticaptcha_defaults_to_recaptcha():
    task = build_anticaptcha_task(site_key="6L", page_url="https://acme.cz/", captcha_type="unknown")
    assert task["type"] == "RecaptchaV2TaskProxyless"


def test_capsolver_turnstile_uses_metadata_and_warns_on_page_data():
    warnings: list[str] = []
    task = build_capsolver_task(
        site_key="0x4",
        page_url="https://acme.cz/login",
        captcha_type="turnstile",
        action="login",
        c_data="cd",
        chl_page_data="pd",
        warnings=warnings,
    )
    assert task["type"] == "AntiTurnstileTaskProxyLess"
    assert task["metadata"] == {"action": "login", "cdata": "cd"}
    assert "chlPageData" not in task
    assert warnings == ["Capsolver turnstile solver does not accept chlPageData; value was ignored"]


@pytest.mark.asyncio
async def test_2captcha_turnstile_submit_and_poll():
    fetch = AsyncMock(
        side_effect=[
            _ok({"status": 1, "request": "req-1"}),
            _ok({"status": 0, "request": "CAPCHA_NOT_READY"}),
            _ok({"status": 1, "request": "token-xyz", "useragent": "Solver UA"}),
        ]
    )
    with patch(f"{SOLVERS}.fetch_json", fetch):
        result = await solve_captcha(
            provider="2captcha",
            api_key="key",
            site_key="0x4",
            page_url="https://acme.cz/login",
            captcha_type="turnstile",
            poll_interval_ms=0,
            action="login",
            c_data="cd",
            chl_page_data="pd",
        )

    assert result == SolveResult(token="token-xyz", user_agent="Solver UA")
    submit_params = fetch.await_args_list[0].kwargs["params"]
    assert submit_params["method"] == "turnstile"
    assert submit_params["sitekey"] == "0x4"
    assert submit_params["action"] == "login"
    assert submit_params["data"] == "cd"
    assert submit_params["pagedata"] == "pd"
    poll_params = fetch.await_args_list[1].kwargs["params"]
    assert poll_params["id"] == "req-1"


@pytest.mark.asyncio
async def test_2captcha_submit_rejected():
    fetch = AsyncMock(return_value=_ok({"status": 0, "request": "ERROR_WRONG_USER_KEY"}))
    with patch(f"{SOLVERS}.fetch_json", fetch):
        with pytest.raises(CaptchaSolveError, match="submit failed"):
            await solve_captcha(provider="2captcha", api_key="k", site_key="s", page_url="https://a.cz/", poll_interval_ms=0)


@pytest.mark.asyncio
async def test_2captcha_poll_error_is_raised():
    fetch = AsyncMock(
        side_effect=[_ok({"status": 1, "request": "req-1"}), _ok({"status": 0, "request": "ERROR_CAPTCHA_UNSOLVABLE"})]
    )
    with patch(f"{SOLVERS}.fetch_json", fetch):
        with pytest.raises(CaptchaSolveError, match="ERROR_CAPTCHA_UNSOLVABLE"):
            await solve_captcha(provider="2captcha", api_key="k", site_key="s", page_url="https://a.cz/", poll_interval_ms=0)


@pytest.mark.asyncio
async def test_2captcha_timeout():
    fetch = AsyncMock(return_value=_ok({"status": 1, "request": "req-1"}))
    with patch(f"{SOLVERS}.fetch_json", fetch):
        with pytest.raises(CaptchaSolveError, match="timeout"):
            await solve_with_2captcha(api_key="k", site_key="s", page_url="https://a.cz/", timeout_ms=0)


@pytest.mark.asyncio
async def test_anticaptcha_create_and_poll():
    post = AsyncMock(
        side_effect=[
            _ok({"errorId": 0, "taskId": 77}),
            _ok({"errorId": 0, "status": "processing"}),
            _ok({"errorId": 0, "status": "ready", "solution": {"gRecaptchaResponse": "g-token"}}),
        ]
    )
    with patch(f"{SOLVERS}.post_json", post):
        result = await solve_captcha(
            provider="anticaptcha",
            api_key="key",
            site_key="6L",
            page_url="https://acme.cz/",
            poll_interval_ms=0,
        )

    assert result.token == "g-token"
    create_url, create_body = post.await_args_list[0].args
    assert create_url.endswith("/createTask")
    assert create_body["clientKey"] == "key"
    assert create_body["task"]["type"] == "RecaptchaV2TaskProxyless"
    assert post.await_args_list[1].args[1] == {"clientKey": "key", "taskId": 77}


@pytest.mark.asyncio
async def test_capsolver_create_failure():
    post = AsyncMock(return_value=_ok({"errorId": 1, "errorDescription": "ERROR_KEY_DENIED_ACCESS"}))
    with patch(f"{SOLVERS}.post_json", post):
        with pytest.raises(CaptchaSolveError, match="capsolver createTask failed: ERROR_KEY_DENIED_ACCESS"):
            await solve_captcha(provider="capsolver", api_key="k", site_key="s", page_url="https://a.cz/", poll_interval_ms=0)


@pytest.mark.asyncio
async def test_capsolver_poll_error():
    post = AsyncMock(
        side_effect=[_ok({"errorId": 0, "taskId": "t"}), _ok({"errorId": 12, "errorDescription": "ERROR_CAPTCHA_UNSOLVABLE"})]
    )
    with patch(f"{SOLVERS}.post_json", post):
        with pytest.raises(CaptchaSolveError, match="getTaskResult failed"):
            await solve_captcha(provider="capsolver", api_key="k", site_key="s", page_url="https://a.cz/", poll_interval_ms=0)


@pytest.mark.asyncio
async def test_missing_arguments_return_none():
    assert await solve_captcha(provider="2captcha", api_key=None, site_key="s", page_url="https://a.cz/") is None
    assert await solve_captcha(provider="2captcha", api_key="k", site_key=None, page_url="https://a.cz/") is None
    assert await solve_captcha(provider=None, api_key="k", site_key="s", page_url="https://a.cz/") is None


@pytest.mark.asyncio
async def test_custom_and_unknown_providers():
    with pytest.raises(NotImplementedError):
        await solve_captcha(provider="custom", api_key="k", site_key="s", page_url="https://a.cz/")
    with pytest.raises(ValueError, match="Unsupported captcha provider"):
        await solve_captcha(provider="deathbycaptcha", api_key="k", site_key="s", page_url="https://a.cz/")
