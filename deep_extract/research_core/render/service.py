from __future__ import annotations

import time
from typing import Any

from loguru import logger

from deep_extract.config import settings
from deep_extract.models.interfaces import CaptchaChallengeState, RenderedPage, RenderResult
from deep_extract.models.job import AuthOptions, CaptchaOptions
from deep_extract.research_core.artifacts.manager import ArtifactManager
from deep_extract.research_core.render.auth import apply_auth_if_needed, http_credentials_for
from deep_extract.research_core.render.captcha import (
    apply_captcha_token_on_page,
    apply_solver_user_agent,
    collect_turnstile_runtime_data,
    detect_captcha,
    install_turnstile_hook,
    merge_captcha_signals,
)
from deep_extract.research_core.render.solvers import solve_captcha
from deep_extract.services.secrets import SecretStore, read_secret, to_api_key
from deep_extract.tools.web_utils import slugify_url

POST_SOLVE_SETTLE_MS = 1500


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def _resolve_captcha(
    page: Any,
    *,
    page_url: str,
    html: str,
    state: CaptchaChallengeState,
    captcha: CaptchaOptions,
    secrets: SecretStore | None,
    warnings: list[str],
) -> tuple[str, bool]:
    """Solve and apply a detected challenge. Returns the (possibly refreshed) HTML and solved flag."""
    try:
        secret = read_secret(secrets, captcha.api_key_ref) if captcha.api_key_ref else settings.captcha_api_key
        api_key = to_api_key(secret)
        if not (captcha.provider and api_key and state.site_key):
            warnings.append(f"Captcha detected at {page_url}, but provider/apiKeyRef/sitekey is missing")
            return html, False

        solved = await solve_captcha(
            provider=captcha.provider,
            api_key=api_key,
            site_key=state.site_key,
            page_url=page_url,
            captcha_type=state.type,
            timeout_ms=settings.captcha_solve_timeout_ms,
            action=state.action,
            c_data=state.c_data,
            chl_page_data=state.chl_page_data,
            warnings=warnings,
        )
        if solved is None or not solved.token:
            return html, False

        await apply_solver_user_agent(page, solved.user_agent, warnings)
        applied = await apply_captcha_token_on_page(page, solved.token, state.callback_index)
        if not (applied["applied"] or applied["callbackInvoked"]):
            warnings.append(f"Captcha token was obtained at {page_url}, but could not be applied to the page")
            return html, False

        await page.wait_for_timeout(POST_SOLVE_SETTLE_MS)
        return await page.content(), True
    except Exception as exc:
        logger.warning(f"Captcha solve failed at {page_url}: {exc}")
        warnings.append(f"Captcha solve failed at {page_url}: {exc}")
        return html, False


async def _render_session(
    browser: Any,
    *,
    targets: list[dict[str, Any]],
    auth: AuthOptions | None,
    captcha: CaptchaOptions | None,
    artifacts: ArtifactManager,
    secrets: SecretStore | None,
    warnings: list[str],
    render_budget_ms: int,
    result: RenderResult,
) -> None:
    context_kwargs: dict[str, Any] = {"ignore_https_errors": True}
    credentials = http_credentials_for(auth, secrets)
    if credentials:
        context_kwargs["http_credentials"] = credentials

    context = await browser.new_context(**context_kwargs)
    try:
        page = await context.new_page()
        await install_turnstile_hook(page, warnings)

        def on_response(response: Any) -> None:
            request = response.request
            result.network_summary.append(
                {
                    "url": request.url,
                    "resourceType": request.resource_type,
                    "status": response.status,
                    "from": response.url,
                }
            )

        page.on("response", on_response)

        try:
            await apply_auth_if_needed(
                context=context,
                page=page,
                auth=auth,
                secrets=secrets,
                warnings=warnings,
                artifacts=artifacts,
            )
        except Exception as exc:
            warnings.append(f"Auth ({auth.mode if auth else 'none'}) failed: {exc}")

        started = time.monotonic()
        for item in targets:
            if _elapsed_ms(started) > render_budget_ms:
                warnings.append("Render phase budget reached; remaining pages skipped")
                break

            page_url = str(item.get("url") or "")
            if not page_url:
                continue

            try:
                remaining_ms = max(settings.render_min_page_timeout_ms, render_budget_ms - _elapsed_ms(started))
                await page.goto(
                    page_url,
                    wait_until="networkidle",
                    timeout=min(settings.render_page_timeout_ms, remaining_ms),
                )
                html = await page.content()

                static_state = detect_captcha(html)
                runtime = await collect_turnstile_runtime_data(page) if static_state.type == "turnstile" else None
                state = merge_captcha_signals(static_state, runtime)

                solved = False
                if state.detected and captcha is not None and captcha.enabled:
                    html, solved = await _resolve_captcha(
                        page,
                        page_url=page_url,
                        html=html,
                        state=state,
                        captcha=captcha,
                        secrets=secrets,
                        warnings=warnings,
                    )

                base_name = slugify_url(page_url, max_length=100)
                html_artifact = artifacts.write_text(
                    type="rendered_html",
                    directory="rendered",
                    file_name=f"{base_name}.html",
                    content=html,
                    metadata={"url": page_url, "captchaDetected": state.detected, "captchaSolved": solved},
                )
                screenshot_path = artifacts.path_for("screenshots", f"{base_name}.png")
                await page.screenshot(path=str(screenshot_path), full_page=True)
                screenshot = artifacts.register(
                    type="screenshot",
                    abs_path=screenshot_path,
                    metadata={"url": page_url},
                )

                result.rendered_pages.append(
                    RenderedPage(
                        url=page_url,
                        html_artifact_id=html_artifact.id,
                        screenshot_artifact_id=screenshot.id,
                        captcha_detected=state.detected,
                        captcha_solved=solved,
                    )
                )
                logger.debug(f"Rendered {page_url} (captcha detected={state.detected}, solved={solved})")
            except Exception as exc:
                logger.warning(f"Render failed for {page_url}: {exc}")
                warnings.append(f"Render failed for {page_url}: {exc}")

        artifacts.write_json(
            type="network_log",
            directory="network",
            file_name=f"network-{int(time.time() * 1000)}.json",
            data=result.network_summary[: settings.render_network_log_limit],
        )
    finally:
        await context.close()


async def render_with_browser(
    *,
    pages: list[dict[str, Any]],
    final_url: str | None,
    auth: AuthOptions | None,
    captcha: CaptchaOptions | None,
    artifacts: ArtifactManager,
    secrets: SecretStore | None,
    warnings: list[str],
    max_duration_ms: int | None,
) -> RenderResult:
    """Render crawled pages in headless Chromium.

    Captures rendered HTML, a full-page screenshot and the network log and
    resolves CAPTCHA challenges when enabled. A missing or unlaunchable
    browser skips the whole phase with a warning; a failing page only skips
    that page.
    """
    result = RenderResult()
    try:
        from playwright.async_api import async_playwright
    except ImportError:
        warnings.append("Render phase skipped: playwright dependency is missing")
        return result

    try:
        playwright = await async_playwright().start()
    except Exception as exc:
        warnings.append(f"Render phase skipped: playwright runtime failed to start ({exc})")
        return result

    render_budget_ms = max(20000, int(max_duration_ms or 180000))
    targets = list(pages or [])[: settings.render_max_pages] or [{"url": final_url or ""}]

    try:
        try:
            browser = await playwright.chromium.launch(headless=True)
        except Exception as exc:
            warnings.append(f"Render phase skipped: playwright browser launch failed ({exc})")
            return result

        try:
            await _render_session(
                browser,
                targets=targets,
                auth=auth,
                captcha=captcha,
                artifacts=artifacts,
                secrets=secrets,
                warnings=warnings,
                render_budget_ms=render_budget_ms,
                result=result,
            )
        finally:
            await browser.close()
    finally:
        await playwright.stop()

    logger.info(f"Render phase finished: {len(result.rendered_pages)}/{len(targets)} pages rendered")
    return result
