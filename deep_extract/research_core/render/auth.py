from __future__ import annotations

import asyncio
import time
from typing import Any, Mapping

from loguru import logger

from deep_extract.models.interfaces import utc_now_iso
from deep_extract.models.job import AuthOptions
from deep_extract.research_core.artifacts.manager import ArtifactManager
from deep_extract.services.secrets import SecretStore, read_secret

DEFAULT_USERNAME_SELECTOR = 'input[type="email"], input[name="email"], input[name="username"]'
DEFAULT_PASSWORD_SELECTOR = 'input[type="password"]'
DEFAULT_SUBMIT_SELECTOR = 'button[type="submit"], input[type="submit"]'
LOGIN_TIMEOUT_MS = 30000


def http_credentials_for(auth: AuthOptions | None, secrets: SecretStore | None) -> dict[str, str] | None:
    """Browser-context ``http_credentials`` for ``http_basic`` auth, if resolvable."""
    if auth is None or auth.mode != "http_basic" or not auth.credential_ref:
        return None
    payload = read_secret(secrets, auth.credential_ref)
    if not isinstance(payload, Mapping):
        return None
    username = payload.get("username")
    password = payload.get("password")
    if not username or not password:
        return None
    return {"username": str(username), "password": str(password)}


def _auth_event(artifacts: ArtifactManager, mode: str, data: dict[str, Any]) -> None:
    artifacts.write_json(
        type="auth_event",
        directory="evidence",
        file_name=f"auth-{mode}-{int(time.time() * 1000)}.json",
        data={"mode": mode, "appliedAt": utc_now_iso(), **data},
    )


async def apply_auth_if_needed(
    *,
    context: Any,
    page: Any,
    auth: AuthOptions | None,
    secrets: SecretStore | None,
    warnings: list[str],
    artifacts: ArtifactManager,
) -> None:
    """Apply cookie or form login once, before any page is rendered.

    ``http_basic`` credentials go to the browser context when it is created;
    here they are only checked and recorded. Missing or incomplete credentials
    become warnings.
    """
    if auth is None or auth.mode == "none":
        return

    credentials = read_secret(secrets, auth.credential_ref)
    if not credentials:
        warnings.append("Auth requested but credentialRef is missing in secret store")
        return
    if not isinstance(credentials, Mapping):
        warnings.append(f"{auth.mode} auth selected but secret payload is not an object")
        return

    if auth.mode == "http_basic":
        if http_credentials_for(auth, secrets) is None:
            warnings.append("HTTP basic auth selected but secret has no username/password")
        else:
            _auth_event(artifacts, "http_basic", {"username": str(credentials.get("username"))})
        return

    if auth.mode == "cookie":
        cookies = credentials.get("cookies")
        if isinstance(cookies, list) and cookies:
            await context.add_cookies(cookies)
            _auth_event(artifacts, "cookie", {"cookieCount": len(cookies)})
            logger.info(f"Cookie auth applied ({len(cookies)} cookies)")
        else:
            warnings.append("Cookie auth selected but secret payload has no cookies[]")
        return

    login_url = credentials.get("loginUrl") or credentials.get("url")
    if not login_url:
        warnings.append("Form auth selected but loginUrl is missing")
        return

    await page.goto(str(login_url), wait_until="domcontentloaded", timeout=LOGIN_TIMEOUT_MS)
    if credentials.get("username"):
        await page.fill(
            credentials.get("usernameSelector") or DEFAULT_USERNAME_SELECTOR,
            str(credentials["username"]),
        )
    if credentials.get("password"):
        await page.fill(
            credentials.get("passwordSelector") or DEFAULT_PASSWORD_SELECTOR,
            str(credentials["password"]),
        )

    # Submit and navigation errors are tolerated
    await asyncio.gather(
        page.wait_for_load_state("networkidle"),
        page.click(credentials.get("submitSelector") or DEFAULT_SUBMIT_SELECTOR),
        return_exceptions=True,
    )
    _auth_event(artifacts, "form", {"loginUrl": str(login_url)})
    logger.info(f"Form auth submitted at {login_url}")
