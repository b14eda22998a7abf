"""CAPTCHA detection and in-page token plumbing.

Detection is a static scan of page HTML. Turnstile widgets often receive
their sitekey, action and challenge data only through ``turnstile.render``,
so an init script wraps that call and records the parameters (and the
callback) in ``window.__deepExtractTurnstileState`` before page scripts run.
"""
from __future__ import annotations

import re
from typing import Any

from loguru import logger

from deep_extract.models.interfaces import CaptchaChallengeState
from deep_extract.tools.web_utils import first_string

CAPTCHA_MARKERS = (
    "g-recaptcha",
    "hcaptcha",
    "recaptcha",
    "cf-turnstile",
    "turnstile",
    "cf-challenge",
    "captcha",
)

TOKEN_FIELD_SELECTORS = (
    'textarea[name="g-recaptcha-response"]',
    'textarea[name="h-captcha-response"]',
    'input[name="g-recaptcha-response"]',
    'input[name="h-captcha-response"]',
    'textarea[name="cf-turnstile-response"]',
    'input[name="cf-turnstile-response"]',
)

TURNSTILE_HOOK_SCRIPT = """
(() => {
  const stateKey = '__deepExtractTurnstileState';
  const instanceKey = '__deepExtractTurnstileInstance';
  const installedKey = '__deepExtractTurnstileSetterInstalled';

  const ensureState = () => {
    if (!window[stateKey] || typeof window[stateKey] !== 'object') {
      window[stateKey] = { callbacks: [], captures: [], latest: null };
    }
    if (!Array.isArray(window[stateKey].callbacks)) window[stateKey].callbacks = [];
    if (!Array.isArray(window[stateKey].captures)) window[stateKey].captures = [];
    return window[stateKey];
  };

  const pick = (...values) => values.find((v) => typeof v === 'string') || null;

  const captureRenderParams = (params) => {
    const state = ensureState();
    const p = params && typeof params === 'object' ? params : {};
    const entry = {
      siteKey: pick(p.sitekey),
      action: pick(p.action),
      cData: pick(p.cData, p.cdata),
      chlPageData: pick(p.chlPageData, p.pagedata),
      callbackIndex: null,
      capturedAt: Date.now()
    };
    if (typeof p.callback === 'function') {
      entry.callbackIndex = state.callbacks.push(p.callback) - 1;
    }
    state.latest = entry;
    state.captures.push(entry);
  };

  const patchInstance = (value) => {
    if (!value || typeof value !== 'object' || typeof value.render !== 'function' || value.__deepExtractPatched) {
      return;
    }
    const originalRender = value.render.bind(value);
    value.render = function patchedRender(container, params) {
      captureRenderParams(params);
      return originalRender(container, params);
    };
    value.__deepExtractPatched = true;
  };

  const existing = window.turnstile;
  if (!window[installedKey]) {
    try {
      Object.defineProperty(window, 'turnstile', {
        configurable: true,
        enumerable: true,
        get() { return window[instanceKey]; },
        set(value) { window[instanceKey] = value; patchInstance(value); }
      });
      window[installedKey] = true;
    } catch (_error) {
      patchInstance(existing);
    }
  }
  if (window[installedKey] && existing) {
    window.turnstile = existing;
  } else if (existing) {
    patchInstance(existing);
  }
  ensureState();
})();
"""

COLLECT_TURNSTILE_SCRIPT = """
() => {
  const state = window.__deepExtractTurnstileState;
  if (!state || typeof state !== 'object') return null;
  const latest = state.latest && typeof state.latest === 'object' ? state.latest : null;
  if (!latest) return null;
  const str = (v) => (typeof v === 'string' ? v : null);
  return {
    siteKey: str(latest.siteKey),
    action: str(latest.action),
    cData: str(latest.cData),
    chlPageData: str(latest.chlPageData),
    callbackIndex: Number.isInteger(latest.callbackIndex) ? latest.callbackIndex : null
  };
}
"""

APPLY_TOKEN_SCRIPT = """
({ token, callbackIndex, selectors }) => {
  const makeEvent = (type) => {
    try { return new Event(type, { bubbles: true }); } catch (_error) { return { type, bubbles: true }; }
  };
  const seen = new Set();
  let applied = false;
  let hasTurnstileField = false;

  for (const selector of selectors) {
    const matches = Array.from(document.querySelectorAll(selector) || []);
    if (selector.includes('cf-turnstile-response') && matches.length) hasTurnstileField = true;
    for (const node of matches) {
      if (!node || seen.has(node)) continue;
      seen.add(node);
      node.value = token;
      node.setAttribute('value', token);
      node.dispatchEvent(makeEvent('input'));
      node.dispatchEvent(makeEvent('change'));
      applied = true;
    }
  }

  if (!hasTurnstileField && document.body) {
    const hidden = document.createElement('input');
    hidden.setAttribute('type', 'hidden');
    hidden.setAttribute('name', 'cf-turnstile-response');
    hidden.setAttribute('value', token);
    hidden.value = token;
    document.body.appendChild(hidden);
    applied = true;
  }

  const state = window.__deepExtractTurnstileState || null;
  let callbackInvoked = false;
  if (Number.isInteger(callbackIndex) && state && Array.isArray(state.callbacks)
      && typeof state.callbacks[callbackIndex] === 'function') {
    try {
      state.callbacks[callbackIndex](token);
      callbackInvoked = true;
    } catch (_error) {
      callbackInvoked = false;
    }
  }
  return { applied, callbackInvoked };
}
"""


def _data_attr(html: str, attr_name: str) -> str | None:
    match = re.search(rf"{re.escape(attr_name)}=[\"']([^\"']+)[\"']", html, re.IGNORECASE)
    return match.group(1) if match else None


def detect_captcha(html: str | None) -> CaptchaChallengeState:
    """Static scan of page HTML for challenge widgets and their data attributes."""
    html = str(html or "")
    low = html.lower()
    detected = any(marker in low for marker in CAPTCHA_MARKERS)

    if "hcaptcha" in low:
        captcha_type = "hcaptcha"
    elif "recaptcha" in low:
        captcha_type = "recaptcha"
    elif "turnstile" in low:
        captcha_type = "turnstile"
    else:
        captcha_type = "unknown"

    return CaptchaChallengeState(
        detected=detected,
        type=captcha_type,
        site_key=_data_attr(html, "data-sitekey"),
        action=_data_attr(html, "data-action"),
        c_data=first_string([_data_attr(html, "data-cdata")]),
        chl_page_data=first_string(
            [
                _data_attr(html, "data-pagedata"),
                _data_attr(html, "data-page-data"),
                _data_attr(html, "data-chl-pagedata"),
                _data_attr(html, "data-chl-page-data"),
            ]
        ),
        callback_index=None,
    )


def merge_captcha_signals(
    static_state: CaptchaChallengeState,
    runtime: dict[str, Any] | None,
) -> CaptchaChallengeState:
    """Overlay live widget parameters on the static scan; live values win."""
    merged = CaptchaChallengeState(
        detected=static_state.detected,
        type=static_state.type,
        site_key=static_state.site_key,
        action=static_state.action,
        c_data=static_state.c_data,
        chl_page_data=static_state.chl_page_data,
        callback_index=None,
    )
    if not isinstance(runtime, dict):
        return merged

    merged.site_key = first_string([runtime.get("siteKey"), merged.site_key])
    merged.action = first_string([runtime.get("action"), merged.action])
    merged.c_data = first_string([runtime.get("cData"), merged.c_data])
    merged.chl_page_data = first_string([runtime.get("chlPageData"), merged.chl_page_data])

    callback_index = runtime.get("callbackIndex")
    if isinstance(callback_index, int) and not isinstance(callback_index, bool):
        merged.callback_index = callback_index
    return merged


async def install_turnstile_hook(page: Any, warnings: list[str]) -> None:
    try:
        await page.add_init_script(script=TURNSTILE_HOOK_SCRIPT)
    except Exception as exc:
        logger.warning(f"Turnstile hook install failed: {exc}")
        warnings.append(f"Turnstile hook install failed: {exc}")


async def collect_turnstile_runtime_data(page: Any) -> dict[str, Any] | None:
    try:
        data = await page.evaluate(COLLECT_TURNSTILE_SCRIPT)
    except Exception as exc:
        logger.debug(f"Turnstile runtime probe failed: {exc}")
        return None
    return data if isinstance(data, dict) else None


async def apply_captcha_token_on_page(page: Any, token: str, callback_index: int | None) -> dict[str, bool]:
    """Write ``token`` into every known response field and fire the captured callback."""
    result = await page.evaluate(
        APPLY_TOKEN_SCRIPT,
        {
            "token": token,
            "callbackIndex": callback_index if isinstance(callback_index, int) else None,
            "selectors": list(TOKEN_FIELD_SELECTORS),
        },
    )
    if not isinstance(result, dict):
        return {"applied": False, "callbackInvoked": False}
    return {
        "applied": bool(result.get("applied")),
        "callbackInvoked": bool(result.get("callbackInvoked")),
    }


async def apply_solver_user_agent(page: Any, user_agent: str | None, warnings: list[str]) -> None:
    if not user_agent:
        return
    try:
        await page.set_extra_http_headers({"user-agent": str(user_agent)})
    except Exception as exc:
        warnings.append(f"Captcha solver returned userAgent, but runtime could not apply it: {exc}")
