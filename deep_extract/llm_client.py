"""OpenAI-compatible LLM client factory used for research synthesis."""
from __future__ import annotations

import json
import time
from typing import Any

from deep_extract.config import settings
from deep_extract.services.env_safety import sanitize_ssl_keylogfile
from deep_extract.services.logger import log_llm_call


def get_client(api_key: str | None = None, base_url: str | None = None):
    """Get an AsyncOpenAI client for the configured endpoint."""
    from openai import AsyncOpenAI

    sanitize_ssl_keylogfile()
    return AsyncOpenAI(
        api_key=api_key or settings.openai_api_key,
        base_url=(base_url or settings.openai_base_url).strip() or "https://api.openai.com/v1",
    )


def get_model() -> str:
    """Get the active synthesis model id."""
    return settings.synthesis_model or "gpt-4.1-mini"


_client = None


def client():
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client


def extract_json_object(raw_text: str) -> dict[str, Any]:
    text = raw_text.strip()
    if text.startswith("```"):
        parts = text.split("```")
        if len(parts) >= 2:
            text = parts[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise json.JSONDecodeError("object not found", text, 0)
    parsed = json.loads(text[start : end + 1])
    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("not an object", text, 0)
    return parsed


async def complete_json(
    *,
    system: str,
    user: str,
    caller: str,
    llm: Any = None,
    model: str | None = None,
    max_tokens: int | None = None,
) -> dict[str, Any]:
    """Run one chat completion in JSON mode and return the parsed object.

    Transport errors and malformed JSON propagate to the caller.
    """
    llm = llm or client()
    model = model or get_model()
    t0 = time.monotonic()
    try:
        response = await llm.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            max_tokens=max_tokens or settings.synthesis_max_tokens,
            temperature=0,
            response_format={"type": "json_object"},
        )
    except Exception as exc:
        log_llm_call(
            model=model,
            caller=caller,
            duration_ms=int((time.monotonic() - t0) * 1000),
            status="error",
            error=str(exc),
        )
        raise

    usage = getattr(response, "usage", None)
    log_llm_call(
        model=model,
        caller=caller,
        input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
        output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        duration_ms=int((time.monotonic() - t0) * 1000),
    )
    text = response.choices[0].message.content or ""
    return extract_json_object(text)
