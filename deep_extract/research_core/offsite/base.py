from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from deep_extract.models.interfaces import ProviderOutcome
from deep_extract.research_core.artifacts.manager import ArtifactManager
from deep_extract.research_core.budget.governor import BudgetGovernor
from deep_extract.tools.http_utils import HttpResult, fetch_json
from deep_extract.tools.web_utils import clean_text

SERPAPI_URL = "https://serpapi.com/search.json"
SERPAPI_CALL_COST_USD = 0.25


@dataclass(slots=True)
class ProviderContext:
    """Inputs shared by every off-site provider in one run.

    ``budget`` is the run's single governor; providers check it before each
    paid call and charge it afterwards.
    """

    domain: str
    brand_name: str
    budget: BudgetGovernor
    budget_usd: float = 0.0
    locale_hints: list[str] = field(default_factory=list)
    keys: dict[str, str | None] = field(default_factory=dict)
    base_result: dict[str, Any] = field(default_factory=dict)
    artifacts: ArtifactManager | None = None


ProviderFn = Callable[[ProviderContext], Awaitable[ProviderOutcome]]


def classify_sentiment(text: str, *, negative: re.Pattern[str], positive: re.Pattern[str]) -> str:
    low = clean_text(text).lower()
    if negative.search(low):
        return "negative"
    if positive.search(low):
        return "positive"
    return "neutral"


def dedupe_by_key(items: list[dict[str, Any]], key: Callable[[dict[str, Any]], str]) -> list[dict[str, Any]]:
    """Keep the first item for each non-empty key, preserving order."""
    seen: dict[str, dict[str, Any]] = {}
    for item in items or []:
        if not item:
            continue
        item_key = key(item)
        if not item_key or not item_key.strip():
            continue
        seen.setdefault(item_key, item)
    return list(seen.values())


def person_key(person: dict[str, Any]) -> str:
    profile_url = clean_text(person.get("profileUrl"))
    if profile_url:
        return profile_url
    return f"{clean_text(person.get('name'))}::{clean_text(person.get('organization'))}"


def mention_key(mention: dict[str, Any]) -> str:
    return f"{clean_text(mention.get('url'))}::{clean_text(mention.get('title'))}"


def competitor_key(competitor: dict[str, Any]) -> str:
    return str(competitor.get("domain") or "")


def unique_strings(values: list[Any], *, limit: int | None = None) -> list[str]:
    out: list[str] = []
    for value in values or []:
        text = clean_text(value)
        if text and text not in out:
            out.append(text)
    return out[:limit] if limit is not None else out


async def serpapi_search(query: str, *, api_key: str, **extra: str) -> HttpResult:
    params = {"engine": "google", "q": query, "num": "10", "api_key": api_key, **extra}
    return await fetch_json(SERPAPI_URL, params=params, timeout_s=15.0)


def organic_results(payload: Any, *, key: str = "organic_results") -> list[dict[str, Any]]:
    if not isinstance(payload, dict):
        return []
    items = payload.get(key)
    return [item for item in items if isinstance(item, dict)] if isinstance(items, list) else []
