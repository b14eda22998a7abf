"""Exa semantic search provider.

Runs three query groups (people, PR/news, competitors) against the Exa
search API, enriches the top results of each group through the contents
endpoint and maps everything onto presence, PR and competitive findings.
Spend is capped at a fixed share of the run budget.
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import quote

from loguru import logger

from deep_extract.config import settings
from deep_extract.models.interfaces import EvidenceSource, ProviderOutcome, append_field_link
from deep_extract.research_core.budget.governor import BudgetGovernor
from deep_extract.research_core.offsite.base import (
    ProviderContext,
    classify_sentiment,
    competitor_key,
    dedupe_by_key,
    mention_key,
    person_key,
    unique_strings,
)
from deep_extract.tools.http_utils import post_json
from deep_extract.tools.web_utils import clean_text, host_of, is_own_domain

EXA_SEARCH_URL = "https://api.exa.ai/search"
EXA_CONTENTS_URL = "https://api.exa.ai/contents"
EXA_BUDGET_SHARE = 0.4
SEARCH_COST_USD = 0.005
CONTENTS_COST_PER_URL_USD = 0.001
CONTENTS_FETCH_LIMIT = 3
SNIPPET_LIMIT = 260

NEGATIVE_TERMS = re.compile(r"scandal|fraud|lawsuit|complaint|problem|negative|penalty|delay")
POSITIVE_TERMS = re.compile(r"award|growth|innovation|success|expansion|positive|top|win|winning")

ROLE_KEYWORDS = ("architect", "founder", "director", "principal", "partner", "owner", "lead")
SOCIAL_HOSTS = ("linkedin.com", "x.com", "twitter.com", "instagram.com", "facebook.com", "tiktok.com", "youtube.com")


class _ExaSpend:
    """Tracks spend against the provider's own cap on top of the run budget."""

    def __init__(self, budget: BudgetGovernor, cap_usd: float):
        self.budget = budget
        self.cap_usd = cap_usd
        self.spent_usd = 0.0

    def can_spend(self, amount: float) -> bool:
        return self.spent_usd + amount <= self.cap_usd and self.budget.can_spend(amount)

    def spend(self, amount: float) -> None:
        self.budget.spend(amount)
        self.spent_usd += amount


def detect_sentiment(text: str) -> str:
    return classify_sentiment(text, negative=NEGATIVE_TERMS, positive=POSITIVE_TERMS)


def normalize_confidence(value: Any, fallback: float = 0.68) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if 0 <= value <= 1:
        return round(float(value), 3)
    if 1 < value <= 100:
        return round(min(1.0, value / 100), 3)
    return fallback


def pick_locale_phrase(locale_hints: list[str] | None) -> str:
    normalized = [str(item or "").lower() for item in locale_hints or []]
    if any(item.startswith("cs") for item in normalized):
        return "Czech Republic"
    if any(item.startswith("sk") for item in normalized):
        return "Slovakia"
    return ""


def _with_locale(query: str, locale_phrase: str) -> str:
    return f"{query} {locale_phrase}".strip() if locale_phrase else query.strip()


def build_people_queries(brand: str, domain: str, locale_phrase: str) -> list[str]:
    return [
        _with_locale(f"{brand} architect founder director studio {domain}", locale_phrase),
        _with_locale(f"{brand} team leadership architects {domain}", locale_phrase),
    ]


def build_pr_queries(brand: str, locale_phrase: str) -> list[str]:
    return [
        _with_locale(f"{brand} interview award project news", locale_phrase),
        _with_locale(f"{brand} architecture studio news", locale_phrase),
    ]


def build_competitor_queries(brand: str, locale_phrase: str) -> list[str]:
    return [
        _with_locale(f"{brand} competitors architecture studio", locale_phrase),
        _with_locale(f"companies similar to {brand} architecture firm", locale_phrase),
    ]


def is_social_host(host: str) -> bool:
    return any(host == social or host.endswith(f".{social}") for social in SOCIAL_HOSTS)


def pick_name(item: dict[str, Any]) -> str:
    author = clean_text(item.get("author"))
    if author:
        return author
    title = clean_text(item.get("title"))
    if not title:
        return ""
    return clean_text(title.split(" - ")[0].split("|")[0].split(",")[0])


def pick_role(item: dict[str, Any]) -> str | None:
    lowered = clean_text(item.get("title")).lower()
    if not lowered:
        return None
    for role in ROLE_KEYWORDS:
        if role in lowered:
            return role.capitalize()
    return None


def resolve_snippet(item: dict[str, Any], content: dict[str, Any] | None) -> str:
    if content:
        text = content.get("text")
        if isinstance(text, str) and text.strip():
            return clean_text(text)[:SNIPPET_LIMIT]
        highlights = content.get("highlights")
        if isinstance(highlights, list) and highlights:
            return clean_text(highlights[0])[:SNIPPET_LIMIT]
    text = item.get("text")
    if isinstance(text, str) and text.strip():
        return clean_text(text)[:SNIPPET_LIMIT]
    return ""


async def _exa_post(api_key: str, url: str, body: dict[str, Any]):
    return await post_json(url, body, headers={"x-api-key": api_key}, timeout_s=15.0)


async def _run_search(
    *,
    api_key: str,
    spend: _ExaSpend,
    warnings: list[str],
    query: str,
    category: str,
    domain: str,
    num_results: int,
) -> list[dict[str, Any]]:
    if not spend.can_spend(SEARCH_COST_USD):
        warnings.append(f"Exa provider budget cap reached before query: {query}")
        return []

    body: dict[str, Any] = {"query": query, "type": "auto", "category": category, "numResults": num_results}
    if category not in ("people", "company"):
        body["excludeDomains"] = [domain, f"www.{domain}"]

    response = await _exa_post(api_key, EXA_SEARCH_URL, body)
    if not response.ok or not isinstance(response.payload, dict):
        warnings.append(f"Exa search failed for query: {query}")
        return []

    spend.spend(SEARCH_COST_USD)
    results = response.payload.get("results")
    return [item for item in results if isinstance(item, dict)] if isinstance(results, list) else []


async def _fetch_contents(
    *,
    api_key: str,
    spend: _ExaSpend,
    warnings: list[str],
    results: list[dict[str, Any]],
) -> dict[str, dict[str, Any]]:
    urls = unique_strings([item.get("url") for item in results], limit=CONTENTS_FETCH_LIMIT)
    if not urls:
        return {}

    cost = round(len(urls) * CONTENTS_COST_PER_URL_USD, 3)
    if not spend.can_spend(cost):
        warnings.append("Exa provider budget cap reached before contents enrichment")
        return {}

    response = await _exa_post(api_key, EXA_CONTENTS_URL, {"urls": urls, "text": True})
    if not response.ok or not isinstance(response.payload, dict):
        warnings.append("Exa contents enrichment failed")
        return {}

    spend.spend(cost)
    items = response.payload.get("results")
    return {
        item["url"]: item
        for item in (items if isinstance(items, list) else [])
        if isinstance(item, dict) and item.get("url")
    }


async def _search_group(
    queries: list[str],
    *,
    api_key: str,
    spend: _ExaSpend,
    warnings: list[str],
    category: str,
    domain: str,
    num_results: int,
) -> tuple[list[dict[str, Any]], dict[str, dict[str, Any]]]:
    results: list[dict[str, Any]] = []
    for query in queries:
        results.extend(
            await _run_search(
                api_key=api_key,
                spend=spend,
                warnings=warnings,
                query=query,
                category=category,
                domain=domain,
                num_results=num_results,
            )
        )
    contents = await _fetch_contents(api_key=api_key, spend=spend, warnings=warnings, results=results)
    return results, contents


async def run_exa_provider(context: ProviderContext) -> ProviderOutcome:
    outcome = ProviderOutcome(
        findings={
            "people": [],
            "socialProfiles": [],
            "mentions": [],
            "keyTopics": [],
            "timeline": [],
            "risks": [],
            "opportunities": [],
            "competitors": [],
            "shareOfVoiceHints": [],
        }
    )
    findings = outcome.findings
    domain = context.domain
    api_key = context.keys.get("exa") or settings.exa_api_key or None

    if not api_key:
        outcome.warnings.append("Exa provider skipped: EXA_API_KEY not configured")
        outcome.skipped = True
        return outcome

    budget = context.budget
    configured = float(context.budget_usd or budget.total_budget_usd or 0)
    cap_usd = max(0.0, min(configured * EXA_BUDGET_SHARE, budget.remaining_usd))
    if cap_usd <= 0:
        outcome.warnings.append("Exa provider budget cap reached")
        outcome.skipped = True
        return outcome

    spend = _ExaSpend(budget, cap_usd)
    brand = clean_text(context.brand_name or domain).rstrip(".") or domain
    locale_phrase = pick_locale_phrase(context.locale_hints)
    people_queries = build_people_queries(brand, domain, locale_phrase)
    pr_queries = build_pr_queries(brand, locale_phrase)
    competitor_queries = build_competitor_queries(brand, locale_phrase)
    common = {"api_key": api_key, "spend": spend, "warnings": outcome.warnings, "domain": domain}

    people_results, people_contents = await _search_group(people_queries, category="people", num_results=8, **common)
    for item in people_results:
        profile_url = clean_text(item.get("url"))
        host = host_of(profile_url)
        name = pick_name(item)
        if not profile_url or not host or not name:
            continue

        source_id = f"exa:people:{quote(profile_url, safe='')}"
        person: dict[str, Any] = {"name": name}
        role = pick_role(item)
        if role:
            person["title"] = role
        person.update(
            organization=brand,
            profileUrl=profile_url,
            sourceDomain=host,
            confidence=normalize_confidence(item.get("score"), 0.68),
        )
        findings["people"].append(person)

        if is_social_host(host):
            findings["socialProfiles"].append(profile_url)
            append_field_link(outcome.field_links, "outside.presence.socialProfiles", source_id)

        snippet = resolve_snippet(item, people_contents.get(profile_url))
        outcome.evidence.append(
            EvidenceSource(
                id=source_id,
                step="offsite.exa.people",
                type="exa_people",
                url=profile_url,
                title=clean_text(item.get("title")) or name,
                excerpt=snippet or None,
            )
        )
        append_field_link(outcome.field_links, "outside.presence.people", source_id)

    pr_results, pr_contents = await _search_group(pr_queries, category="news", num_results=10, **common)
    for item in pr_results:
        url = clean_text(item.get("url"))
        host = host_of(url)
        if not url or not host or is_own_domain(host, domain):
            continue

        title = clean_text(item.get("title")) or host
        snippet = resolve_snippet(item, pr_contents.get(url))
        sentiment = detect_sentiment(f"{title} {snippet}")
        published_at = clean_text(item.get("publishedDate") or item.get("published_date") or item.get("date"))
        source_id = f"exa:pr:{quote(url, safe='')}"

        mention: dict[str, Any] = {"title": title, "url": url, "sentiment": sentiment}
        if snippet:
            mention["snippet"] = snippet
        if published_at:
            mention["publishedAt"] = published_at
            findings["timeline"].append(published_at)
        findings["mentions"].append(mention)
        findings["keyTopics"].append(clean_text(title.split("-")[0].split("|")[0]))

        if sentiment == "negative":
            findings["risks"].append(f"Negative mention: {title}")
        elif sentiment == "positive":
            findings["opportunities"].append(f"Positive mention: {title}")

        outcome.evidence.append(
            EvidenceSource(
                id=source_id,
                step="offsite.exa.pr",
                type="exa_pr_mention",
                url=url,
                title=title,
                excerpt=snippet or None,
            )
        )
        append_field_link(outcome.field_links, "outside.pr.mentions", source_id)

    competitor_results, competitor_contents = await _search_group(
        competitor_queries, category="company", num_results=8, **common
    )
    for item in competitor_results:
        source_url = clean_text(item.get("url"))
        host = host_of(source_url)
        if not source_url or not host or is_own_domain(host, domain):
            continue

        title = clean_text(item.get("title"))
        name = clean_text(title.split(" - ")[0].split("|")[0]) or host
        source_id = f"exa:competitor:{host}"
        snippet = resolve_snippet(item, competitor_contents.get(source_url))

        findings["competitors"].append(
            {
                "name": name,
                "domain": host,
                "reason": f"Exa semantic competitor discovery for {brand}",
                "source": source_url,
            }
        )
        outcome.evidence.append(
            EvidenceSource(
                id=source_id,
                step="offsite.exa.competitive",
                type="exa_competitor",
                url=source_url,
                title=title or host,
                excerpt=snippet or None,
            )
        )
        append_field_link(outcome.field_links, "outside.competitive.competitors", source_id)

    findings["people"] = dedupe_by_key(findings["people"], person_key)[:30]
    findings["socialProfiles"] = unique_strings(findings["socialProfiles"], limit=40)
    findings["mentions"] = dedupe_by_key(findings["mentions"], mention_key)[:30]
    findings["keyTopics"] = unique_strings(findings["keyTopics"], limit=20)
    findings["timeline"] = unique_strings(findings["timeline"], limit=20)
    findings["risks"] = unique_strings(findings["risks"], limit=20)
    findings["opportunities"] = unique_strings(findings["opportunities"], limit=20)
    findings["competitors"] = dedupe_by_key(findings["competitors"], competitor_key)[:30]
    findings["shareOfVoiceHints"] = [
        f"Exa people queries: {len(people_queries)}",
        f"Exa PR queries: {len(pr_queries)}",
        f"Exa competitor queries: {len(competitor_queries)}",
    ]

    outcome.cost = round(spend.spent_usd, 3)
    logger.debug(f"Exa provider finished for {domain}: ${outcome.cost}, {len(outcome.evidence)} sources")
    return outcome
