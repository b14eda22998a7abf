from __future__ import annotations

import re
from typing import Any

from deep_extract.models.interfaces import EvidenceSource, ProviderOutcome, append_field_link
from deep_extract.research_core.offsite.base import (
    SERPAPI_CALL_COST_USD,
    ProviderContext,
    classify_sentiment,
    organic_results,
    serpapi_search,
    unique_strings,
)

NEGATIVE_TERMS = re.compile(r"scam|problem|lawsuit|fraud|negative|complaint")
POSITIVE_TERMS = re.compile(r"award|best|top|excellent|positive|success")
RISK_TERMS = re.compile(r"complaint|scam|fraud|problem")
OPPORTUNITY_TERMS = re.compile(r"award|growth|partnership|expansion|success")

MAX_ITEMS = 10
MAX_TOPICS = 12
MAX_TIMELINE = 12


def empty_pr_findings() -> dict[str, list]:
    return {"mentions": [], "keyTopics": [], "timeline": [], "risks": [], "opportunities": []}


def collect_mentions(
    outcome: ProviderOutcome,
    items: list[dict[str, Any]],
    *,
    step: str,
    source_type: str,
    source_prefix: str,
) -> None:
    """Turn search hits into PR mentions with keyword sentiment, risks and opportunities."""
    findings = outcome.findings
    for item in items[:MAX_ITEMS]:
        link = str(item.get("link") or item.get("redirect_link") or "").strip()
        if not link:
            continue

        title = str(item.get("title") or link)
        snippet = str(item.get("snippet") or "")
        low = f"{title} {snippet}".lower()

        mention: dict[str, Any] = {
            "title": title,
            "url": link,
            "sentiment": classify_sentiment(low, negative=NEGATIVE_TERMS, positive=POSITIVE_TERMS),
            "snippet": snippet,
        }
        if item.get("date"):
            mention["publishedAt"] = str(item["date"])
        findings["mentions"].append(mention)

        if RISK_TERMS.search(low):
            findings["risks"].append(f"Risk mention: {title}")
        if OPPORTUNITY_TERMS.search(low):
            findings["opportunities"].append(f"Positive mention: {title}")

        source_id = f"{source_prefix}:{link}"
        outcome.evidence.append(
            EvidenceSource(
                id=source_id,
                step=step,
                type=source_type,
                url=link,
                title=title,
                excerpt=snippet or None,
            )
        )
        append_field_link(outcome.field_links, "outside.pr.mentions", source_id)

    findings["keyTopics"] = unique_strings(
        [mention["title"].split("|")[0] for mention in findings["mentions"]], limit=MAX_TOPICS
    )
    findings["timeline"] = unique_strings(
        [mention.get("publishedAt") for mention in findings["mentions"]], limit=MAX_TIMELINE
    )


async def run_maps_reviews_provider(context: ProviderContext) -> ProviderOutcome:
    """Review and reputation hits for ``"<brand> reviews"`` via SerpAPI."""
    outcome = ProviderOutcome(findings=empty_pr_findings())

    api_key = context.keys.get("serpapi")
    if not api_key:
        outcome.warnings.append("Maps/reviews provider skipped: SERPAPI key not configured")
        outcome.skipped = True
        return outcome

    if not context.budget.can_spend(SERPAPI_CALL_COST_USD):
        outcome.warnings.append("Maps/reviews provider budget reached")
        outcome.skipped = True
        return outcome

    response = await serpapi_search(f"{context.brand_name or context.domain} reviews", api_key=api_key)
    if not response.ok or not isinstance(response.payload, dict):
        outcome.warnings.append("Maps/reviews query failed")
        return outcome

    context.budget.spend(SERPAPI_CALL_COST_USD)
    outcome.cost = SERPAPI_CALL_COST_USD

    collect_mentions(
        outcome,
        organic_results(response.payload),
        step="offsite.maps_reviews",
        source_type="review_or_mention",
        source_prefix="review",
    )
    return outcome
