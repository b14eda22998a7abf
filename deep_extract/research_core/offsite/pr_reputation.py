from __future__ import annotations

from deep_extract.models.interfaces import ProviderOutcome
from deep_extract.research_core.offsite.base import (
    SERPAPI_CALL_COST_USD,
    ProviderContext,
    organic_results,
    serpapi_search,
)
from deep_extract.research_core.offsite.maps_reviews import collect_mentions, empty_pr_findings


async def run_pr_reputation_provider(context: ProviderContext) -> ProviderOutcome:
    """Press coverage for ``"<brand> news"`` from the Google News vertical."""
    outcome = ProviderOutcome(findings=empty_pr_findings())

    api_key = context.keys.get("serpapi")
    if not api_key:
        outcome.warnings.append("PR/reputation provider skipped: SERPAPI key not configured")
        outcome.skipped = True
        return outcome

    if not context.budget.can_spend(SERPAPI_CALL_COST_USD):
        outcome.warnings.append("PR/reputation provider budget reached")
        outcome.skipped = True
        return outcome

    response = await serpapi_search(f"{context.brand_name or context.domain} news", api_key=api_key, tbm="nws")
    if not response.ok or not isinstance(response.payload, dict):
        outcome.warnings.append("PR/reputation query failed")
        return outcome

    context.budget.spend(SERPAPI_CALL_COST_USD)
    outcome.cost = SERPAPI_CALL_COST_USD

    items = organic_results(response.payload, key="news_results") or organic_results(response.payload)
    collect_mentions(
        outcome,
        items,
        step="offsite.pr_reputation",
        source_type="news_mention",
        source_prefix="news",
    )
    return outcome
