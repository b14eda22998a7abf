from __future__ import annotations

from loguru import logger

from deep_extract.models.interfaces import EvidenceSource, ProviderOutcome, append_field_link
from deep_extract.research_core.offsite.base import (
    SERPAPI_CALL_COST_USD,
    ProviderContext,
    competitor_key,
    dedupe_by_key,
    organic_results,
    serpapi_search,
)
from deep_extract.tools.web_utils import host_of, is_own_domain

RESULTS_PER_QUERY = 8
MAX_COMPETITORS = 25


async def run_serp_provider(context: ProviderContext) -> ProviderOutcome:
    """Google organic results via SerpAPI, read as competitor overlap."""
    outcome = ProviderOutcome(findings={"competitors": [], "shareOfVoiceHints": []})
    findings = outcome.findings
    domain = context.domain
    spent = 0.0

    api_key = context.keys.get("serpapi")
    if not api_key:
        outcome.warnings.append("SERP provider skipped: SERPAPI key not configured")
        outcome.skipped = True
        return outcome

    brand = context.brand_name or domain
    for query in (domain, f"{brand} competitors", f"{brand} reviews"):
        if not context.budget.can_spend(SERPAPI_CALL_COST_USD):
            outcome.warnings.append("SERP provider budget limit reached")
            break

        response = await serpapi_search(query, api_key=api_key)
        if not response.ok or not isinstance(response.payload, dict):
            outcome.warnings.append(f"SERP query failed: {query}")
            continue

        spent += SERPAPI_CALL_COST_USD
        context.budget.spend(SERPAPI_CALL_COST_USD)

        organic = organic_results(response.payload)
        for item in organic[:RESULTS_PER_QUERY]:
            link = str(item.get("link") or item.get("redirect_link") or "")
            host = host_of(link)
            if not host or is_own_domain(host, domain):
                continue

            source_id = f"serp:{query}:{host}"
            outcome.evidence.append(
                EvidenceSource(
                    id=source_id,
                    step="offsite.serp",
                    type="serp_result",
                    url=link,
                    title=item.get("title") or host,
                    excerpt=item.get("snippet") or None,
                )
            )
            append_field_link(outcome.field_links, "outside.competitive.competitors", source_id)
            findings["competitors"].append(
                {
                    "name": item.get("title") or host,
                    "domain": host,
                    "reason": f"SERP overlap for query: {query}",
                    "source": link,
                }
            )

        findings["shareOfVoiceHints"].append(f'Query "{query}" produced {len(organic)} organic hits')

    findings["competitors"] = dedupe_by_key(findings["competitors"], competitor_key)[:MAX_COMPETITORS]
    outcome.cost = round(spent, 3)
    logger.debug(f"SERP provider finished for {domain}: {len(findings['competitors'])} competitors")
    return outcome
