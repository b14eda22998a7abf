from __future__ import annotations

from bs4 import BeautifulSoup
from loguru import logger

from deep_extract.models.interfaces import EvidenceSource, ProviderOutcome, append_field_link
from deep_extract.research_core.offsite.base import ProviderContext
from deep_extract.tools.http_utils import fetch_json
from deep_extract.tools.web_utils import clean_text

PROFILE_FETCH_COST_USD = 0.02
MAX_PROFILES = 10


def _profile_candidates(base_result: dict) -> list[str]:
    social = (base_result.get("brand") or {}).get("social") or {}
    return [str(url) for url in social.values() if url]


def _page_title(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    if soup.title and soup.title.string:
        return clean_text(soup.title.string)
    return ""


async def run_social_enrichment_provider(context: ProviderContext) -> ProviderOutcome:
    """Fetch the brand's own social profile links and record what they claim to be.

    Each fetch is charged whether or not it succeeds.
    """
    outcome = ProviderOutcome(findings={"socialProfiles": [], "directories": [], "listingSignals": []})
    findings = outcome.findings
    spent = 0.0

    for profile_url in _profile_candidates(context.base_result)[:MAX_PROFILES]:
        findings["socialProfiles"].append(profile_url)

        if not context.budget.can_spend(PROFILE_FETCH_COST_USD):
            outcome.warnings.append("Social enrichment budget limit reached")
            break

        response = await fetch_json(profile_url, timeout_s=12.0)
        context.budget.spend(PROFILE_FETCH_COST_USD)
        spent += PROFILE_FETCH_COST_USD

        if not response.ok:
            logger.debug(f"Social profile fetch failed ({response.status}): {profile_url}")
            outcome.warnings.append(f"Unable to fetch social profile: {profile_url}")
            continue

        html = response.payload if isinstance(response.payload, str) else ""
        title = _page_title(html) or profile_url
        source_id = f"social:{profile_url}"
        outcome.evidence.append(
            EvidenceSource(
                id=source_id,
                step="offsite.social_enrichment",
                type="social_profile",
                url=profile_url,
                title=title,
            )
        )
        append_field_link(outcome.field_links, "outside.presence.socialProfiles", source_id)
        findings["listingSignals"].append(f"Profile discovered: {title}")

    outcome.cost = round(spent, 3)
    return outcome
