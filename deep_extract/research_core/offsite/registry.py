"""Off-site provider registry and result merging.

Providers run one at a time in the order the job lists them, all charging
the same ``BudgetGovernor``. Their findings are folded into the five
``outside`` categories, de-duplicated and capped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from loguru import logger

from deep_extract.models.interfaces import EvidenceSource, FieldLinks, ProviderOutcome, merge_field_links
from deep_extract.models.result import empty_outside
from deep_extract.research_core.artifacts.manager import ArtifactManager
from deep_extract.research_core.budget.governor import BudgetGovernor
from deep_extract.research_core.offsite.base import (
    ProviderContext,
    ProviderFn,
    competitor_key,
    dedupe_by_key,
    mention_key,
    person_key,
)
from deep_extract.research_core.offsite.company_data import run_company_data_provider
from deep_extract.research_core.offsite.exa import run_exa_provider
from deep_extract.research_core.offsite.maps_reviews import run_maps_reviews_provider
from deep_extract.research_core.offsite.pr_reputation import run_pr_reputation_provider
from deep_extract.research_core.offsite.serp import run_serp_provider
from deep_extract.research_core.offsite.social_enrichment import run_social_enrichment_provider
from deep_extract.research_core.offsite.tech_intel import run_tech_intel_provider
from deep_extract.services.logger import log_provider_call
from deep_extract.tools.web_utils import unique

PROVIDERS: Mapping[str, ProviderFn] = {
    "exa": run_exa_provider,
    "serp": run_serp_provider,
    "company_data": run_company_data_provider,
    "social_enrichment": run_social_enrichment_provider,
    "maps_reviews": run_maps_reviews_provider,
    "tech_intel": run_tech_intel_provider,
    "pr_reputation": run_pr_reputation_provider,
}

_PR_FIELDS = ("mentions", "keyTopics", "timeline", "risks", "opportunities")

# provider key -> ((category, finding fields), ...)
MERGE_TARGETS: Mapping[str, tuple[tuple[str, tuple[str, ...]], ...]] = {
    "serp": (("competitive", ("competitors", "shareOfVoiceHints")),),
    "exa": (
        ("presence", ("people", "socialProfiles")),
        ("pr", _PR_FIELDS),
        ("competitive", ("competitors", "shareOfVoiceHints")),
    ),
    "company_data": (("company", ("legalNameCandidates", "ownershipSignals", "registryFindings", "evidence")),),
    "social_enrichment": (("presence", ("socialProfiles", "directories", "listingSignals")),),
    "maps_reviews": (("pr", _PR_FIELDS),),
    "pr_reputation": (("pr", _PR_FIELDS),),
    "tech_intel": (("tech", ("cms", "trackers", "cdn", "hosting", "evidence")),),
}

STRING_LIMITS: Mapping[str, Mapping[str, int]] = {
    "company": {"legalNameCandidates": 20, "ownershipSignals": 20, "registryFindings": 40, "evidence": 20},
    "presence": {"socialProfiles": 40, "directories": 30, "listingSignals": 40},
    "pr": {"keyTopics": 20, "timeline": 30, "risks": 20, "opportunities": 20},
    "tech": {"cms": 12, "trackers": 16, "cdn": 12, "hosting": 12, "evidence": 24},
    "competitive": {"shareOfVoiceHints": 20},
}


@dataclass(slots=True)
class OffsiteSummary:
    outside: dict[str, Any] = field(default_factory=empty_outside)
    sources: list[EvidenceSource] = field(default_factory=list)
    field_links: FieldLinks = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    provider_costs: dict[str, float] = field(default_factory=dict)
    total_usd: float = 0.0
    within_budget: bool = True


def _finalize_outside(outside: dict[str, Any]) -> None:
    for category, limits in STRING_LIMITS.items():
        for name, limit in limits.items():
            outside[category][name] = unique(outside[category][name], limit=limit)

    outside["presence"]["people"] = dedupe_by_key(outside["presence"]["people"], person_key)[:30]
    outside["pr"]["mentions"] = dedupe_by_key(outside["pr"]["mentions"], mention_key)[:40]
    outside["competitive"]["competitors"] = dedupe_by_key(
        outside["competitive"]["competitors"], competitor_key
    )[:30]


async def run_offsite_providers(
    *,
    providers: list[str],
    domain: str,
    brand_name: str,
    budget_usd: float,
    locale_hints: list[str] | None = None,
    keys: dict[str, str | None] | None = None,
    base_result: dict[str, Any] | None = None,
    artifacts: ArtifactManager | None = None,
    registry: Mapping[str, ProviderFn] | None = None,
) -> OffsiteSummary:
    """Run the requested providers in order under one shared budget."""
    table = PROVIDERS if registry is None else registry
    budget = BudgetGovernor(budget_usd)
    summary = OffsiteSummary()
    context = ProviderContext(
        domain=domain,
        brand_name=brand_name,
        budget=budget,
        budget_usd=float(budget_usd or 0),
        locale_hints=list(locale_hints or []),
        keys=dict(keys or {}),
        base_result=base_result or {},
        artifacts=artifacts,
    )

    for key in providers or []:
        provider = table.get(key)
        if provider is None:
            logger.warning(f"Unknown provider skipped: {key}")
            summary.warnings.append(f"Unknown provider skipped: {key}")
            continue

        try:
            outcome = await provider(context)
        except Exception as exc:
            logger.warning(f"Provider {key} failed: {exc}")
            outcome = ProviderOutcome(skipped=True, warnings=[f"{key}: provider failed ({exc})"])
        summary.provider_costs[key] = round(outcome.cost or 0, 3)
        summary.warnings.extend(outcome.warnings)
        summary.sources.extend(outcome.evidence)
        merge_field_links(summary.field_links, outcome.field_links)

        for category, names in MERGE_TARGETS.get(key, ()):
            bucket = summary.outside[category]
            for name in names:
                bucket[name].extend(outcome.findings.get(name) or [])

        log_provider_call(
            key,
            "skipped" if outcome.skipped else "completed",
            cost_usd=outcome.cost,
            warnings=outcome.warnings,
            evidence_count=len(outcome.evidence),
        )

    _finalize_outside(summary.outside)
    total = sum(summary.provider_costs.values())
    summary.total_usd = round(total, 3)
    summary.within_budget = total <= float(budget_usd or 0)
    return summary
