from __future__ import annotations

from typing import Any
from urllib.parse import quote

from loguru import logger

from deep_extract.models.interfaces import EvidenceSource, ProviderOutcome, append_field_link
from deep_extract.research_core.offsite.base import ProviderContext
from deep_extract.tools.http_utils import fetch_json
from deep_extract.tools.web_utils import unique

RDAP_URL = "https://rdap.org/domain/{domain}"
RDAP_COST_USD = 0.05


def _vcard_names(entity: dict[str, Any]) -> list[str]:
    vcard = entity.get("vcardArray")
    if not isinstance(vcard, list) or len(vcard) < 2 or not isinstance(vcard[1], list):
        return []
    return [
        item[3]
        for item in vcard[1]
        if isinstance(item, list) and len(item) > 3 and item[0] == "fn" and isinstance(item[3], str)
    ]


async def run_company_data_provider(context: ProviderContext) -> ProviderOutcome:
    """Registry facts for the domain from the public RDAP bootstrap service."""
    outcome = ProviderOutcome(
        findings={"legalNameCandidates": [], "ownershipSignals": [], "registryFindings": [], "evidence": []}
    )
    findings = outcome.findings
    domain = context.domain

    if not context.budget.can_spend(RDAP_COST_USD):
        outcome.warnings.append("Company-data budget reached")
        outcome.skipped = True
        return outcome

    rdap_url = RDAP_URL.format(domain=quote(domain, safe=""))
    response = await fetch_json(rdap_url, timeout_s=12.0)
    if not response.ok or not isinstance(response.payload, dict):
        logger.warning(f"RDAP lookup failed for {domain}: {response.error or response.status}")
        outcome.warnings.append(f"RDAP lookup failed for {domain}")
        return outcome

    context.budget.spend(RDAP_COST_USD)
    outcome.cost = RDAP_COST_USD
    payload = response.payload

    names: list[str] = []
    for entity in payload.get("entities") or []:
        if not isinstance(entity, dict):
            continue
        names.extend(_vcard_names(entity))
        roles = entity.get("roles")
        if isinstance(roles, list) and roles:
            findings["ownershipSignals"].append(f"RDAP role: {', '.join(str(role) for role in roles)}")

    findings["legalNameCandidates"] = unique([context.brand_name, *names], limit=12)
    if payload.get("ldhName"):
        findings["registryFindings"].append(f"LDH domain: {payload['ldhName']}")
    if isinstance(payload.get("status"), list):
        findings["registryFindings"].append(f"Domain status: {', '.join(str(s) for s in payload['status'])}")

    source_id = f"rdap:{domain}"
    outcome.evidence.append(
        EvidenceSource(
            id=source_id,
            step="offsite.company_data",
            type="rdap",
            url=rdap_url,
            title=f"RDAP lookup for {domain}",
        )
    )
    findings["evidence"].append(rdap_url)
    for field_path in (
        "outside.company.registryFindings",
        "outside.company.ownershipSignals",
        "outside.company.legalNameCandidates",
    ):
        append_field_link(outcome.field_links, field_path, source_id)
    return outcome
