from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from deep_extract.research_core.artifacts.manager import ArtifactManager
from deep_extract.research_core.budget.governor import BudgetGovernor
from deep_extract.research_core.offsite.base import SERPAPI_URL, ProviderContext, serpapi_search
from deep_extract.research_core.offsite.company_data import run_company_data_provider
from deep_extract.research_core.offsite.maps_reviews import run_maps_reviews_provider
from deep_extract.research_core.offsite.pr_reputation import run_pr_reputation_provider
from deep_extract.research_core.offsite.serp import run_serp_provider
from deep_extract.research_core.offsite.social_enrichment import run_social_enrichment_provider
from deep_extract.research_core.offsite.tech_intel import detect_hosting, run_tech_intel_provider
from deep_extract.tools.http_utils import HttpResult

OFFSITE = "deep_extract.research_core.offsite"


def _ok(payload) -> HttpResult:
    return HttpResult(ok=True, status=200, payload=payload)


def _context(budget_usd: float = 5.0, **overrides) -> ProviderContext:
    kwargs = {
        "domain": "acme.cz",
        "brand_name": "Acme",
        "budget": BudgetGovernor(budget_usd),
        "budget_usd": budget_usd,
        "keys": {"serpapi": "serp-key"},
    }
    kwargs.update(overrides)
    return ProviderContext(**kwargs)


@pytest.mark.asyncio
async def test_serpapi_search_builds_google_params():
    fetch = AsyncMock(return_value=_ok({}))
    with patch(f"{OFFSITE}.base.fetch_json", fetch):
        await serpapi_search("acme news", api_key="k", tbm="nws")
    assert fetch.await_args.args[0] == SERPAPI_URL
    assert fetch.await_args.kwargs["params"] == {
        "engine": "google",
        "q": "acme news",
        "num": "10",
        "api_key": "k",
        "tbm": "nws",
    }


@pytest.mark.asyncio
async def test_serp_provider_stops_at_budget():
    search = AsyncMock(
        return_value=_ok(
            {
                "organic_results": [
                    {"link": "https://rival.com/x", "title": "Rival", "snippet": "Architects"},
                    {"link": "https://www.acme.cz/", "title": "Acme"},
                ]
            }
        )
    )
    context = _context(0.6)
    with patch(f"{OFFSITE}.serp.serpapi_search", search):
        outcome = await run_serp_provider(context)

    assert search.await_count == 2
    assert outcome.cost == 0.5
    assert context.budget.spent_usd == 0.5
    assert outcome.warnings == ["SERP provider budget limit reached"]
    assert [c["domain"] for c in outcome.findings["competitors"]] == ["rival.com"]
    assert len(outcome.findings["shareOfVoiceHints"]) == 2
    assert outcome.field_links["outside.competitive.competitors"] == [
        "serp:acme.cz:rival.com",
        "serp:Acme competitors:rival.com",
    ]


@pytest.mark.asyncio
async def test_serp_provider_requires_key():
    outcome = await run_serp_provider(_context(keys={}))
    assert outcome.skipped
    assert outcome.warnings == ["SERP provider skipped: SERPAPI key not configured"]


@pytest.mark.asyncio
async def test_serp_failed_query_is_not_charged():
    search = AsyncMock(return_value=HttpResult(ok=False, status=401, payload={"error": "Invalid API key"}))
    with patch(f"{OFFSITE}.serp.serpapi_search", search):
        outcome = await run_serp_provider(_context())
    assert outcome.cost == 0
    assert len(outcome.warnings) == 3
    assert outcome.warnings[0] == "SERP query failed: acme.cz"


RDAP_PAYLOAD = {
    "ldhName": "ACME.CZ",
    "status": ["active"],
    "entities": [
        {
            "roles": ["registrant"],
            "vcardArray": ["vcard", [["version", {}, "text", "4.0"], ["fn", {}, "text", "ACME s.r.o."]]],
        }
    ],
}


@pytest.mark.asyncio
async def test_company_data_reads_rdap():
    fetch = AsyncMock(return_value=_ok(RDAP_PAYLOAD))
    context = _context()
    with patch(f"{OFFSITE}.company_data.fetch_json", fetch):
        outcome = await run_company_data_provider(context)

    assert fetch.await_args.args[0] == "https://rdap.org/domain/acme.cz"
    findings = outcome.findings
    assert findings["legalNameCandidates"] == ["Acme", "ACME s.r.o."]
    assert findings["ownershipSignals"] == ["RDAP role: registrant"]
    assert findings["registryFindings"] == ["LDH domain: ACME.CZ", "Domain status: active"]
    assert findings["evidence"] == ["https://rdap.org/domain/acme.cz"]
    assert outcome.cost == 0.05
    assert [source.id for source in outcome.evidence] == ["rdap:acme.cz"]


@pytest.mark.asyncio
async def test_company_data_budget_and_failure():
    outcome = await run_company_data_provider(_context(0.01))
    assert outcome.skipped
    assert outcome.warnings == ["Company-data budget reached"]

    fetch = AsyncMock(return_value=HttpResult(ok=False, status=404))
    with patch(f"{OFFSITE}.company_data.fetch_json", fetch):
        outcome = await run_company_data_provider(_context())
    assert outcome.cost == 0
    assert outcome.warnings == ["RDAP lookup failed for acme.cz"]


@pytest.mark.asyncio
async def test_social_enrichment_fetches_brand_profiles():
    fetch = AsyncMock(
        side_effect=[
            _ok("<html><head><title>Acme | LinkedIn</title></head></html>"),
            HttpResult(ok=False, status=404, payload="not found"),
        ]
    )
    context = _context(
        base_result={"brand": {"social": {"linkedin": "https://linkedin.com/company/acme", "x": "https://x.com/acme"}}}
    )
    with patch(f"{OFFSITE}.social_enrichment.fetch_json", fetch):
        outcome = await run_social_enrichment_provider(context)

    assert outcome.findings["socialProfiles"] == ["https://linkedin.com/company/acme", "https://x.com/acme"]
    assert outcome.findings["listingSignals"] == ["Profile discovered: Acme | LinkedIn"]
    assert outcome.warnings == ["Unable to fetch social profile: https://x.com/acme"]
    assert outcome.cost == 0.04
    assert outcome.field_links == {"outside.presence.socialProfiles": ["social:https://linkedin.com/company/acme"]}


@pytest.mark.asyncio
async def test_social_enrichment_without_profiles_is_free():
    outcome = await run_social_enrichment_provider(_context(base_result={}))
    assert outcome.cost == 0
    assert outcome.findings["socialProfiles"] == []


@pytest.mark.asyncio
async def test_maps_reviews_classifies_sentiment():
    search = AsyncMock(
        return_value=_ok(
            {
                "organic_results": [
                    {"link": "https://reviews.example/acme", "title": "Acme award winner", "snippet": "excellent work"},
                    {"link": "https://forum.example/t/1", "title": "Acme complaint thread", "snippet": "scam?", "date": "2024-02-02"},
                    {"title": "no link"},
                ]
            }
        )
    )
    with patch(f"{OFFSITE}.maps_reviews.serpapi_search", search):
        outcome = await run_maps_reviews_provider(_context())

    assert search.await_args.args[0] == "Acme reviews"
    mentions = outcome.findings["mentions"]
    assert [m["sentiment"] for m in mentions] == ["positive", "negative"]
    assert outcome.findings["risks"] == ["Risk mention: Acme complaint thread"]
    assert outcome.findings["opportunities"] == ["Positive mention: Acme award winner"]
    assert outcome.findings["timeline"] == ["2024-02-02"]
    assert outcome.cost == 0.25
    assert [source.type for source in outcome.evidence] == ["review_or_mention", "review_or_mention"]


@pytest.mark.asyncio
async def test_maps_reviews_skips_without_key_or_budget():
    outcome = await run_maps_reviews_provider(_context(keys={}))
    assert outcome.warnings == ["Maps/reviews provider skipped: SERPAPI key not configured"]
    outcome = await run_maps_reviews_provider(_context(0.1))
    assert outcome.warnings == ["Maps/reviews provider budget reached"]


@pytest.mark.asyncio
async def test_pr_reputation_uses_news_vertical():
    search = AsyncMock(
        return_value=_ok({"news_results": [{"link": "https://press.example/a", "title": "Acme expansion", "date": "1 day ago"}]})
    )
    with patch(f"{OFFSITE}.pr_reputation.serpapi_search", search):
        outcome = await run_pr_reputation_provider(_context())

    assert search.await_args.kwargs["tbm"] == "nws"
    assert search.await_args.args[0] == "Acme news"
    assert outcome.findings["mentions"][0]["url"] == "https://press.example/a"
    assert outcome.evidence[0].id == "news:https://press.example/a"
    assert outcome.evidence[0].step == "offsite.pr_reputation"
    assert outcome.findings["opportunities"] == ["Positive mention: Acme expansion"]


@pytest.mark.asyncio
async def test_pr_reputation_query_failure():
    search = AsyncMock(return_value=HttpResult(ok=False, status=500))
    with patch(f"{OFFSITE}.pr_reputation.serpapi_search", search):
        outcome = await run_pr_reputation_provider(_context())
    assert outcome.warnings == ["PR/reputation query failed"]
    assert outcome.cost == 0


@pytest.mark.asyncio
async def test_tech_intel_fingerprints_raw_html(tmp_path: Path):
    artifacts = ArtifactManager(job_id="j", root=tmp_path)
    raw = artifacts.write_text(
        type="raw_html",
        directory="raw-html",
        file_name="home.html",
        content=(
            '<link href="/wp-content/themes/x.css">'
            '<script src="https://www.googletagmanager.com/gtm.js"></script>'
            '<script src="https://cdnjs.cloudflare.com/lib.js"></script>'
        ),
        metadata={"url": "https://acme.cz/"},
    )
    context = _context(
        artifacts=artifacts,
        base_result={"finalUrl": "https://acme.vercel.app/", "content": {"pages": [{"url": "https://acme.cz/"}]}},
    )
    outcome = await run_tech_intel_provider(context)

    assert outcome.findings["cms"] == ["WordPress"]
    assert outcome.findings["trackers"] == ["Google Tag Manager"]
    assert outcome.findings["cdn"] == ["Cloudflare"]
    assert outcome.findings["hosting"] == ["Vercel"]
    assert outcome.findings["evidence"] == ["https://acme.cz/"]
    assert outcome.evidence[0].artifact_id == raw.id
    assert outcome.cost == 0


@pytest.mark.asyncio
async def test_tech_intel_without_artifacts_finds_nothing():
    outcome = await run_tech_intel_provider(_context(base_result={"content": {"pages": [{"url": "https://acme.cz/"}]}}))
    assert outcome.findings["cms"] == []
    assert outcome.evidence == []


def test_detect_hosting():
    assert detect_hosting("https://acme.netlify.app/") == ["Netlify"]
    assert detect_hosting("https://acme.cz/") == []
    assert detect_hosting(None) == []
