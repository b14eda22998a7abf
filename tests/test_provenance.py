from __future__ import annotations

from deep_extract.models.interfaces import EvidenceSource
from deep_extract.research_core.synthesis.provenance import build_provenance


def _build(**overrides):
    kwargs = {
        "pages": [
            {"url": "https://acme.cz/", "title": "Acme", "textSamples": ["We design buildings"]},
            {"title": "no url"},
        ],
        "markdown_documents": [{"url": "https://acme.cz/", "artifactId": "art-1", "title": "Acme"}],
        "provider_sources": [
            EvidenceSource(id="serp:1", step="offsite.serp", type="serp_result", url="https://rival.com/"),
            EvidenceSource(id="serp:1", step="offsite.serp", type="serp_result", url="https://rival.com/"),
        ],
        "provider_field_links": {
            "outside.competitive.competitors": ["serp:1", "missing:1"],
            "outside.pr.mentions": ["missing:2"],
        },
    }
    kwargs.update(overrides)
    return build_provenance(**kwargs)


def test_every_linked_source_id_exists():
    provenance = _build()
    ids = {source["id"] for source in provenance["sources"]}
    for source_ids in provenance["fields"].values():
        assert set(source_ids) <= ids
    assert "outside.pr.mentions" not in provenance["fields"]
    assert provenance["fields"]["outside.competitive.competitors"] == ["serp:1"]


def test_page_and_markdown_sources():
    provenance = _build()
    by_id = {source["id"]: source for source in provenance["sources"]}

    page = by_id["page:https://acme.cz/"]
    assert page["step"] == "crawling"
    assert page["excerpt"] == "We design buildings"
    assert by_id["md:https://acme.cz/"]["artifactId"] == "art-1"
    assert provenance["fields"]["brand.name"] == ["page:https://acme.cz/"]
    assert provenance["fields"]["content.markdown"] == ["md:https://acme.cz/"]


def test_provider_sources_are_deduplicated():
    provenance = _build()
    assert [source["id"] for source in provenance["sources"]].count("serp:1") == 1


def test_field_evidence_mirrors_fields():
    provenance = _build()
    pairs = {(item["field"], item["sourceId"]) for item in provenance["fieldEvidence"]}
    expected = {(field, sid) for field, ids in provenance["fields"].items() for sid in ids}
    assert pairs == expected

    confidence = {item["field"]: item["confidence"] for item in provenance["fieldEvidence"]}
    assert confidence["content.markdown"] == 0.82
    assert confidence["brand.name"] == 0.75


def test_empty_inputs_give_empty_ledger():
    provenance = build_provenance(pages=[], markdown_documents=[], provider_sources=[], provider_field_links={})
    assert provenance == {"sources": [], "fields": {}, "fieldEvidence": []}


def test_provider_sources_with_relative_urls_are_dropped():
    provenance = _build(
        provider_sources=[
            EvidenceSource(id="review:bad", step="offsite.maps_reviews", type="review_or_mention", url="www.reviews.example/acme"),
            EvidenceSource(id="company:1", step="offsite.company_data", type="registry_record"),
        ],
        provider_field_links={"outside.pr.mentions": ["review:bad"], "outside.company.registry": ["company:1"]},
    )
    ids = {source["id"] for source in provenance["sources"]}
    assert "review:bad" not in ids
    assert "company:1" in ids
    assert "outside.pr.mentions" not in provenance["fields"]
