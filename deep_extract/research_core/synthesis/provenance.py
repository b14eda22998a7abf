from __future__ import annotations

from typing import Any

from deep_extract.models.interfaces import EvidenceSource, FieldLinks, append_field_link, merge_field_links
from deep_extract.tools.web_utils import is_valid_url

PAGE_FIELDS = ("brand.name", "brand.canonicalName", "brand.tagline", "content.sections", "website.structure")
MARKDOWN_FIELD = "content.markdown"
MARKDOWN_CONFIDENCE = 0.82
DEFAULT_CONFIDENCE = 0.75


def build_provenance(
    *,
    pages: list[dict[str, Any]],
    markdown_documents: list[dict[str, Any]],
    provider_sources: list[EvidenceSource],
    provider_field_links: FieldLinks,
) -> dict[str, Any]:
    """Assemble the evidence ledger: sources, field links and a flat field/source list.

    Page sources back the brand and structure fields, markdown documents back
    ``content.markdown`` and provider sources keep their own links. Provider
    sources with a non-http(s) URL are dropped together with their links.
    """
    sources: list[EvidenceSource] = []
    fields: FieldLinks = {}
    merge_field_links(fields, provider_field_links)

    for page in pages or []:
        page_url = page.get("url")
        if not page_url:
            continue
        source_id = f"page:{page_url}"
        samples = page.get("textSamples") or []
        sources.append(
            EvidenceSource(
                id=source_id,
                step="crawling",
                type="html_page",
                url=page_url,
                title=page.get("title") or page_url,
                excerpt=samples[0] if samples else None,
            )
        )
        for field_path in PAGE_FIELDS:
            append_field_link(fields, field_path, source_id)

    for doc in markdown_documents or []:
        source_id = f"md:{doc['url']}"
        sources.append(
            EvidenceSource(
                id=source_id,
                step="markdown",
                type="markdown_document",
                url=doc["url"],
                artifact_id=doc.get("artifactId"),
                title=doc.get("title") or doc["url"],
            )
        )
        append_field_link(fields, MARKDOWN_FIELD, source_id)

    known = {source.id for source in sources}
    for source in provider_sources or []:
        if source.url and not is_valid_url(source.url):
            continue
        if source.id not in known:
            known.add(source.id)
            sources.append(source)

    for field_path in list(fields):
        fields[field_path] = [source_id for source_id in fields[field_path] if source_id in known]
        if not fields[field_path]:
            del fields[field_path]

    field_evidence = [
        {
            "field": field_path,
            "sourceId": source_id,
            "confidence": MARKDOWN_CONFIDENCE if field_path.startswith(MARKDOWN_FIELD) else DEFAULT_CONFIDENCE,
        }
        for field_path, source_ids in fields.items()
        for source_id in source_ids
    ]
    return {
        "sources": [source.to_dict() for source in sources],
        "fields": fields,
        "fieldEvidence": field_evidence,
    }
