from __future__ import annotations

import json
from typing import Any

from loguru import logger

from deep_extract.llm_client import complete_json, get_client
from deep_extract.tools.web_utils import clean_text

SYSTEM_PROMPT = (
    "Return strict JSON: executiveSummary:{cz,en}, brandNarrative, positioning, "
    "targetSegments[], proofPoints[], differentiators[]. Keep concise and factual."
)
DEFAULT_NARRATIVE = (
    "Brand narrative indicates practical value delivery, trust-building messaging, "
    "and conversion-oriented structure."
)


def _trim(lines: list[Any], limit: int = 6) -> list[str]:
    return [text for text in (clean_text(line) for line in lines if line) if text][:limit]


def _section_types(base_result: dict[str, Any]) -> list[str]:
    sections = (base_result.get("content") or {}).get("sections") or []
    return [str(section.get("type")) for section in sections if isinstance(section, dict) and section.get("type")]


def fallback_synthesis(
    *,
    base_result: dict[str, Any],
    markdown_corpus: dict[str, Any] | None,
    outside: dict[str, Any],
) -> dict[str, Any]:
    """Deterministic bilingual summary assembled from signals already extracted."""
    brand = base_result.get("brand") or {}
    name = brand.get("canonicalName") or brand.get("name")
    tagline = brand.get("tagline")
    section_types = _section_types(base_result)
    documents = (markdown_corpus or {}).get("documents") or []
    company = outside.get("company") or {}
    presence = outside.get("presence") or {}
    pr = outside.get("pr") or {}
    tech = outside.get("tech") or {}
    competitive = outside.get("competitive") or {}
    trust = brand.get("trustSignals") or {}

    people = presence.get("people") or []
    mentions = pr.get("mentions") or []
    cms = tech.get("cms") or []

    key_signals = _trim(
        [
            name and f"Brand: {name}",
            tagline and f"Tagline: {tagline}",
            section_types and f"Detected website sections: {', '.join(section_types)}",
            documents and f"Markdown corpus: {len(documents)} docs",
            documents and documents[0].get("pageType") and f"Primary page type: {documents[0]['pageType']}",
            (company.get("registryFindings") or [None])[0],
            people and f"People coverage: {len(people)} profiles",
            mentions and f"Recent mention: {mentions[0].get('title')}",
            cms and f"CMS signals: {', '.join(cms)}",
        ]
    )
    joined = "; ".join(key_signals)

    return {
        "executiveSummary": {
            "cz": f"Shrnutí: {name or 'Firma'} má online přítomnost s klíčovými signály: {joined or 'omezená data'}.",
            "en": f"Summary: {name or 'Company'} has an online footprint with key signals: {joined or 'limited data'}.",
        },
        "brandNarrative": tagline or DEFAULT_NARRATIVE,
        "positioning": (
            "Service/solution-led positioning with proof-oriented structure."
            if {"SERVICES", "PROJECTS"} & set(section_types)
            else "Positioning inferred from limited sections; requires additional pages for stronger confidence."
        ),
        "targetSegments": _trim(
            [
                "PROJECTS" in section_types and "Prospects evaluating references/case studies",
                "CONTACT" in section_types and "High-intent inbound leads",
                "Brand-aware returning visitors",
            ]
        ),
        "proofPoints": _trim(
            [
                trust.get("partners") and "Partner/clients trust signal present",
                trust.get("testimonials") and "Testimonial signal present",
                people and "Public people profiles detected",
                mentions and "External mentions detected",
                tech.get("trackers") and "Measurement stack detected",
            ]
        ),
        "differentiators": _trim(
            [
                tagline and f"Tagline-led differentiation: {tagline}",
                competitive.get("competitors") and "Visible competitor set identified from search overlap",
                cms and f"Tech baseline: {', '.join(cms)}",
            ]
        ),
    }


def build_synthesis_prompt(
    *,
    url: str,
    base_result: dict[str, Any],
    markdown_corpus: dict[str, Any] | None,
    outside: dict[str, Any],
) -> str:
    highlights = [
        {
            "url": doc.get("url"),
            "pageType": doc.get("pageType") or "other",
            "title": doc.get("title"),
            "qualityScore": doc.get("qualityScore") or 0,
            "snippet": str(doc.get("snippet") or "")[:260],
        }
        for doc in ((markdown_corpus or {}).get("documents") or [])[:8]
    ]
    payload = {
        "url": url,
        "brand": base_result.get("brand"),
        "style": base_result.get("style"),
        "website": base_result.get("website"),
        "sections": (base_result.get("content") or {}).get("sections"),
        "markdownHighlights": highlights,
        "outside": outside,
        "warnings": base_result.get("warnings"),
    }
    return (
        "Create bilingual CZ+EN strategic synthesis from extracted data: "
        f"{json.dumps(payload, ensure_ascii=False, default=str)}"
    )


def _string_list(value: Any, limit: int) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value][:limit]


def normalize_llm_synthesis(payload: dict[str, Any]) -> dict[str, Any]:
    summary = payload.get("executiveSummary") if isinstance(payload.get("executiveSummary"), dict) else {}
    return {
        "executiveSummary": {"cz": str(summary.get("cz") or ""), "en": str(summary.get("en") or "")},
        "brandNarrative": str(payload.get("brandNarrative") or ""),
        "positioning": str(payload.get("positioning") or ""),
        "targetSegments": _string_list(payload.get("targetSegments"), 12),
        "proofPoints": _string_list(payload.get("proofPoints"), 16),
        "differentiators": _string_list(payload.get("differentiators"), 12),
    }


async def synthesize_research(
    *,
    url: str,
    base_result: dict[str, Any],
    markdown_corpus: dict[str, Any] | None,
    outside: dict[str, Any],
    api_key: str | None,
    model: str | None,
    warnings: list[str],
    llm: Any = None,
) -> dict[str, Any]:
    """LLM synthesis when a key is available, else (or on any failure) the template."""
    fallback_args = {"base_result": base_result, "markdown_corpus": markdown_corpus, "outside": outside}
    if not api_key:
        warnings.append("Synthesis used fallback template: OPENAI_API_KEY missing")
        return fallback_synthesis(**fallback_args)

    try:
        if llm is None:
            llm = get_client(api_key=api_key)
        payload = await complete_json(
            system=SYSTEM_PROMPT,
            user=build_synthesis_prompt(url=url, **fallback_args),
            caller="synthesis.research",
            llm=llm,
            model=model,
        )
    except Exception as exc:
        logger.warning(f"Synthesis fallback applied: {exc}")
        warnings.append(f"Synthesis fallback applied: {exc}")
        return fallback_synthesis(**fallback_args)

    research = normalize_llm_synthesis(payload)
    if not (research["executiveSummary"]["cz"] and research["executiveSummary"]["en"]):
        warnings.append("Synthesis fallback applied: executive summary missing from model output")
        return fallback_synthesis(**fallback_args)
    return research
