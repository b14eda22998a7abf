from __future__ import annotations

from typing import Any

from deep_extract.models.interfaces import ConfidenceRecord


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _count(outside: dict[str, Any], category: str, name: str) -> int:
    return len((outside.get(category) or {}).get(name) or [])


def compute_deep_confidence(
    base_confidence: dict[str, Any] | None,
    outside: dict[str, Any],
    warning_count: int,
) -> ConfidenceRecord:
    """Blend the base crawl confidence with off-site corroboration.

    Mentions and registry findings raise extraction confidence, warnings
    lower it (each term is capped). Inference confidence builds on that
    with competitor and mention volume. ``overall`` is their mean.
    """
    base_confidence = base_confidence or {}
    mentions = _count(outside, "pr", "mentions")
    competitors = _count(outside, "competitive", "competitors")
    registry = _count(outside, "company", "registryFindings")

    extraction = _clamp(
        float(base_confidence.get("overall") or 0) * 0.7
        + min(0.2, mentions * 0.01)
        + min(0.12, registry * 0.02)
        - min(0.18, max(0, warning_count) * 0.01)
    )
    inference = _clamp(extraction * 0.6 + min(0.25, competitors * 0.02) + min(0.15, mentions * 0.01))

    fields = dict(base_confidence.get("fields") or {})
    fields["outside.pr"] = round(min(1.0, mentions * 0.08 + 0.2), 3)
    fields["outside.competitive"] = round(min(1.0, competitors * 0.1 + 0.2), 3)
    fields["outside.company"] = round(min(1.0, registry * 0.1 + 0.2), 3)

    explain = dict(base_confidence.get("explain") or {})
    explain["outside.pr"] = f"mentions: {mentions}"
    explain["outside.competitive"] = f"competitors: {competitors}"
    explain["outside.company"] = f"registry findings: {registry}"

    return ConfidenceRecord(
        overall=round((extraction + inference) / 2, 3),
        fields=fields,
        explain=explain,
        extraction_confidence=round(extraction, 3),
        inference_confidence=round(inference, 3),
    )
