from __future__ import annotations

import re
from dataclasses import replace

from deep_extract.models.interfaces import MarkdownCandidate
from deep_extract.research_core.markdown.local_converter import estimate_tokens
from deep_extract.tools.web_utils import clean_text

HEADING = re.compile(r"^#{1,6}\s+", re.MULTILINE)
LINK = re.compile(r"\[[^\]]+\]\([^)]+\)")
LIST_ITEM = re.compile(r"^\s*[-*]\s+", re.MULTILINE)
GENERIC_TITLE = re.compile(r"^(home|index)\s*$", re.IGNORECASE)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def score_markdown_candidate(candidate: MarkdownCandidate) -> float:
    """Quality score in [0.05, 1.0]; longer, more structured output scores higher.

    Structure is counted on the raw content so line-anchored headings and
    list markers are visible to the patterns.
    """
    raw = str(candidate.content or "")
    if not clean_text(raw):
        return 0.05

    heading_count = len(HEADING.findall(raw))
    link_count = len(LINK.findall(raw))
    list_count = len(LIST_ITEM.findall(raw))
    tokens = int(candidate.tokens or 0) or estimate_tokens(raw)

    length_score = _clamp(tokens / 500, 0.1, 1)
    structure_score = _clamp(heading_count * 0.22 + list_count * 0.10 + link_count * 0.06, 0, 1)
    source_bonus = 0.06 if candidate.source == "remote" else 0.0
    title = clean_text(candidate.title)
    title_bonus = 0.05 if len(title) >= 3 else 0.0
    penalty = 0.04 if GENERIC_TITLE.match(title) else 0.0

    score = length_score * 0.55 + structure_score * 0.35 + source_bonus + title_bonus - penalty
    return round(_clamp(score, 0.05, 1), 3)


def select_canonical_markdown(
    candidates: list[MarkdownCandidate],
) -> tuple[MarkdownCandidate | None, list[MarkdownCandidate]]:
    """Rank non-empty candidates by score (stable on ties) and pick the top one."""
    scored = [
        replace(candidate, quality_score=score_markdown_candidate(candidate))
        for candidate in candidates or []
        if candidate is not None and clean_text(candidate.content)
    ]
    ranked = sorted(scored, key=lambda item: item.quality_score, reverse=True)
    return (ranked[0] if ranked else None), ranked
