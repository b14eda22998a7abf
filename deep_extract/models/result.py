"""Output document of a deep extraction run.

Everything the orchestrator returns is validated against these models before
it leaves the pipeline, so a caller always receives a document of this shape
even when rendering and off-site phases were skipped. Base-crawl fields the
pipeline does not own (style, crawl stats, ...) pass through untouched.
"""
from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from deep_extract.tools.web_utils import is_valid_url


def _require_url(value: str) -> str:
    if not is_valid_url(value):
        raise ValueError(f"invalid URL: {value!r}")
    return value


Url = Annotated[str, AfterValidator(_require_url)]
Unit = Annotated[float, Field(ge=0, le=1)]
NonEmpty = Annotated[str, Field(min_length=1)]


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _OpenModel(_Model):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class WarningItem(_Model):
    code: NonEmpty
    message: NonEmpty
    url: Url | None = None


class PageSummary(_OpenModel):
    url: Url
    page_type: str | None = None
    title: str | None = None


class MarkdownDocumentModel(_Model):
    url: Url
    page_type: str | None = None
    title: str | None = None
    artifact_id: str
    source: Literal["local", "remote"]
    tokens: int = Field(ge=0)
    quality_score: Unit
    snippet: str = ""


class MarkdownCorpus(_Model):
    generated_at: str | None = None
    documents: list[MarkdownDocumentModel] = Field(default_factory=list)
    quality_report_artifact_id: str | None = None


class ContentModel(_OpenModel):
    pages: list[PageSummary] = Field(default_factory=list)
    sections: list[dict[str, Any]] = Field(default_factory=list)
    markdown_corpus: MarkdownCorpus | None = None


class BrandModel(_OpenModel):
    canonical_name: str | None = None
    name: str | None = None
    tagline: str | None = None
    social: dict[str, Url | None] = Field(default_factory=dict)


class ExecutiveSummary(_Model):
    cz: str
    en: str


class ResearchSynthesis(_Model):
    executive_summary: ExecutiveSummary
    brand_narrative: str
    positioning: str
    target_segments: list[str]
    proof_points: list[str]
    differentiators: list[str]


class CompanyIntel(_Model):
    legal_name_candidates: list[str] = Field(default_factory=list)
    ownership_signals: list[str] = Field(default_factory=list)
    registry_findings: list[str] = Field(default_factory=list)
    evidence: list[Url] = Field(default_factory=list)


class Person(_Model):
    name: str
    title: str | None = None
    organization: str | None = None
    profile_url: Url
    source_domain: str | None = None
    confidence: Unit


class PresenceIntel(_Model):
    people: list[Person] = Field(default_factory=list)
    social_profiles: list[Url] = Field(default_factory=list)
    directories: list[Url] = Field(default_factory=list)
    listing_signals: list[str] = Field(default_factory=list)


class Mention(_Model):
    title: str
    url: Url
    sentiment: Literal["positive", "neutral", "negative"]
    snippet: str | None = None
    published_at: str | None = None


class PrIntel(_Model):
    mentions: list[Mention] = Field(default_factory=list)
    key_topics: list[str] = Field(default_factory=list)
    timeline: list[str] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)
    opportunities: list[str] = Field(default_factory=list)


class TechIntel(_Model):
    cms: list[str] = Field(default_factory=list)
    trackers: list[str] = Field(default_factory=list)
    cdn: list[str] = Field(default_factory=list)
    hosting: list[str] = Field(default_factory=list)
    evidence: list[Url] = Field(default_factory=list)


class Competitor(_Model):
    name: str
    domain: str
    reason: str
    source: Url | None = None


class CompetitiveIntel(_Model):
    competitors: list[Competitor] = Field(default_factory=list)
    share_of_voice_hints: list[str] = Field(default_factory=list)


class OutsideIntel(_Model):
    company: CompanyIntel = Field(default_factory=CompanyIntel)
    presence: PresenceIntel = Field(default_factory=PresenceIntel)
    pr: PrIntel = Field(default_factory=PrIntel)
    tech: TechIntel = Field(default_factory=TechIntel)
    competitive: CompetitiveIntel = Field(default_factory=CompetitiveIntel)


class EvidenceSourceModel(_Model):
    id: NonEmpty
    step: NonEmpty
    type: NonEmpty
    url: Url | None = None
    artifact_id: str | None = None
    title: str | None = None
    timestamp: str | None = None
    excerpt: str | None = None


class FieldEvidence(_Model):
    field: str
    source_id: str
    confidence: Unit | None = None


class Provenance(_Model):
    sources: list[EvidenceSourceModel]
    fields: dict[str, list[str]]
    field_evidence: list[FieldEvidence] = Field(default_factory=list)


class ArtifactItem(_Model):
    id: str
    type: str
    path: str
    metadata: dict[str, Any] | None = None


class ArtifactIndex(_Model):
    root: str
    items: list[ArtifactItem]


class CostSummary(_Model):
    budget_usd: float
    total_usd: float
    providers: dict[str, float]
    within_budget: bool


class CoverageModel(_Model):
    completed_steps: list[str]
    skipped_steps: list[str]
    gaps: list[str]


class ConfidenceModel(_Model):
    overall: Unit
    fields: dict[str, Unit]
    explain: dict[str, str] | None = None
    extraction_confidence: Unit
    inference_confidence: Unit


class DeepResearchResult(_OpenModel):
    api_version: str = "3.0"
    input_url: Url | None = None
    final_url: Url | None = None
    brand: BrandModel = Field(default_factory=BrandModel)
    content: ContentModel = Field(default_factory=ContentModel)
    research: ResearchSynthesis
    outside: OutsideIntel
    provenance: Provenance
    artifacts: ArtifactIndex
    cost: CostSummary
    coverage: CoverageModel
    warnings: list[WarningItem] = Field(default_factory=list)
    confidence: ConfidenceModel

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def empty_outside() -> dict[str, Any]:
    return {
        "company": {"legalNameCandidates": [], "ownershipSignals": [], "registryFindings": [], "evidence": []},
        "presence": {"people": [], "socialProfiles": [], "directories": [], "listingSignals": []},
        "pr": {"mentions": [], "keyTopics": [], "timeline": [], "risks": [], "opportunities": []},
        "tech": {"cms": [], "trackers": [], "cdn": [], "hosting": [], "evidence": []},
        "competitive": {"competitors": [], "shareOfVoiceHints": []},
    }


def drop_invalid_urls(outside: dict[str, Any]) -> dict[str, Any]:
    """Remove off-site entries whose URL fields would fail validation.

    Search APIs occasionally hand back relative or scheme-less links; those
    entries carry no auditable source and are dropped rather than failing
    the whole document.
    """
    company = outside.get("company", {})
    company["evidence"] = [u for u in company.get("evidence", []) if is_valid_url(u)]

    presence = outside.get("presence", {})
    presence["people"] = [p for p in presence.get("people", []) if is_valid_url(p.get("profileUrl", ""))]
    presence["socialProfiles"] = [u for u in presence.get("socialProfiles", []) if is_valid_url(u)]
    presence["directories"] = [u for u in presence.get("directories", []) if is_valid_url(u)]

    pr = outside.get("pr", {})
    pr["mentions"] = [m for m in pr.get("mentions", []) if is_valid_url(m.get("url", ""))]

    tech = outside.get("tech", {})
    tech["evidence"] = [u for u in tech.get("evidence", []) if is_valid_url(u)]

    competitive = outside.get("competitive", {})
    for competitor in competitive.get("competitors", []):
        if competitor.get("source") and not is_valid_url(competitor["source"]):
            competitor.pop("source")
    return outside
