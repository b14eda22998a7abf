from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal


CaptchaType = Literal["recaptcha", "hcaptcha", "turnstile", "unknown"]
MarkdownSource = Literal["local", "remote"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class Artifact:
    id: str
    type: str
    path: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type, "path": self.path, "metadata": dict(self.metadata)}


@dataclass(slots=True)
class MarkdownCandidate:
    source: MarkdownSource
    artifact_id: str
    title: str | None
    content: str
    tokens: int
    quality_score: float = 0.0


@dataclass(slots=True)
class MarkdownDocument:
    url: str
    page_type: str | None
    title: str | None
    artifact_id: str
    source: MarkdownSource
    tokens: int
    quality_score: float
    snippet: str

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "url": self.url,
            "artifactId": self.artifact_id,
            "source": self.source,
            "tokens": self.tokens,
            "qualityScore": self.quality_score,
            "snippet": self.snippet,
        }
        if self.page_type:
            payload["pageType"] = self.page_type
        if self.title:
            payload["title"] = self.title
        return payload


@dataclass(slots=True)
class EvidenceSource:
    id: str
    step: str
    type: str
    url: str | None = None
    artifact_id: str | None = None
    title: str | None = None
    excerpt: str | None = None
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "step": self.step, "type": self.type}
        if self.url:
            payload["url"] = self.url
        if self.artifact_id:
            payload["artifactId"] = self.artifact_id
        if self.title:
            payload["title"] = self.title
        if self.excerpt:
            payload["excerpt"] = self.excerpt
        payload["timestamp"] = self.timestamp
        return payload


FieldLinks = dict[str, list[str]]


def append_field_link(field_links: FieldLinks, field_path: str, source_id: str) -> None:
    if not field_path or not source_id:
        return
    ids = field_links.setdefault(field_path, [])
    if source_id not in ids:
        ids.append(source_id)


def merge_field_links(target: FieldLinks, incoming: FieldLinks | None) -> None:
    for field_path, source_ids in (incoming or {}).items():
        for source_id in source_ids or []:
            append_field_link(target, field_path, source_id)


@dataclass(slots=True)
class ProviderOutcome:
    """Uniform provider result. Providers return this instead of raising."""

    findings: dict[str, Any] = field(default_factory=dict)
    evidence: list[EvidenceSource] = field(default_factory=list)
    field_links: FieldLinks = field(default_factory=dict)
    cost: float = 0.0
    warnings: list[str] = field(default_factory=list)
    skipped: bool = False


@dataclass(slots=True)
class CaptchaChallengeState:
    detected: bool = False
    type: CaptchaType = "unknown"
    site_key: str | None = None
    action: str | None = None
    c_data: str | None = None
    chl_page_data: str | None = None
    callback_index: int | None = None


@dataclass(slots=True)
class RenderedPage:
    url: str
    html_artifact_id: str
    screenshot_artifact_id: str | None
    captcha_detected: bool
    captcha_solved: bool


@dataclass(slots=True)
class RenderResult:
    rendered_pages: list[RenderedPage] = field(default_factory=list)
    network_summary: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class RunWarning:
    code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


@dataclass(slots=True)
class Coverage:
    completed_steps: list[str] = field(default_factory=list)
    skipped_steps: list[str] = field(default_factory=list)
    gaps: list[str] = field(default_factory=list)

    def completed(self, step: str) -> None:
        if step not in self.completed_steps:
            self.completed_steps.append(step)

    def skipped(self, step: str, gap: str | None = None) -> None:
        if step not in self.skipped_steps:
            self.skipped_steps.append(step)
        if gap:
            self.gaps.append(gap)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "completedSteps": list(self.completed_steps),
            "skippedSteps": list(self.skipped_steps),
            "gaps": list(self.gaps),
        }


@dataclass(slots=True)
class ConfidenceRecord:
    overall: float
    fields: dict[str, float]
    explain: dict[str, str]
    extraction_confidence: float
    inference_confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall,
            "fields": dict(self.fields),
            "explain": dict(self.explain),
            "extractionConfidence": self.extraction_confidence,
            "inferenceConfidence": self.inference_confidence,
        }
